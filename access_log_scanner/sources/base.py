"""
Backend-agnostic source contract.

Every backend implements the same four operations (list, range read, stream
read, stat). Operations a backend cannot perform raise RangeNotSupported or
StreamNotSupported instead of being left out, so the scanner has a single
code path for all of them.
"""

import abc
import dataclasses
import logging
import typing

from access_log_scanner.errors import RangeNotSupported

logger = logging.getLogger(__name__)

SOURCE_LOCAL = "local"
SOURCE_SFTP = "sftp"
SOURCE_HTTP = "http"
SOURCE_S3 = "s3"
SOURCE_AGENT = "agent"

SOURCE_TYPES = (SOURCE_LOCAL, SOURCE_SFTP, SOURCE_HTTP, SOURCE_S3, SOURCE_AGENT)

RANGE_AUTO = "auto"
RANGE_FORCE = "range"
RANGE_FULL = "full"

MODE_POLL = "poll"
MODE_STREAM = "stream"


@dataclasses.dataclass
class TargetMeta:
    """
    Metadata snapshot for one target.

    Attributes:
        size (int): Length in bytes as reported by the backend.
        mod_time (int): Modification time, unix seconds (0 if unknown).
        etag (str): Opaque change token, empty if the backend has none.
        compressed (bool): Whether the content is gzip-compressed.
    """
    size: int = 0
    mod_time: int = 0
    etag: str = ""
    compressed: bool = False

    def is_bare(self) -> bool:
        """True when the listing returned no usable metadata at all."""
        return self.size == 0 and self.mod_time == 0 and not self.etag


@dataclasses.dataclass
class TargetRef:
    """One scannable object within a source. Never persisted."""
    website_id: str
    source_id: str
    key: str
    meta: TargetMeta = dataclasses.field(default_factory=TargetMeta)


def normalize_compression(value: typing.Optional[str]) -> str:
    return (value or "").strip().lower()


def is_compressed_by_name(name: str, compression: typing.Optional[str] = None) -> bool:
    """
    Decide whether a target is gzip-compressed.

    An explicit "gz" or "none" policy wins; anything else falls back to a
    case-insensitive ".gz" suffix check on the name.
    """
    policy = normalize_compression(compression)
    if policy == "gz":
        return True
    if policy == "none":
        return False
    return name.lower().endswith(".gz")


def normalize_range_policy(value: typing.Optional[str]) -> str:
    policy = (value or "").strip().lower()
    if policy in (RANGE_FORCE, RANGE_FULL):
        return policy
    return RANGE_AUTO


class LimitedReader:
    """Reads at most `limit` bytes from an underlying binary stream."""

    def __init__(self, stream, limit: int):
        self._stream = stream
        self._remaining = limit

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._stream.read(size)
        self._remaining -= len(data)
        return data


class ClosingStream:
    """
    Binary stream that closes a chain of backend resources when closed.

    Closers are closed in order; failures are logged and do not stop the
    remaining closers from running.
    """

    def __init__(self, reader, closers: typing.Iterable = ()):
        self._reader = reader
        self._closers = list(closers)
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._reader.read(size)

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for closer in self._closers:
            if closer is None:
                continue
            try:
                closer.close()
            except Exception as e:
                logger.debug("Error closing %r: %s", closer, e)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class LogSource(abc.ABC):
    """
    Capability contract shared by every backend.

    Args:
        website_id (str): Website the source belongs to.
        source_id (str): Source identifier, unique within the website.
        compression (str): "gz", "none" or empty for name-based detection.
        range_policy (str): "auto", "range" or "full".
        mode (str): "poll" (scanned periodically) or "stream" (content is pushed).
    """

    type = ""

    def __init__(
        self,
        website_id: str,
        source_id: str,
        compression: str = "",
        range_policy: str = RANGE_AUTO,
        mode: str = MODE_POLL,
    ):
        self.website_id = website_id
        self.id = source_id
        self.compression = compression
        self.range_policy = normalize_range_policy(range_policy)
        self.mode = (mode or MODE_POLL).strip().lower()

    def __repr__(self):
        return f"<{type(self).__name__} {self.website_id}/{self.id}>"

    def close(self) -> None:
        """Release long-lived client resources. Per-call connections need nothing here."""

    def make_target(self, key: str, size: int = 0, mod_time: int = 0, etag: str = "") -> TargetRef:
        return TargetRef(
            website_id=self.website_id,
            source_id=self.id,
            key=key,
            meta=TargetMeta(
                size=size,
                mod_time=mod_time,
                etag=etag,
                compressed=is_compressed_by_name(key, self.compression),
            ),
        )

    def check_range_policy(self, start: int) -> None:
        """Raise RangeNotSupported if the policy forbids starting at `start`."""
        if start > 0 and self.range_policy == RANGE_FULL:
            raise RangeNotSupported(f"source {self.id} is configured for full reads")

    @abc.abstractmethod
    def list_targets(self) -> typing.List[TargetRef]:
        """Return a fresh snapshot of every target matching the source's selection rule."""

    @abc.abstractmethod
    def open_range(self, target: TargetRef, start: int, end: int = -1):
        """
        Open a binary stream over [start, end) of a target.

        Args:
            target (TargetRef): Target to read.
            start (int): First byte offset.
            end (int): Exclusive end offset; negative means to the current end.

        Raises:
            RangeNotSupported: If the backend cannot start mid-object.
        """

    @abc.abstractmethod
    def open_stream(self, target: TargetRef):
        """Open a binary stream over the whole target, or raise StreamNotSupported."""

    @abc.abstractmethod
    def stat(self, target: TargetRef) -> TargetMeta:
        """Fetch current authoritative metadata for a target."""
