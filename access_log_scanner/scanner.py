"""
Incremental scanner.

One scan pass walks every poll-mode source of a website, decides per target
whether to skip, resume from the stored offset, or rescan from zero, feeds the
new bytes to the line parser, and only then persists the advanced cursor.
Failures are soft: they are recorded on the ScanResult and the pass moves on
to the next target. The periodic driver is the retry mechanism.
"""

import dataclasses
import gzip
import logging
import threading
import time
import typing
import zlib

from access_log_scanner.errors import RangeNotSupported, ScanCancelled, ScanError
from access_log_scanner.parser import LineParser, ParseResult, ParseStats, ParseWindow
from access_log_scanner.sources.base import MODE_STREAM, LogSource, TargetMeta, TargetRef
from access_log_scanner.state import StateStore, TargetState, build_target_state_key

logger = logging.getLogger(__name__)

RECENT_LOG_WINDOW_DAYS = 7
SKIP_CHUNK_SIZE = 64 * 1024


@dataclasses.dataclass
class ScanFailure:
    source_id: str
    key: typing.Optional[str]
    error: Exception


@dataclasses.dataclass
class ScanResult:
    """
    Outcome of one pass over a website.

    Attributes:
        website_id (str): Website scanned.
        success (bool): False if any source or target failed.
        error (Exception): Last failure, if any.
        failures (list): Every ScanFailure recorded during the pass.
        records (ParseResult): Records parsed from targets that completed.
        targets_scanned (int): Targets whose state was advanced or refreshed.
        cancelled (bool): The pass was stopped by the cancel event.
    """
    website_id: str
    success: bool = True
    error: typing.Optional[Exception] = None
    failures: typing.List[ScanFailure] = dataclasses.field(default_factory=list)
    records: ParseResult = dataclasses.field(default_factory=ParseResult)
    targets_scanned: int = 0
    cancelled: bool = False

    @property
    def entries(self) -> int:
        return self.records.entries

    def record_failure(self, source_id: str, key: typing.Optional[str], error: Exception) -> None:
        self.success = False
        self.error = error
        self.failures.append(ScanFailure(source_id=source_id, key=key, error=error))


class CancellableStream:
    """Raises ScanCancelled from read() once the cancel event is set."""

    def __init__(self, stream, cancel: threading.Event):
        self._stream = stream
        self._cancel = cancel

    def read(self, size: int = -1) -> bytes:
        if self._cancel.is_set():
            raise ScanCancelled("scan cancelled")
        return self._stream.read(size)

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        self._stream.close()


def skip_reader_bytes(reader, count: int) -> None:
    """
    Discard exactly `count` bytes from the front of a stream.

    Raises:
        ScanError: If the stream ends before `count` bytes were read.
    """
    remaining = count
    while remaining > 0:
        data = reader.read(min(SKIP_CHUNK_SIZE, remaining))
        if not data:
            raise ScanError(f"stream ended after {count - remaining} of {count} bytes to skip")
        remaining -= len(data)


def needs_reset(state: TargetState, meta: TargetMeta) -> bool:
    """
    Decide from metadata alone whether a target was rotated or truncated.

    Same-size content replacement on a backend without entity tags goes
    undetected; detecting it would require hashing whole objects.
    """
    if meta.size > 0 and state.last_size > 0 and meta.size < state.last_size:
        return True
    if meta.etag and state.last_etag and meta.etag != state.last_etag and meta.size <= state.last_size:
        return True
    if state.last_offset > 0 and meta.size > 0 and state.last_offset > meta.size:
        return True
    return False


def is_unchanged(state: TargetState, meta: TargetMeta) -> bool:
    """
    Whether a compressed target matches the last recorded state.

    Size must match. When the backend supplies an etag it decides on its own
    and modification-time drift is ignored; otherwise the mod time must match.
    """
    if meta.size != state.last_size:
        return False
    if meta.etag:
        return meta.etag == state.last_etag
    return meta.mod_time == state.last_mod_time


def reset_target_state(state: TargetState) -> TargetState:
    """
    Drop the read cursor and change-detection history of a rotated target.

    The backfill floor and the observed timestamp bounds survive; bounds only
    ever widen.
    """
    return TargetState(
        recent_cutoff_ts=state.recent_cutoff_ts,
        parsed_min_ts=state.parsed_min_ts,
        parsed_max_ts=state.parsed_max_ts,
        first_timestamp=state.first_timestamp,
        last_timestamp=state.last_timestamp,
    )


def update_target_parsed_range(state: TargetState, min_ts: int, max_ts: int) -> None:
    """Widen parsed and observed timestamp bounds; they never shrink."""
    if min_ts > 0 and (state.parsed_min_ts == 0 or min_ts < state.parsed_min_ts):
        state.parsed_min_ts = min_ts
    if max_ts > 0 and max_ts > state.parsed_max_ts:
        state.parsed_max_ts = max_ts
    if min_ts > 0 and (state.first_timestamp == 0 or min_ts < state.first_timestamp):
        state.first_timestamp = min_ts
    if max_ts > 0 and max_ts > state.last_timestamp:
        state.last_timestamp = max_ts


class Scanner:
    """
    Drives scan passes over the sources of one website at a time.

    Args:
        state_store (StateStore): Where target cursors are read and written.
        parser (LineParser, optional): Line parser; defaults to LineParser().
        recent_window_days (int): Backfill floor applied on first encounter.
        clock (callable): Wall-clock source in unix seconds, injectable for tests.
    """

    def __init__(
        self,
        state_store: StateStore,
        parser: typing.Optional[LineParser] = None,
        recent_window_days: int = RECENT_LOG_WINDOW_DAYS,
        clock: typing.Callable[[], float] = time.time,
    ):
        self.state_store = state_store
        self.parser = parser or LineParser()
        self.recent_window_days = recent_window_days
        self._clock = clock

    def scan_website(
        self,
        website_id: str,
        sources: typing.Iterable[LogSource],
        cancel: typing.Optional[threading.Event] = None,
    ) -> ScanResult:
        """
        Run one pass over every poll-mode source of a website, sequentially.

        Args:
            website_id (str): Website to scan.
            sources (iterable): Source backends configured for the website.
            cancel (threading.Event, optional): Stops the pass when set.

        Returns:
            ScanResult: Records parsed and failures recorded during the pass.
        """
        result = ScanResult(website_id=website_id)
        for src in sources:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            if src.mode == MODE_STREAM:
                continue
            try:
                targets = src.list_targets()
            except Exception as e:
                logger.warning("Listing source %s of website %s failed: %s", src.id, website_id, e)
                result.record_failure(src.id, None, e)
                continue
            logger.debug("Source %s of website %s has %d targets", src.id, website_id, len(targets))

            for target in targets:
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    break
                try:
                    self.scan_target(website_id, src, target, result, cancel)
                except ScanCancelled:
                    logger.info("Scan of website %s cancelled while reading %s", website_id, target.key)
                    result.cancelled = True
                    break
                except Exception as e:
                    logger.warning("Scanning %s (source %s, website %s) failed: %s", target.key, src.id, website_id, e)
                    result.record_failure(src.id, target.key, e)
            if result.cancelled:
                break
        return result

    def scan_target(
        self,
        website_id: str,
        src: LogSource,
        target: TargetRef,
        result: ScanResult,
        cancel: typing.Optional[threading.Event] = None,
    ) -> typing.Optional[ParseStats]:
        """
        Scan one target and persist its advanced state.

        Returns:
            ParseStats or None: None when the target was skipped without reading.

        Raises:
            Exception: Any stat/open/read/decompress failure. State is left
            untouched and parsed records are discarded in that case.
        """
        target_key = build_target_state_key(target.source_id, target.key)
        state = self.state_store.get(website_id, target_key)
        found = state is not None
        if state is None:
            state = TargetState()

        meta = target.meta
        if meta.is_bare():
            meta = src.stat(target)

        if not found or state.recent_cutoff_ts == 0:
            state.recent_cutoff_ts = int(self._clock()) - self.recent_window_days * 86400

        if found and needs_reset(state, meta):
            logger.info(
                "Target %s of website %s was rotated or truncated (size %d -> %d), rescanning",
                target.key, website_id, state.last_size, meta.size,
            )
            state = reset_target_state(state)
            found = False

        full_scan = meta.compressed
        if full_scan and found and is_unchanged(state, meta):
            logger.debug("Compressed target %s unchanged, skipping", target.key)
            return None

        start = 0 if (not found or full_scan) else state.last_offset

        if not full_scan and meta.size > 0 and start >= meta.size:
            state.last_size = meta.size
            state.last_etag = meta.etag
            state.last_mod_time = meta.mod_time
            self.state_store.set(website_id, target_key, state)
            result.targets_scanned += 1
            return None

        window = ParseWindow() if found else ParseWindow(min_ts=state.recent_cutoff_ts)
        batch = ParseResult()
        reader = self._open(src, target, start, cancel)
        try:
            if full_scan:
                with gzip.GzipFile(fileobj=reader, mode='rb') as gz:
                    stats = self.parser.parse(gz, website_id, target.source_id, batch, window, flush_partial=True)
            else:
                stats = self.parser.parse(reader, website_id, target.source_id, batch, window)
        except (OSError, EOFError, zlib.error) as e:
            raise ScanError(f"reading {target.key} failed: {e}") from e
        finally:
            reader.close()

        update_target_parsed_range(state, stats.min_ts, stats.max_ts)
        if meta.mod_time > state.last_timestamp:
            state.last_timestamp = meta.mod_time
        if full_scan:
            state.last_offset = meta.size
        else:
            state.last_offset = start + stats.bytes_consumed
        state.backfill_done = True
        state.last_size = meta.size
        state.last_etag = meta.etag
        state.last_mod_time = meta.mod_time
        self.state_store.set(website_id, target_key, state)

        result.records.merge(batch)
        result.targets_scanned += 1
        if stats.entries > 0:
            logger.info("Scanned %s for website %s: %d records", target.key, website_id, stats.entries)
        return stats

    def _open(self, src: LogSource, target: TargetRef, start: int, cancel: typing.Optional[threading.Event]):
        """
        Open a stream positioned at `start`.

        A backend that cannot range-read is re-read from the beginning (range
        from 0, or a whole-object stream) and the first `start` bytes are
        discarded, so the parser sees exactly the same bytes either way.
        """
        try:
            return self._wrap(src.open_range(target, start, -1), cancel)
        except RangeNotSupported as e:
            logger.debug("Range read of %s at %d not possible (%s), falling back to full stream", target.key, start, e)

        reader = None
        if start > 0:
            try:
                reader = src.open_range(target, 0, -1)
            except RangeNotSupported:
                reader = None
        if reader is None:
            reader = src.open_stream(target)
        reader = self._wrap(reader, cancel)
        try:
            skip_reader_bytes(reader, start)
        except BaseException:
            reader.close()
            raise
        return reader

    @staticmethod
    def _wrap(reader, cancel: typing.Optional[threading.Event]):
        if cancel is None:
            return reader
        return CancellableStream(reader, cancel)
