"""
Default line parser.

The scanner only relies on the parse() contract: it hands over a binary
stream and gets back the number of records, the bytes consumed and the
observed timestamp bounds. Field extraction beyond the timestamp is left to
downstream consumers of LogRecord.
"""

import dataclasses
import datetime
import logging
import re
import typing

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# nginx/Apache $time_local, e.g. [10/Oct/2000:13:55:36 -0700]
CLF_REGEX = re.compile(r'\[(\d{2}/[A-Za-z]{3}/\d{4}:\d{2}:\d{2}:\d{2} [+-]\d{4})\]')
CLF_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

ISO8601_REGEXES = [
    # With fractional seconds and timezone (Z or +-hh[:mm]) e.g. 2025-07-13T17:17:17.123+1000
    (re.compile(r'(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d+(?:Z|[+-]\d{2}:?\d{2}))'), "%Y-%m-%dT%H:%M:%S.%f%z"),
    # With fractional seconds, no timezone e.g. 2025-07-13T17:17:17.123
    (re.compile(r'(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d+)'), "%Y-%m-%dT%H:%M:%S.%f"),
    # Without fractional seconds, with timezone e.g. 2025-07-13T17:17:17+1000
    (re.compile(r'(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:Z|[+-]\d{2}:?\d{2}))'), "%Y-%m-%dT%H:%M:%S%z"),
    # Without fractional seconds, no timezone e.g. 2025-07-13T17:17:17
    (re.compile(r'(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})'), "%Y-%m-%dT%H:%M:%S"),
]


@dataclasses.dataclass
class LogRecord:
    website_id: str
    source_id: str
    timestamp: int
    line: str


@dataclasses.dataclass
class ParseWindow:
    """Records older than min_ts (unix seconds) are dropped; 0 disables the bound."""
    min_ts: int = 0


@dataclasses.dataclass
class ParseStats:
    entries: int = 0
    bytes_consumed: int = 0
    min_ts: int = 0
    max_ts: int = 0


@dataclasses.dataclass
class ParseResult:
    """Accumulator the parser appends records to."""
    records: typing.List[LogRecord] = dataclasses.field(default_factory=list)

    @property
    def entries(self) -> int:
        return len(self.records)

    def merge(self, other: "ParseResult") -> None:
        self.records.extend(other.records)


def extract_timestamp(line: str) -> typing.Optional[int]:
    """
    Extract a timestamp from an access log line.

    Args:
        line (str): Log line.

    Returns:
        int or None: Unix seconds, or None if no known format matched.

    Note:
        - The common/combined log format time field is tried first.
        - ISO 8601 timestamps without an offset are taken as local time.
    """
    m = CLF_REGEX.search(line)
    if m:
        try:
            return int(datetime.datetime.strptime(m.group(1), CLF_FORMAT).timestamp())
        except ValueError as e:
            logger.debug("CLF timestamp parse failed for '%s': %s", m.group(1), e)

    for regex, fmt in ISO8601_REGEXES:
        m = regex.search(line)
        if m:
            ts = m.group(1)
            if ts.endswith('Z'):
                ts = ts[:-1] + '+0000'
            try:
                return int(datetime.datetime.strptime(ts, fmt).timestamp())
            except ValueError as e:
                logger.debug("ISO8601 timestamp parse failed for '%s' with format '%s': %s", ts, fmt, e)
    return None


class LineParser:
    """
    Splits a byte stream into lines and turns each into a LogRecord.

    Only newline-terminated lines are consumed. A trailing partial line is left
    for the next pass (the writer may still be appending to it) unless
    flush_partial is set, as it is for compressed objects and pushed batches.
    """

    def parse(
        self,
        stream,
        website_id: str,
        source_id: str,
        result: ParseResult,
        window: typing.Optional[ParseWindow] = None,
        flush_partial: bool = False,
    ) -> ParseStats:
        """
        Parse every complete line in a stream.

        Args:
            stream: Binary file-like object with read(n).
            website_id (str): Website the lines belong to.
            source_id (str): Source the lines came from.
            result (ParseResult): Accumulator for parsed records.
            window (ParseWindow, optional): Lower timestamp bound.
            flush_partial (bool): Also consume a final line without a newline.

        Returns:
            ParseStats: Records parsed, bytes consumed and timestamp bounds.
        """
        window = window or ParseWindow()
        stats = ParseStats()
        pending = b""
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            pending += chunk
            lines = pending.split(b"\n")
            pending = lines.pop()
            for raw in lines:
                stats.bytes_consumed += len(raw) + 1
                self._handle(raw, website_id, source_id, result, window, stats)
        if pending and flush_partial:
            stats.bytes_consumed += len(pending)
            self._handle(pending, website_id, source_id, result, window, stats)
        return stats

    def _handle(self, raw: bytes, website_id, source_id, result, window, stats) -> None:
        line = raw.rstrip(b"\r").decode('utf-8', errors='replace')
        if not line.strip():
            return
        ts = extract_timestamp(line)
        if ts is None:
            logger.warning("Skipped line from %s/%s: could not parse timestamp. Line: %r", website_id, source_id, line[:200])
            return
        if window.min_ts and ts < window.min_ts:
            return
        result.records.append(LogRecord(website_id=website_id, source_id=source_id, timestamp=ts, line=line))
        stats.entries += 1
        if stats.min_ts == 0 or ts < stats.min_ts:
            stats.min_ts = ts
        if ts > stats.max_ts:
            stats.max_ts = ts
