"""
Push ingestion boundary.

Agents tailing files on web servers push batches of raw lines. An agent
resubmits a whole batch on any non-2xx response without knowing which lines
landed, so every line is checked against the shared DedupCache before it is
parsed.
"""

import dataclasses
import hashlib
import io
import logging
import typing

from access_log_scanner.dedup import DedupCache
from access_log_scanner.parser import LineParser, ParseResult, ParseWindow

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class IngestResult:
    accepted: int = 0
    duplicates: int = 0
    records: ParseResult = dataclasses.field(default_factory=ParseResult)

    @property
    def entries(self) -> int:
        return self.records.entries


def line_fingerprint(website_id: str, source_id: str, line: str) -> str:
    h = hashlib.sha1()
    for part in (website_id, source_id, line):
        h.update(part.encode('utf-8', errors='replace'))
        h.update(b"\x00")
    return h.hexdigest()


class IngestBoundary:
    """
    Accepts pushed lines, drops repeats seen within the dedup TTL, parses the rest.

    Args:
        dedup (DedupCache): Shared seen-set.
        parser (LineParser, optional): Line parser; defaults to LineParser().
    """

    def __init__(self, dedup: DedupCache, parser: typing.Optional[LineParser] = None):
        self.dedup = dedup
        self.parser = parser or LineParser()

    def accept(
        self,
        website_id: str,
        source_id: str,
        lines: typing.Iterable[str],
        window: typing.Optional[ParseWindow] = None,
    ) -> IngestResult:
        """
        Ingest one pushed batch.

        Args:
            website_id (str): Website the lines belong to.
            source_id (str): Agent source id.
            lines (iterable): Raw log lines, with or without trailing newlines.
            window (ParseWindow, optional): Lower timestamp bound for records.

        Returns:
            IngestResult: Counts of accepted and duplicate lines plus parsed records.
        """
        result = IngestResult()
        fresh = []
        for line in lines:
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            if self.dedup.seen(line_fingerprint(website_id, source_id, line)):
                result.duplicates += 1
                continue
            fresh.append(line)
        result.accepted = len(fresh)

        if fresh:
            payload = io.BytesIO(("\n".join(fresh) + "\n").encode('utf-8'))
            self.parser.parse(payload, website_id, source_id, result.records, window, flush_partial=True)
        if result.duplicates:
            logger.info(
                "Ingested batch for %s/%s: %d accepted, %d duplicates dropped",
                website_id, source_id, result.accepted, result.duplicates,
            )
        return result
