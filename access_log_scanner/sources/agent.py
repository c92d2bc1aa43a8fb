"""
Push-only agent source.

Agents tail files on the web server and push lines to the ingestion
boundary. There is nothing to pull, so every read operation is unsupported.
"""

import typing

from access_log_scanner.errors import RangeNotSupported, StreamNotSupported
from access_log_scanner.sources.base import SOURCE_AGENT, LogSource, TargetMeta, TargetRef


class AgentSource(LogSource):

    type = SOURCE_AGENT

    def list_targets(self) -> typing.List[TargetRef]:
        return []

    def open_range(self, target: TargetRef, start: int, end: int = -1):
        raise RangeNotSupported(f"agent source {self.id} is push-only")

    def open_stream(self, target: TargetRef):
        raise StreamNotSupported(f"agent source {self.id} is push-only")

    def stat(self, target: TargetRef) -> TargetMeta:
        raise StreamNotSupported(f"agent source {self.id} is push-only")
