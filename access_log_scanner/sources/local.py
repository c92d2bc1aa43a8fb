"""
Local filesystem source.
"""

import glob
import logging
import os
import re
import typing

from access_log_scanner.errors import StreamNotSupported
from access_log_scanner.sources.base import (
    SOURCE_LOCAL,
    ClosingStream,
    LimitedReader,
    LogSource,
    TargetMeta,
    TargetRef,
    is_compressed_by_name,
)

logger = logging.getLogger(__name__)


def order_rotated(paths: typing.List[str], pattern: str) -> typing.List[str]:
    """
    Order log files from oldest rotated to the live file.

    Args:
        paths (list): Paths matched by the glob.
        pattern (str): Glob pattern (e.g., /var/log/nginx/access.log*).

    Returns:
        list: Paths ordered oldest first.

    Note:
        - Numeric rotations (access.log.3.gz, access.log.2, access.log.1) sort
          by descending sequence number.
        - Date rotations (access.log-20240601.gz) sort by ascending date.
        - Anything else the glob matched sorts by mtime, before the live file.
    """
    base = os.path.basename(pattern.split('*')[0])
    rot_regex = re.compile(
        re.escape(base) + r'(\.(\d+))?(\.gz)?$|'
        + re.escape(base) + r'(-\d{8,})(\.gz)?$'
    )

    def sort_key(path):
        fname = os.path.basename(path)
        m = rot_regex.match(fname) if base else None
        if m and m.group(2):
            return (0, -int(m.group(2)), fname)
        if m and m.group(4):
            return (1, int(m.group(4).lstrip('-')), fname)
        try:
            return (2, os.path.getmtime(path), fname)
        except OSError:
            return (2, 0, fname)

    live = [p for p in paths if os.path.basename(p) == base]
    rotated = sorted((p for p in paths if os.path.basename(p) != base), key=sort_key)
    return rotated + live


class LocalSource(LogSource):
    """
    Files on the local filesystem, selected by a glob `pattern` or a literal `path`.

    Listing is best-effort: paths that vanish or cannot be stat'ed between the
    glob and the stat are skipped. Opening a missing file raises.
    """

    type = SOURCE_LOCAL

    def __init__(
        self,
        website_id: str,
        source_id: str,
        path: str = "",
        pattern: str = "",
        compression: str = "",
        range_policy: str = "auto",
        mode: str = "poll",
    ):
        super().__init__(website_id, source_id, compression, range_policy, mode)
        self.path = path
        self.pattern = pattern

    def list_targets(self) -> typing.List[TargetRef]:
        if self.pattern:
            paths = order_rotated(glob.glob(self.pattern), self.pattern)
        elif self.path:
            paths = [self.path]
        else:
            paths = []

        targets = []
        for path in paths:
            try:
                st = os.stat(path)
            except OSError as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            if not os.path.isfile(path):
                continue
            targets.append(self.make_target(path, size=st.st_size, mod_time=int(st.st_mtime)))
        return targets

    def open_range(self, target: TargetRef, start: int, end: int = -1):
        self.check_range_policy(start)
        f = open(target.key, 'rb')
        try:
            if start > 0:
                f.seek(start)
        except OSError:
            f.close()
            raise
        if end > 0 and end > start:
            return ClosingStream(LimitedReader(f, end - start), [f])
        return f

    def open_stream(self, target: TargetRef):
        raise StreamNotSupported(f"local source {self.id} only supports range reads")

    def stat(self, target: TargetRef) -> TargetMeta:
        st = os.stat(target.key)
        return TargetMeta(
            size=st.st_size,
            mod_time=int(st.st_mtime),
            compressed=is_compressed_by_name(target.key, self.compression),
        )
