"""
Per-target read cursors and the stores that persist them.

State is keyed by website and by "<source_id>:<key>". The scanner is the
only writer for a given website, so stores only need to keep independent
keys from interfering with each other.
"""

import abc
import dataclasses
import fcntl
import json
import logging
import os
import tempfile
import threading
import typing
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class TargetState:
    """
    Persisted cursor for one target. Timestamps are unix seconds, 0 means unset.

    Attributes:
        last_offset (int): Bytes consumed from the start of the target.
        last_size (int): Size observed on the last pass.
        last_etag (str): Entity tag observed on the last pass.
        last_mod_time (int): Modification time observed on the last pass.
        parsed_min_ts (int): Earliest record timestamp parsed so far.
        parsed_max_ts (int): Latest record timestamp parsed so far.
        first_timestamp (int): Earliest timestamp ever observed; only widens.
        last_timestamp (int): Latest timestamp ever observed; only widens.
        recent_cutoff_ts (int): Backfill floor set on first encounter.
        backfill_done (bool): At least one pass has completed.
    """
    last_offset: int = 0
    last_size: int = 0
    last_etag: str = ""
    last_mod_time: int = 0
    parsed_min_ts: int = 0
    parsed_max_ts: int = 0
    first_timestamp: int = 0
    last_timestamp: int = 0
    recent_cutoff_ts: int = 0
    backfill_done: bool = False

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TargetState":
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def build_target_state_key(source_id: str, key: str) -> str:
    if not source_id:
        return key
    return f"{source_id}:{key}"


class StateStore(abc.ABC):
    """Key-value access contract for target state."""

    @abc.abstractmethod
    def get(self, website_id: str, key: str) -> typing.Optional[TargetState]:
        """Return the stored state, or None if the target has never been scanned."""

    @abc.abstractmethod
    def set(self, website_id: str, key: str, state: TargetState) -> None:
        """Store state for one target, replacing any previous value."""


class MemoryStateStore(StateStore):
    """Thread-safe in-process store. Returns copies so callers cannot alias stored state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: typing.Dict[str, typing.Dict[str, TargetState]] = {}

    def get(self, website_id: str, key: str) -> typing.Optional[TargetState]:
        with self._lock:
            state = self._data.get(website_id, {}).get(key)
            return dataclasses.replace(state) if state is not None else None

    def set(self, website_id: str, key: str, state: TargetState) -> None:
        with self._lock:
            self._data.setdefault(website_id, {})[key] = dataclasses.replace(state)

    def keys(self, website_id: str) -> typing.List[str]:
        with self._lock:
            return sorted(self._data.get(website_id, {}))


class JsonStateStore(StateStore):
    """
    One JSON file per website under a state directory.

    Args:
        state_dir (str): Directory for state files (created if missing).

    Note:
        - Each set() is a read-modify-write of the website's file under an
          exclusive flock on "<website>.json.lock".
        - The file is replaced atomically, so a crash mid-write leaves the
          previous contents intact.
    """

    def __init__(self, state_dir: str):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, website_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in website_id)
        return self.state_dir / f"{safe}.json"

    def _load(self, path: Path) -> dict:
        if not path.exists():
            return {}
        with open(path, 'r') as f:
            data = json.load(f)
        return data.get("targets", {})

    def load_all(self, website_id: str) -> typing.Dict[str, TargetState]:
        """Load every target state for a website."""
        return {k: TargetState.from_dict(v) for k, v in self._load(self._path(website_id)).items()}

    def get(self, website_id: str, key: str) -> typing.Optional[TargetState]:
        raw = self._load(self._path(website_id)).get(key)
        if raw is None:
            return None
        return TargetState.from_dict(raw)

    def set(self, website_id: str, key: str, state: TargetState) -> None:
        path = self._path(website_id)
        with open(str(path) + ".lock", 'w') as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                targets = self._load(path)
                targets[key] = state.to_dict()
                fd, tmp = tempfile.mkstemp(dir=str(self.state_dir), prefix=path.name, suffix=".tmp")
                try:
                    with os.fdopen(fd, 'w') as f:
                        json.dump({"website_id": website_id, "targets": targets}, f, indent=2, sort_keys=True)
                    os.replace(tmp, path)
                except BaseException:
                    if os.path.exists(tmp):
                        os.unlink(tmp)
                    raise
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)
        logger.debug("Saved state for %s/%s (offset %d)", website_id, key, state.last_offset)
