from __future__ import annotations

import pytest

from access_log_scanner.scanner import Scanner
from access_log_scanner.state import MemoryStateStore
from fakes import NOW, FakeSource


@pytest.fixture()
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture()
def scanner(store: MemoryStateStore) -> Scanner:
    return Scanner(store, clock=lambda: NOW)


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()
