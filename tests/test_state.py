"""Tests for target state and the state stores."""

from __future__ import annotations

import json

from access_log_scanner.state import JsonStateStore, MemoryStateStore, TargetState, build_target_state_key


class TestTargetStateKey:
    def test_prefixes_source_id(self) -> None:
        assert build_target_state_key("nginx", "/var/log/access.log") == "nginx:/var/log/access.log"

    def test_empty_source_id(self) -> None:
        assert build_target_state_key("", "access.log") == "access.log"


class TestMemoryStateStore:
    def test_missing_key(self) -> None:
        assert MemoryStateStore().get("site", "src:a") is None

    def test_returns_copies(self) -> None:
        store = MemoryStateStore()
        state = TargetState(last_offset=10)
        store.set("site", "src:a", state)

        state.last_offset = 99
        got = store.get("site", "src:a")
        got.last_offset = 42

        assert store.get("site", "src:a").last_offset == 10

    def test_websites_are_isolated(self) -> None:
        store = MemoryStateStore()
        store.set("one", "src:a", TargetState(last_offset=1))
        store.set("two", "src:a", TargetState(last_offset=2))

        assert store.get("one", "src:a").last_offset == 1
        assert store.keys("two") == ["src:a"]


class TestJsonStateStore:
    def test_state_survives_a_new_store_instance(self, tmp_path) -> None:
        JsonStateStore(str(tmp_path)).set("site", "src:a", TargetState(last_offset=7, last_etag="e1", backfill_done=True))
        JsonStateStore(str(tmp_path)).set("site", "src:b", TargetState(last_offset=3))

        reopened = JsonStateStore(str(tmp_path))

        assert reopened.get("site", "src:a") == TargetState(last_offset=7, last_etag="e1", backfill_done=True)
        assert set(reopened.load_all("site")) == {"src:a", "src:b"}
        assert reopened.get("site", "src:c") is None
        assert reopened.get("other", "src:a") is None

    def test_file_layout(self, tmp_path) -> None:
        JsonStateStore(str(tmp_path)).set("www/main", "src:a", TargetState(last_offset=5))

        data = json.loads((tmp_path / "www_main.json").read_text())

        assert data["website_id"] == "www/main"
        assert data["targets"]["src:a"]["last_offset"] == 5
        assert not list(tmp_path.glob("*.tmp"))

    def test_unknown_fields_are_ignored(self, tmp_path) -> None:
        (tmp_path / "site.json").write_text(json.dumps({
            "website_id": "site",
            "targets": {"src:a": {"last_offset": 12, "legacy_field": "x"}},
        }))

        assert JsonStateStore(str(tmp_path)).get("site", "src:a") == TargetState(last_offset=12)
