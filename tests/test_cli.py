"""End-to-end tests for the command line driver."""

from __future__ import annotations

import json
import time

import pytest

from access_log_scanner import cli
from access_log_scanner.sources import LocalSource
from fakes import clf_lines


@pytest.fixture(autouse=True)
def quiet_process_setup(monkeypatch) -> None:
    monkeypatch.setattr(cli, "install_signal_handlers", lambda cancel: None)
    monkeypatch.setattr(cli, "setup_logging", lambda debug=False: None)


def write_config(tmp_path, source_yaml: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(
        "websites:\n"
        "  - id: main\n"
        "    sources:\n"
        + source_yaml
    )
    return str(path)


def local_source(pattern: str) -> str:
    return (
        "      - id: nginx\n"
        "        type: local\n"
        f"        pattern: {pattern}\n"
    )


class TestMain:
    def test_once_scans_and_persists_state(self, tmp_path) -> None:
        logs = tmp_path / "logs"
        logs.mkdir()
        now = int(time.time())
        data = clf_lines(now - 60, now - 30)
        (logs / "access.log").write_bytes(data)
        state_dir = tmp_path / "state"
        config = write_config(tmp_path, local_source(str(logs / "access.log*")))

        rc = cli.main(["--config", config, "--state-dir", str(state_dir), "--once"])

        assert rc == 0
        saved = json.loads((state_dir / "main.json").read_text())
        target = saved["targets"][f"nginx:{logs / 'access.log'}"]
        assert target["last_offset"] == len(data)
        assert target["backfill_done"] is True

    def test_failed_pass_exits_one(self, tmp_path) -> None:
        config = write_config(
            tmp_path,
            "      - id: edge\n"
            "        type: http\n"
            "        url: http://127.0.0.1:9/access.log\n"
            "        timeout_seconds: 1\n",
        )

        rc = cli.main(["--config", config, "--state-dir", str(tmp_path / "state"), "--once"])

        assert rc == 1

    def test_missing_config(self, tmp_path) -> None:
        assert cli.main(["--config", str(tmp_path / "nope.yaml"), "--once"]) == 2

    def test_unknown_website(self, tmp_path) -> None:
        config = write_config(tmp_path, local_source(str(tmp_path / "*.log")))
        rc = cli.main(["--config", config, "--state-dir", str(tmp_path / "state"), "--website", "other", "--once"])
        assert rc == 2

    def test_periodic_passes_reuse_sources_and_close_them(self, tmp_path, monkeypatch) -> None:
        logs = tmp_path / "logs"
        logs.mkdir()
        (logs / "access.log").write_bytes(clf_lines(int(time.time()) - 30))
        config = write_config(tmp_path, local_source(str(logs / "access.log*")))
        with open(config, "a") as f:
            f.write("defaults:\n  interval_seconds: 0\n")

        built = []
        real_build = cli.build_sources

        def counting_build(cfg, website_id):
            sources = real_build(cfg, website_id)
            built.extend(sources)
            return sources

        passes = []
        real_run_pass = cli.run_pass

        def two_passes(sources, scanner, cancel):
            results = real_run_pass(sources, scanner, cancel)
            passes.append(sources)
            if len(passes) == 2:
                cancel.set()
            return results

        closed = []
        monkeypatch.setattr(cli, "build_sources", counting_build)
        monkeypatch.setattr(cli, "run_pass", two_passes)
        monkeypatch.setattr(LocalSource, "close", lambda self: closed.append(self))

        rc = cli.main(["--config", config, "--state-dir", str(tmp_path / "state")])

        assert rc == 0
        assert len(passes) == 2
        assert len(built) == 1
        assert passes[0]["main"][0] is passes[1]["main"][0] is built[0]
        assert closed == built
