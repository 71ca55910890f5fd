"""CLI integration tests via Click's CliRunner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from agentmux import __version__
from agentmux.cli.main import cli
from agentmux.core.store.database import Database
from agentmux.core.store.history import KIND_INPUT, KIND_OUTPUT
from agentmux.core.store.migrations import LATEST_SCHEMA_VERSION


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "history.db"
    monkeypatch.setenv("AGENTMUX_DB_PATH", str(path))
    monkeypatch.setenv("AGENTMUX_MULTIPLEXER", "0")
    return path


@pytest.fixture
def seeded_db(db_path: Path) -> Path:
    db = Database(db_path)
    db.connect()
    db.record_create("sess_live", "alice", "/wt/a", "/wt/a", "claude")
    db.record_create("sess_done", "bob", None, "/src", "codex")
    db.append_lines(
        [
            ("sess_live", "ls -la", KIND_INPUT),
            ("sess_live", "total 0", KIND_OUTPUT),
            ("sess_live", "[bold] not markup", KIND_OUTPUT),
        ]
    )
    db.record_close("sess_done", 0)
    db.close()
    return db_path


def _invoke(runner: CliRunner, *args: str):
    return runner.invoke(cli, ["--log-level", "ERROR", *args])


class TestVersion:
    def test_version_flag(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert f"agentmux {__version__}" in result.output

    def test_version_json(self, runner: CliRunner) -> None:
        result = _invoke(runner, "version", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["agentmux"] == __version__
        assert set(data) == {"agentmux", "python", "platform", "arch"}

    def test_version_text(self, runner: CliRunner) -> None:
        result = _invoke(runner, "version")
        assert result.exit_code == 0
        assert "Python" in result.output


class TestDoctor:
    def test_json_report(self, runner: CliRunner, db_path: Path) -> None:
        result = _invoke(runner, "doctor", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        names = [c["name"] for c in data["checks"]]
        assert names == ["Python version", "Platform", "ptyprocess", "Config file", "tmux", "Database"]
        by_name = {c["name"]: c for c in data["checks"]}
        assert by_name["tmux"]["status"] == "skip"
        assert by_name["Database"]["status"] == "skip"
        assert by_name["Config file"]["status"] == "skip"

    def test_existing_database_schema(self, runner: CliRunner, seeded_db: Path) -> None:
        result = _invoke(runner, "doctor", "--json")
        by_name = {c["name"]: c for c in json.loads(result.output)["checks"]}
        assert by_name["Database"]["status"] == "pass"
        assert f"schema v{LATEST_SCHEMA_VERSION}" in by_name["Database"]["detail"]

    def test_text_report(self, runner: CliRunner) -> None:
        result = _invoke(runner, "doctor")
        assert result.exit_code == 0
        assert "agentmux doctor" in result.output


class TestConfigCommands:
    def test_init_then_show(self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        cfg = tmp_path / "cfg" / "config.toml"
        monkeypatch.setenv("AGENTMUX_CONFIG", str(cfg))

        result = _invoke(runner, "config", "init")
        assert result.exit_code == 0
        assert cfg.exists()

        again = _invoke(runner, "config", "init")
        assert again.exit_code == 1
        assert "already exists" in again.output

        forced = _invoke(runner, "config", "init", "--force")
        assert forced.exit_code == 0

        shown = _invoke(runner, "config", "show", "--json")
        assert shown.exit_code == 0
        data = json.loads(shown.output)
        assert data["sessions"]["max_per_owner"] == 20
        assert data["multiplexer"]["prefix"] == "agentmux_"

    def test_show_reports_config_errors(self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENTMUX_CONFIG", str(tmp_path / "missing.toml"))
        result = _invoke(runner, "config", "show")
        assert result.exit_code == 2


class TestSessionsCommands:
    def test_list_empty(self, runner: CliRunner, db_path: Path) -> None:
        result = _invoke(runner, "sessions", "list")
        assert result.exit_code == 0
        assert "No active sessions." in result.output

    def test_group_defaults_to_list(self, runner: CliRunner, db_path: Path) -> None:
        result = _invoke(runner, "sessions")
        assert result.exit_code == 0
        assert "No active sessions." in result.output

    def test_list_json_active_only(self, runner: CliRunner, seeded_db: Path) -> None:
        result = _invoke(runner, "sessions", "list", "--json")
        assert result.exit_code == 0
        rows = json.loads(result.output)
        assert [r["id"] for r in rows] == ["sess_live"]
        assert rows[0]["tmux"] is None
        assert rows[0]["attached"] is False

    def test_list_all(self, runner: CliRunner, seeded_db: Path) -> None:
        result = _invoke(runner, "sessions", "list", "--json", "--all")
        rows = json.loads(result.output)
        assert {r["id"]: r["status"] for r in rows} == {"sess_live": "active", "sess_done": "closed"}

    def test_history(self, runner: CliRunner, seeded_db: Path) -> None:
        result = _invoke(runner, "sessions", "history", "sess_live")
        assert result.exit_code == 0
        assert "ls -la" in result.output
        assert "total 0" in result.output
        assert "[bold] not markup" in result.output

    def test_history_json_tail(self, runner: CliRunner, seeded_db: Path) -> None:
        result = _invoke(runner, "sessions", "history", "sess_live", "--json", "--lines", "2")
        rows = json.loads(result.output)
        assert [r["line_number"] for r in rows] == [2, 3]

    def test_history_unknown_session(self, runner: CliRunner, seeded_db: Path) -> None:
        result = _invoke(runner, "sessions", "history", "sess_nope")
        assert result.exit_code == 4

    def test_history_without_database(self, runner: CliRunner, db_path: Path) -> None:
        result = _invoke(runner, "sessions", "history", "sess_live")
        assert result.exit_code == 4

    def test_capture_without_tmux(self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        cfg = tmp_path / "config.toml"
        cfg.write_text('[multiplexer]\nbinary = "agentmux-no-such-tmux-binary"\n', encoding="utf-8")
        monkeypatch.setenv("AGENTMUX_CONFIG", str(cfg))

        result = _invoke(runner, "sessions", "capture", "sess_live")
        assert result.exit_code == 7

    def test_kill_without_tmux(self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        cfg = tmp_path / "config.toml"
        cfg.write_text('[multiplexer]\nbinary = "agentmux-no-such-tmux-binary"\n', encoding="utf-8")
        monkeypatch.setenv("AGENTMUX_CONFIG", str(cfg))

        result = _invoke(runner, "sessions", "kill", "sess_live")
        assert result.exit_code == 7


class TestRun:
    def test_requires_a_terminal(self, runner: CliRunner, db_path: Path) -> None:
        result = _invoke(runner, "run", "--no-multiplexer")
        assert result.exit_code == 3
        assert "interactive terminal" in result.output

    def test_config_error(self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENTMUX_CONFIG", str(tmp_path / "missing.toml"))
        result = _invoke(runner, "run")
        assert result.exit_code == 2
