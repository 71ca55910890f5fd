"""Unit tests for the tmux client: argument vectors, parsing, capture post-processing."""

from __future__ import annotations

import shlex
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from agentmux.core.exceptions import MultiplexerCommandError, MultiplexerUnavailableError
from agentmux.os.tmux import (
    TmuxClient,
    collapse_status_lines,
    looks_like_dev_server,
    wrap_command,
)

STATUS_1 = '[agentmux@host: 0:0 "bash" 12:34 18-Oct-26]'
STATUS_2 = '[agentmux@host: 0:0 "bash" 12:35 18-Oct-26]'


def _client(result: tuple[int, str, str] = (0, "", "")) -> TmuxClient:
    client = TmuxClient("tmux")
    client._run = AsyncMock(return_value=result)  # type: ignore[method-assign]
    return client


# ---------------------------------------------------------------------------
# Command wrapping
# ---------------------------------------------------------------------------


class TestWrapCommand:
    @pytest.mark.parametrize(
        "command",
        ["npm run dev", "yarn start", "pnpm serve", "./scripts/start.sh", "bun run build"],
    )
    def test_dev_servers_detected(self, command: str) -> None:
        assert looks_like_dev_server(command)

    @pytest.mark.parametrize("command", ["claude", "claude --verbose", "codex --full-auto"])
    def test_agents_not_wrapped(self, command: str) -> None:
        assert not looks_like_dev_server(command)
        assert wrap_command(command) == command

    def test_wrapped_command_drops_to_shell(self) -> None:
        argv = shlex.split(wrap_command("npm run dev"))
        assert argv[:2] == ["bash", "-c"]
        script = argv[2]
        assert script.startswith("npm run dev; ")
        assert "echo '===='" in script
        assert script.endswith("exec bash")


# ---------------------------------------------------------------------------
# Status line collapsing
# ---------------------------------------------------------------------------


class TestCollapseStatusLines:
    def test_single_status_line_is_kept(self) -> None:
        text = f"output\n{STATUS_1}\n"
        assert collapse_status_lines(text) == text

    def test_repeated_status_lines_keep_last(self) -> None:
        text = f"one\n{STATUS_1}\ntwo\n{STATUS_1}\nthree\n{STATUS_2}\n"
        assert collapse_status_lines(text) == f"one\ntwo\nthree\n{STATUS_2}\n"

    def test_coloured_status_lines_are_recognised(self) -> None:
        text = f"\x1b[42m{STATUS_1}\x1b[0m\nbody\n\x1b[42m{STATUS_2}\x1b[0m"
        assert collapse_status_lines(text) == f"body\n\x1b[42m{STATUS_2}\x1b[0m"

    def test_ordinary_text_untouched(self) -> None:
        text = "12:34 build finished\n[INFO] done\n"
        assert collapse_status_lines(text) == text


# ---------------------------------------------------------------------------
# Invocations
# ---------------------------------------------------------------------------


class TestInvocations:
    @pytest.mark.asyncio
    async def test_create_detached_argv(self) -> None:
        client = _client()
        await client.create_detached(
            "agentmux_sess_1", "/src/app", 100, 30, "claude --verbose", {"AGENTMUX_SESSION_ID": "sess_1"}
        )
        client._run.assert_awaited_once_with(
            "new-session",
            "-d",
            "-s",
            "agentmux_sess_1",
            "-c",
            "/src/app",
            "-x",
            "100",
            "-y",
            "30",
            "-e",
            "AGENTMUX_SESSION_ID=sess_1",
            "claude --verbose",
        )

    @pytest.mark.asyncio
    async def test_capture_argv_and_collapse(self) -> None:
        client = _client((0, f"a\n{STATUS_1}\nb\n{STATUS_2}\n", ""))
        text = await client.capture("agentmux_sess_1", 500)
        client._run.assert_awaited_once_with(
            "capture-pane", "-p", "-e", "-J", "-t", "=agentmux_sess_1:", "-S", "-500"
        )
        assert text == f"a\nb\n{STATUS_2}\n"

    @pytest.mark.asyncio
    async def test_kill_targets_exact_name(self) -> None:
        client = _client()
        await client.kill("agentmux_sess_1")
        client._run.assert_awaited_once_with("kill-session", "-t", "=agentmux_sess_1", check=False)

    @pytest.mark.asyncio
    async def test_attach_targets_exact_name(self, monkeypatch: pytest.MonkeyPatch) -> None:
        started: list = []

        class _RecordingTTY:
            def __init__(self, config, session_id: str = "") -> None:
                self.config = config

            async def start(self) -> None:
                started.append(self.config)

        monkeypatch.setattr("agentmux.os.tmux.PosixTTY", _RecordingTTY)
        await TmuxClient("tmux").attach("agentmux_sess_1", 100, 30, "sess_1")

        [config] = started
        assert config.command == ["tmux", "attach-session", "-d", "-t", "=agentmux_sess_1"]
        assert config.env["TMUX"] == ""
        assert (config.cols, config.rows) == (100, 30)

    @pytest.mark.asyncio
    async def test_kill_tolerates_missing_session(self) -> None:
        client = _client((1, "", "can't find session: agentmux_sess_1\n"))
        await client.kill("agentmux_sess_1")

    @pytest.mark.asyncio
    async def test_kill_reports_other_failures(self) -> None:
        client = _client((1, "", "permission denied\n"))
        with pytest.raises(MultiplexerCommandError) as exc_info:
            await client.kill("agentmux_sess_1")
        assert exc_info.value.returncode == 1
        assert exc_info.value.stderr == "permission denied"

    @pytest.mark.asyncio
    async def test_exists(self) -> None:
        assert await _client((0, "", "")).exists("agentmux_x")
        assert not await _client((1, "", "can't find session")).exists("agentmux_x")

    @pytest.mark.asyncio
    async def test_list_all_filters_and_parses(self) -> None:
        out = (
            "agentmux_sess_a:1700000000:1\n"
            "personal:1700000000:0\n"
            "agentmux_sess_b:garbage:0\n"
            "malformed\n"
        )
        client = _client((0, out, ""))
        found = await client.list_all("agentmux_")
        assert [m.name for m in found] == ["agentmux_sess_a", "agentmux_sess_b"]
        assert found[0].attached == 1
        assert found[0].created_at == datetime.fromtimestamp(1700000000, tz=UTC)
        assert found[1].created_at is None

    @pytest.mark.asyncio
    async def test_list_all_without_server(self) -> None:
        client = _client((1, "", "no server running on /tmp/tmux-1000/default\n"))
        assert await client.list_all("agentmux_") == []

    @pytest.mark.asyncio
    async def test_resize_ignores_errors(self) -> None:
        client = _client((1, "", "can't find window"))
        await client.resize("agentmux_x", 80, 24)
        client._run.assert_awaited_once_with(
            "resize-window", "-t", "=agentmux_x:", "-x", "80", "-y", "24", check=False
        )


class TestMissingBinary:
    @pytest.mark.asyncio
    async def test_probe_missing_binary(self) -> None:
        client = TmuxClient("agentmux-no-such-tmux-binary")
        with pytest.raises(MultiplexerUnavailableError):
            await client.probe()

    @pytest.mark.asyncio
    async def test_exists_is_false_without_binary(self) -> None:
        client = TmuxClient("agentmux-no-such-tmux-binary")
        assert not await client.exists("agentmux_x")

    @pytest.mark.asyncio
    async def test_probe_failing_command(self) -> None:
        client = TmuxClient("tmux")
        client._run = AsyncMock(  # type: ignore[method-assign]
            side_effect=MultiplexerCommandError(["tmux", "-V"], 1, "broken")
        )
        with pytest.raises(MultiplexerUnavailableError):
            await client.probe()
