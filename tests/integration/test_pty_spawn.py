"""
Integration tests against real pseudo-terminals (and tmux, when installed).

POSIX only. Each test bounds its waits so a hung child fails the test
instead of the run.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import sys
import uuid
from pathlib import Path

import pytest

from agentmux.backends import PlainBackend, TmuxBackend
from agentmux.core.events import SessionDestroyed, SessionExit, SessionStateChanged
from agentmux.core.exceptions import WriteToDeadSessionError
from agentmux.core.session.models import OwnerKey
from agentmux.core.session.registry import SessionRegistry
from agentmux.core.state.models import SessionState
from agentmux.os.tmux import TmuxClient
from agentmux.os.tty import spawn
from agentmux.os.tty.base import PTYConfig
from agentmux.os.tty.posix import PosixTTY

pytestmark = [
    pytest.mark.posix,
    pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX pty"),
]

TIMEOUT = 10.0


def _collect(tty) -> tuple[list[str], asyncio.Future]:
    output: list[str] = []
    exited: asyncio.Future = asyncio.get_running_loop().create_future()
    tty.register_output_callback(output.append)
    tty.register_exit_callback(lambda code: exited.done() or exited.set_result(code))
    return output, exited


async def _wait_for_text(output: list[str], needle: str) -> None:
    async def poll() -> None:
        while needle not in "".join(output):
            await asyncio.sleep(0.02)

    await asyncio.wait_for(poll(), TIMEOUT)


class TestPosixTTY:
    @pytest.mark.asyncio
    async def test_output_and_exit_code(self) -> None:
        tty = PosixTTY(PTYConfig(command=["/bin/sh", "-c", "echo hello; exit 3"]))
        await tty.start()
        output, exited = _collect(tty)

        assert await asyncio.wait_for(exited, TIMEOUT) == 3
        assert "hello" in "".join(output)
        assert not tty.is_alive()
        assert tty.exit_code == 3

    @pytest.mark.asyncio
    async def test_input_is_echoed_back(self) -> None:
        tty = PosixTTY(PTYConfig(command=["cat"]))
        await tty.start()
        output, exited = _collect(tty)

        await tty.write(b"ping\r")
        await _wait_for_text(output, "ping")

        tty.kill()
        await asyncio.wait_for(exited, TIMEOUT)

    @pytest.mark.asyncio
    async def test_kill_reports_signal_exit(self) -> None:
        tty = PosixTTY(PTYConfig(command=["sleep", "30"]))
        await tty.start()
        _, exited = _collect(tty)
        assert tty.pid() > 0

        tty.kill()

        assert await asyncio.wait_for(exited, TIMEOUT) == 128 + signal.SIGHUP
        with pytest.raises(WriteToDeadSessionError):
            await tty.write(b"late")
        tty.kill()  # already dead: no-op

    @pytest.mark.asyncio
    async def test_split_multibyte_character_is_reassembled(self) -> None:
        tty = PosixTTY(PTYConfig(command=["unused"]))
        loop = asyncio.get_running_loop()
        read_fd, write_fd = os.pipe()
        os.set_blocking(read_fd, False)
        tty._loop = loop
        tty._fd = read_fd
        output: list[str] = []
        tty.register_output_callback(output.append)
        loop.add_reader(read_fd, tty._on_readable)
        try:
            euro = "€".encode()
            os.write(write_fd, euro[:2])
            await asyncio.sleep(0.05)
            assert output == []

            os.write(write_fd, euro[2:] + b"ok")
            await _wait_for_text(output, "ok")
            assert "".join(output) == "€ok"
        finally:
            loop.remove_reader(read_fd)
            os.close(read_fd)
            os.close(write_fd)


class TestSpawn:
    @pytest.mark.asyncio
    async def test_working_directory_and_environment(self, tmp_path: Path) -> None:
        tty = await spawn(
            "sh",
            ["-c", 'pwd; echo "value=$AGENTMUX_TEST_VALUE"'],
            working_directory=str(tmp_path),
            cols=300,
            env={"AGENTMUX_TEST_VALUE": "42"},
        )
        output, exited = _collect(tty)

        assert await asyncio.wait_for(exited, TIMEOUT) == 0
        text = "".join(output)
        assert os.path.realpath(tmp_path) in text
        assert "value=42" in text


class TestPlainRegistry:
    @pytest.mark.asyncio
    async def test_prompt_answer_and_exit(self, tmp_path: Path) -> None:
        registry = SessionRegistry(PlainBackend())
        loop = asyncio.get_running_loop()
        waiting: asyncio.Future = loop.create_future()
        destroyed: asyncio.Future = loop.create_future()
        exits: list[SessionExit] = []

        def on_state(event: SessionStateChanged) -> None:
            if event.state == SessionState.WAITING_INPUT and not waiting.done():
                waiting.set_result(event)

        registry.events.subscribe(SessionStateChanged, on_state)
        registry.events.subscribe(SessionExit, exits.append)
        registry.events.subscribe(
            SessionDestroyed, lambda e: destroyed.done() or destroyed.set_result(e)
        )

        script = "printf 'Do you want to proceed? (y/n) '; read answer; echo \"got $answer\""
        session = await registry.create(OwnerKey("alice"), str(tmp_path), "sh", args=["-c", script])

        await asyncio.wait_for(waiting, TIMEOUT)
        assert session.state == SessionState.WAITING_INPUT

        await registry.write(session.session_id, "y\r")
        await asyncio.wait_for(destroyed, TIMEOUT)

        assert [e.exit_code for e in exits] == [0]
        assert session.destroyed
        assert len(registry) == 0
        await registry.shutdown()


# ---------------------------------------------------------------------------
# tmux (skipped when tmux is not installed)
# ---------------------------------------------------------------------------


@pytest.mark.skipif(shutil.which("tmux") is None, reason="tmux not installed")
class TestTmuxBackend:
    @pytest.mark.asyncio
    async def test_session_survives_detach_and_is_killed_on_destroy(self, tmp_path: Path) -> None:
        prefix = f"agentmuxtest{uuid.uuid4().hex[:6]}_"
        backend = TmuxBackend(TmuxClient(), prefix=prefix)
        registry = SessionRegistry(backend)
        session = await registry.create(
            OwnerKey("alice"), str(tmp_path), "sh", args=["-c", "echo tmux-ready; sleep 60"]
        )
        try:
            assert session.session_id in await backend.list_sessions()

            captured = ""
            for _ in range(100):
                captured = await backend.capture(session.session_id)
                if "tmux-ready" in captured:
                    break
                await asyncio.sleep(0.05)
            assert "tmux-ready" in captured

            await registry.shutdown()
            assert await backend.is_alive(session.session_id)
        finally:
            await backend.terminate(session.session_id, None)

        assert not await backend.is_alive(session.session_id)
