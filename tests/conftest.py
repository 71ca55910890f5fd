"""
Shared fixtures: in-memory PTY handles and session backends.

Engine tests run against ``FakeTTY`` / ``FakeBackend`` so they need neither
a real pseudo-terminal nor tmux. A FakeTTY produces output and exits only
when the test tells it to (``emit()`` / ``exit()``).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from agentmux.backends.base import SessionBackend
from agentmux.core.exceptions import ReattachFailedError, WriteToDeadSessionError
from agentmux.core.store.history import HistoryRecord
from agentmux.os.tty.base import BaseTTY, PTYConfig


class FakeTTY(BaseTTY):
    def __init__(self, session_id: str = "", pid: int = 4242) -> None:
        super().__init__(PTYConfig(command=["fake-agent"]), session_id)
        self.alive = False
        self.killed = False
        self.writes: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self._pid = pid

    async def start(self) -> None:
        self.alive = True

    def kill(self) -> None:
        self.killed = True
        self.alive = False

    def is_alive(self) -> bool:
        return self.alive and not self.exited

    def pid(self) -> int:
        return self._pid if self.alive else -1

    async def write(self, data: bytes) -> None:
        if not self.is_alive():
            raise WriteToDeadSessionError("process is not running", self.session_id)
        self.writes.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.sizes.append((cols, rows))

    # Test controls
    def emit(self, chunk: str) -> None:
        self._notify_output(chunk)

    def exit(self, code: int | None = 0) -> None:
        self.alive = False
        self._notify_exit(code)


class FakeBackend(SessionBackend):
    name = "fake"

    def __init__(self, persistent: bool = False) -> None:
        self.persistent = persistent
        self.handles: dict[str, list[FakeTTY]] = {}
        self.launches: list[dict] = []
        self.live: set[str] = set()
        self.captures: dict[str, str] = {}
        self.terminated: list[str] = []
        self.detached: list[str] = []
        self.launch_error: Exception | None = None

    async def launch(
        self,
        session_id: str,
        command: str,
        args: Sequence[str],
        working_directory: str,
        cols: int,
        rows: int,
        env: Mapping[str, str],
    ) -> BaseTTY:
        if self.launch_error is not None:
            raise self.launch_error
        self.launches.append(
            {
                "session_id": session_id,
                "command": command,
                "args": list(args),
                "working_directory": working_directory,
                "cols": cols,
                "rows": rows,
                "env": dict(env),
            }
        )
        if self.persistent:
            self.live.add(session_id)
        return await self._new_handle(session_id)

    async def reattach(self, session_id: str, cols: int, rows: int) -> BaseTTY:
        if not self.persistent or session_id not in self.live:
            raise ReattachFailedError("gone", session_id)
        return await self._new_handle(session_id)

    async def terminate(self, session_id: str, handle: BaseTTY | None) -> None:
        self.terminated.append(session_id)
        self.live.discard(session_id)
        if handle is not None:
            handle.kill()

    async def detach(self, session_id: str, handle: BaseTTY | None) -> None:
        self.detached.append(session_id)
        if handle is not None:
            handle.kill()

    async def capture(self, session_id: str, max_lines: int) -> str:
        return self.captures.get(session_id, "")

    async def is_alive(self, session_id: str) -> bool:
        return session_id in self.live

    async def list_sessions(self) -> list[str]:
        return sorted(self.live)

    def last_handle(self, session_id: str) -> FakeTTY:
        return self.handles[session_id][-1]

    async def _new_handle(self, session_id: str) -> FakeTTY:
        handle = FakeTTY(session_id)
        await handle.start()
        self.handles.setdefault(session_id, []).append(handle)
        return handle


class RecordingHistory:
    """HistoryStore that keeps every call in memory, or fails every call."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.created: list[str] = []
        self.lines: list[tuple[str, str, str]] = []
        self.closed: list[tuple[str, int | None]] = []
        self.lost: list[str] = []
        self.active: list[HistoryRecord] = []

    def _check(self) -> None:
        if self.fail:
            raise OSError("disk full")

    def record_create(self, session_id, user, worktree, working_directory, command, backend="plain"):
        self._check()
        self.created.append(session_id)

    def append_line(self, session_id, content, kind="output"):
        self._check()
        self.lines.append((session_id, content, kind))

    def record_close(self, session_id, exit_code=None):
        self._check()
        self.closed.append((session_id, exit_code))

    def record_lost(self, session_id):
        self._check()
        self.lost.append(session_id)

    def list_active(self):
        self._check()
        return list(self.active)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real config directory and AGENTMUX_* overrides."""
    import os

    for key in list(os.environ):
        if key.startswith("AGENTMUX_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


@pytest.fixture(autouse=True)
def _restore_logging():
    """Drop root handlers a test installed; CLI runs call configure_logging()."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
    root.setLevel(level)


@pytest.fixture
def fake_tty_cls() -> type[FakeTTY]:
    return FakeTTY


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def persistent_backend() -> FakeBackend:
    return FakeBackend(persistent=True)


@pytest.fixture
def history() -> RecordingHistory:
    return RecordingHistory()


@pytest.fixture
def failing_history() -> RecordingHistory:
    return RecordingHistory(fail=True)
