"""
tmux backend: each session is a detached tmux session named
``<prefix><session id>`` with a local ``attach-session -d`` PTY on top.

Killing the local handle only ends the attachment; the tmux session keeps
running until ``terminate()`` kills it by name.
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from agentmux.backends.base import BackendRegistry, SessionBackend
from agentmux.core.constants import CAPTURE_LINES, TMUX_PREFIX
from agentmux.core.exceptions import (
    MultiplexerCommandError,
    MultiplexerUnavailableError,
    ReattachFailedError,
    SpawnFailedError,
)
from agentmux.os.tmux import TmuxClient
from agentmux.os.tty import check_working_directory, resolve_executable, split_command
from agentmux.os.tty.base import BaseTTY

logger = structlog.get_logger()


@BackendRegistry.register("tmux")
class TmuxBackend(SessionBackend):
    persistent = True

    def __init__(
        self,
        client: TmuxClient | None = None,
        prefix: str = TMUX_PREFIX,
        capture_lines: int = CAPTURE_LINES,
    ) -> None:
        self.client = client or TmuxClient()
        self.prefix = prefix
        self.capture_lines = capture_lines

    def mux_name(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

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
        cwd = check_working_directory(working_directory)
        argv = split_command(command, args)
        resolve_executable(argv[0], env.get("PATH"))

        name = self.mux_name(session_id)
        try:
            await self.client.create_detached(name, cwd, cols, rows, shlex.join(argv), env)
        except (MultiplexerCommandError, MultiplexerUnavailableError) as exc:
            raise SpawnFailedError(f"tmux new-session failed: {exc}", session_id) from exc

        try:
            return await self.client.attach(name, cols, rows, session_id)
        except OSError as exc:
            await self._kill_quietly(session_id)
            raise SpawnFailedError(f"tmux attach failed: {exc}", session_id) from exc

    async def reattach(self, session_id: str, cols: int, rows: int) -> BaseTTY:
        name = self.mux_name(session_id)
        if not await self.client.exists(name):
            raise ReattachFailedError(f"tmux session {name} no longer exists", session_id)
        try:
            handle = await self.client.attach(name, cols, rows, session_id)
        except OSError as exc:
            raise ReattachFailedError(f"tmux attach failed: {exc}", session_id) from exc
        await self.client.resize(name, cols, rows)
        return handle

    async def terminate(self, session_id: str, handle: BaseTTY | None) -> None:
        if handle is not None:
            handle.kill()
        await self._kill_quietly(session_id)

    async def detach(self, session_id: str, handle: BaseTTY | None) -> None:
        # Ends our attach client only; the tmux session stays for the next start
        if handle is not None:
            handle.kill()

    async def resize(self, session_id: str, handle: BaseTTY | None, cols: int, rows: int) -> None:
        if handle is not None:
            handle.resize(cols, rows)
        await self.client.resize(self.mux_name(session_id), cols, rows)

    async def capture(self, session_id: str, max_lines: int = 0) -> str:
        """Captured pane of the session, or "" if its tmux session is gone."""
        try:
            return await self.client.capture(self.mux_name(session_id), max_lines or self.capture_lines)
        except MultiplexerCommandError as exc:
            logger.debug("capture_failed", session_id=session_id, error=exc.stderr)
            return ""

    async def is_alive(self, session_id: str) -> bool:
        return await self.client.exists(self.mux_name(session_id))

    async def list_sessions(self) -> list[str]:
        return [m.name.removeprefix(self.prefix) for m in await self.client.list_all(self.prefix)]

    async def _kill_quietly(self, session_id: str) -> None:
        try:
            await self.client.kill(self.mux_name(session_id))
        except (MultiplexerCommandError, MultiplexerUnavailableError) as exc:
            logger.debug("kill_failed", session_id=session_id, error=str(exc))

    def healthcheck(self) -> dict[str, Any]:
        return {**super().healthcheck(), "binary": self.client.binary, "prefix": self.prefix}
