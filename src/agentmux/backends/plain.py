"""Plain backend: one direct PTY child per session, not persistent."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from agentmux.backends.base import BackendRegistry, SessionBackend
from agentmux.os.tty import spawn
from agentmux.os.tty.base import BaseTTY


@BackendRegistry.register("plain")
class PlainBackend(SessionBackend):
    persistent = False

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
        return await spawn(
            command,
            args,
            working_directory=working_directory,
            cols=cols,
            rows=rows,
            env=env,
            session_id=session_id,
        )

    async def terminate(self, session_id: str, handle: BaseTTY | None) -> None:
        if handle is not None:
            handle.kill()
