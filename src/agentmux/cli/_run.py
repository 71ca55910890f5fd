"""agentmux run — start an agent session and relay this terminal to it."""

from __future__ import annotations

import asyncio
import getpass
import os
import shutil
import signal
import sys
import termios
import tty
from typing import BinaryIO

import click
from rich.console import Console

from agentmux.core.constants import ExitCode

console = Console(stderr=True)

DETACH_KEY = b"\x1c"  # Ctrl-\


@click.command("run", context_settings={"ignore_unknown_options": True})
@click.argument("agent_args", nargs=-1, type=click.UNPROCESSED)
@click.option("--cwd", default="", help="Worktree to run the agent in (default: current directory)")
@click.option("--command", "command", default="", help="Agent command (default: from config)")
@click.option("--user", default="", help="Session owner (default: current login name)")
@click.option("--attach", "attach_id", default="", help="Reattach to an existing tmux-backed session")
@click.option("--no-multiplexer", is_flag=True, default=False, help="Use a plain PTY, not tmux")
def run_cmd(
    agent_args: tuple[str, ...],
    cwd: str,
    command: str,
    user: str,
    attach_id: str,
    no_multiplexer: bool,
) -> None:
    """Start an agent session and attach this terminal to it. Ctrl-\\ detaches."""
    cmd_run(
        command=command,
        args=list(agent_args),
        cwd=cwd or os.getcwd(),
        user=user or getpass.getuser(),
        attach_id=attach_id,
        no_multiplexer=no_multiplexer,
        console=console,
    )


def cmd_run(
    *,
    command: str,
    args: list[str],
    cwd: str,
    user: str,
    attach_id: str,
    no_multiplexer: bool,
    console: Console,
) -> None:
    from agentmux.core.config import load_config
    from agentmux.core.exceptions import ConfigError

    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    if no_multiplexer:
        config.multiplexer.enabled = False

    if not sys.stdin.isatty():
        console.print("[red]Error:[/red] 'agentmux run' requires an interactive terminal (TTY).")
        sys.exit(ExitCode.ENV_ERROR)

    code = asyncio.run(
        _run_session(
            config,
            command=command,
            args=args,
            cwd=cwd,
            user=user,
            attach_id=attach_id,
            console=console,
        )
    )
    sys.exit(code)


async def _run_session(
    config,  # AgentMuxConfig
    *,
    command: str,
    args: list[str],
    cwd: str,
    user: str,
    attach_id: str,
    console: Console,
) -> int:
    from agentmux.core.daemon.manager import EngineManager
    from agentmux.core.exceptions import SessionError, SessionNotFoundError
    from agentmux.core.session.models import OwnerKey

    engine = EngineManager(config)
    registry = await engine.start()
    try:
        cols, rows = shutil.get_terminal_size()
        try:
            if attach_id:
                session = registry.get(attach_id)
                await registry.reattach(attach_id, cols, rows)
            else:
                session = await registry.create(
                    OwnerKey(user, os.path.abspath(cwd)),
                    cwd,
                    command or None,
                    cols=cols,
                    rows=rows,
                    args=args or None,
                )
        except SessionError as exc:
            console.print(f"[red]{exc.code}:[/red] {exc}")
            return ExitCode.NOT_FOUND if isinstance(exc, SessionNotFoundError) else ExitCode.ERROR

        if registry.backend.persistent:
            console.print(
                f"[dim]Session {session.session_id} (tmux). Ctrl-\\ detaches.[/dim]",
                highlight=False,
            )

        relay = TerminalRelay(registry, session.session_id)
        outcome = await relay.run()
    finally:
        await engine.stop()

    if outcome == TerminalRelay.DETACHED and registry.backend.persistent:
        console.print(
            f"\n[yellow]Detached.[/yellow] Reattach with: "
            f"[cyan]agentmux run --attach {session.session_id}[/cyan]",
            highlight=False,
        )
        return ExitCode.SUCCESS
    return session.exit_code or 0


class TerminalRelay:
    """
    Relay between the local terminal (in raw mode) and one session.

    Keystrokes go to the session in order through a single writer task;
    session output is mirrored to stdout. Ends when the session is
    destroyed, when the tmux attachment is lost, on Ctrl-\\, or on
    SIGTERM/SIGHUP.
    """

    EXITED = "exited"
    DETACHED = "detached"

    def __init__(
        self,
        registry,  # SessionRegistry
        session_id: str,
        stdin_fd: int | None = None,
        stdout: BinaryIO | None = None,
    ) -> None:
        self._registry = registry
        self._session_id = session_id
        self._fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self._stdout = stdout or sys.stdout.buffer
        self._done = asyncio.Event()
        self._outcome = self.EXITED
        self._input: asyncio.Queue[bytes] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()

    async def run(self) -> str:
        from agentmux.core.events import SessionData, SessionDestroyed, SessionDetached

        loop = asyncio.get_running_loop()
        events = self._registry.events
        sid = self._session_id
        unsubscribe = [
            events.subscribe(SessionData, self._on_output, session_id=sid),
            events.subscribe(SessionDestroyed, lambda _e: self._finish(self.EXITED), session_id=sid),
            events.subscribe(SessionDetached, lambda _e: self._finish(self.DETACHED), session_id=sid),
        ]

        saved = termios.tcgetattr(self._fd)
        tty.setraw(self._fd)
        loop.add_reader(self._fd, self._on_stdin)
        loop.add_signal_handler(signal.SIGWINCH, self._on_winch)
        for sig in (signal.SIGTERM, signal.SIGHUP):
            loop.add_signal_handler(sig, self._finish, self.DETACHED)
        writer = loop.create_task(self._write_loop(), name="stdin_relay")

        try:
            await self._done.wait()
        finally:
            writer.cancel()
            loop.remove_reader(self._fd)
            for sig in (signal.SIGWINCH, signal.SIGTERM, signal.SIGHUP):
                loop.remove_signal_handler(sig)
            termios.tcsetattr(self._fd, termios.TCSADRAIN, saved)
            for unsub in unsubscribe:
                unsub()
        return self._outcome

    def _finish(self, outcome: str) -> None:
        if not self._done.is_set():
            self._outcome = outcome
            self._done.set()

    def _on_output(self, event) -> None:  # SessionData
        self._stdout.write(event.data.encode("utf-8"))
        self._stdout.flush()

    def _on_stdin(self) -> None:
        try:
            data = os.read(self._fd, 1024)
        except OSError:
            data = b""
        if not data:
            self._finish(self.DETACHED)
            return
        if DETACH_KEY in data:
            before = data.split(DETACH_KEY, 1)[0]
            if before:
                self._input.put_nowait(before)
            self._finish(self.DETACHED)
            return
        self._input.put_nowait(data)

    def _on_winch(self) -> None:
        cols, rows = shutil.get_terminal_size()
        task = asyncio.get_running_loop().create_task(self._resize(cols, rows))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resize(self, cols: int, rows: int) -> None:
        from agentmux.core.exceptions import SessionError

        try:
            await self._registry.resize(self._session_id, cols, rows)
        except SessionError:
            pass

    async def _write_loop(self) -> None:
        from agentmux.core.exceptions import SessionError

        while True:
            data = await self._input.get()
            try:
                await self._registry.write(self._session_id, data)
            except SessionError:
                self._finish(self.EXITED)
                return
