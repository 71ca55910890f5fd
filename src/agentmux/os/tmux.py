"""
tmux invocations for the multiplexer persistence backend.

Every call shells out with an argument vector via
``asyncio.create_subprocess_exec``. These are the engine's only blocking
I/O operations and are issued from lifecycle calls, never from the
per-chunk data path.

Session names are ``<prefix><session id>`` so that ``list_all(prefix)``
enumerates only this engine's sessions among everything on the host.
"""

from __future__ import annotations

import asyncio
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from agentmux.core.constants import CAPTURE_LINES, STATUS_LINE_PATTERN, TERM_NAME, TMUX_BINARY
from agentmux.core.exceptions import MultiplexerCommandError, MultiplexerUnavailableError
from agentmux.core.output.sanitize import strip_ansi
from agentmux.os.tty.base import PTYConfig
from agentmux.os.tty.posix import PosixTTY

logger = structlog.get_logger()

_GONE_MARKERS = ("can't find session", "session not found", "no server running", "error connecting")

# Commands that look like long-running foreground services (dev servers,
# shell scripts). Their tmux session drops to a shell when they exit so the
# last output stays inspectable.
_DEV_SERVER_RE = re.compile(r"\b(?:npm|npx|yarn|pnpm|bun)\b|\b(?:dev|start|serve)\b|\.sh\b")

_EXIT_BANNER = "Process exited. Press Enter to close or run commands..."


@dataclass(frozen=True)
class MuxSession:
    """One tmux session as reported by ``list-sessions``."""

    name: str
    created_at: datetime | None
    attached: int = 0


def looks_like_dev_server(command_line: str) -> bool:
    return bool(_DEV_SERVER_RE.search(command_line))


def wrap_command(command_line: str) -> str:
    """Keep the tmux session open after a dev-server style command exits."""
    if not looks_like_dev_server(command_line):
        return command_line
    script = f"{command_line}; echo ''; echo '===='; echo {shlex.quote(_EXIT_BANNER)}; exec bash"
    return f"bash -c {shlex.quote(script)}"


def collapse_status_lines(text: str, pattern: str | re.Pattern[str] = STATUS_LINE_PATTERN) -> str:
    """Remove every tmux status line from *text* except the last one."""
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    lines = text.split("\n")
    matches = [i for i, line in enumerate(lines) if regex.match(strip_ansi(line).strip())]
    if len(matches) <= 1:
        return text
    drop = set(matches[:-1])
    return "\n".join(line for i, line in enumerate(lines) if i not in drop)


class TmuxClient:
    """Thin async wrapper around the tmux CLI."""

    def __init__(self, binary: str = TMUX_BINARY, status_line_pattern: str = STATUS_LINE_PATTERN) -> None:
        self.binary = binary
        self._status_re = re.compile(status_line_pattern)

    async def _run(self, *args: str, check: bool = True) -> tuple[int, str, str]:
        argv = [self.binary, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise MultiplexerUnavailableError(f"{self.binary} not found") from exc
        out, err = await proc.communicate()
        stdout = out.decode("utf-8", errors="replace")
        stderr = err.decode("utf-8", errors="replace")
        rc = proc.returncode if proc.returncode is not None else -1
        if check and rc != 0:
            raise MultiplexerCommandError(argv, rc, stderr)
        return rc, stdout, stderr

    @staticmethod
    def _is_gone(stderr: str) -> bool:
        lower = stderr.lower()
        return any(marker in lower for marker in _GONE_MARKERS)

    # ------------------------------------------------------------------
    # Capability probe
    # ------------------------------------------------------------------

    async def probe(self) -> str:
        """Return the tmux version string, or raise MultiplexerUnavailableError."""
        try:
            _, out, _ = await self._run("-V")
        except MultiplexerCommandError as exc:
            raise MultiplexerUnavailableError(str(exc)) from exc
        return out.strip()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_detached(
        self,
        name: str,
        working_directory: str,
        cols: int,
        rows: int,
        command_line: str,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Create a detached session *name* running *command_line*."""
        args = ["new-session", "-d", "-s", name, "-c", working_directory, "-x", str(cols), "-y", str(rows)]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        args.append(wrap_command(command_line))
        await self._run(*args)
        logger.debug("tmux_session_created", name=name, cwd=working_directory)

    async def attach(self, name: str, cols: int, rows: int, session_id: str = "") -> PosixTTY:
        """
        Attach a new local PTY handle to *name*.

        ``attach-session -d`` detaches every other client first, so there is
        at most one live attachment per session.
        """
        config = PTYConfig(
            command=[self.binary, "attach-session", "-d", "-t", f"={name}"],
            # An inherited $TMUX makes attach-session refuse to nest
            env={"TERM": TERM_NAME, "TMUX": ""},
            cols=cols,
            rows=rows,
        )
        tty = PosixTTY(config, session_id)
        await tty.start()
        return tty

    async def exists(self, name: str) -> bool:
        try:
            rc, _, _ = await self._run("has-session", "-t", f"={name}", check=False)
        except MultiplexerUnavailableError:
            return False
        return rc == 0

    async def kill(self, name: str) -> None:
        """Kill session *name*; a session that is already gone counts as success."""
        rc, _, stderr = await self._run("kill-session", "-t", f"={name}", check=False)
        if rc != 0 and not self._is_gone(stderr):
            raise MultiplexerCommandError([self.binary, "kill-session"], rc, stderr)

    async def list_all(self, prefix: str) -> list[MuxSession]:
        """Return every session whose name starts with *prefix*."""
        rc, out, stderr = await self._run(
            "list-sessions",
            "-F",
            "#{session_name}:#{session_created}:#{session_attached}",
            check=False,
        )
        if rc != 0:
            if self._is_gone(stderr):
                return []
            raise MultiplexerCommandError([self.binary, "list-sessions"], rc, stderr)

        sessions: list[MuxSession] = []
        for line in out.splitlines():
            parts = line.rsplit(":", 2)
            if len(parts) != 3:
                continue
            name, created, attached = parts
            if not name.startswith(prefix):
                continue
            sessions.append(
                MuxSession(
                    name=name,
                    created_at=_parse_epoch(created),
                    attached=int(attached) if attached.isdigit() else 0,
                )
            )
        return sessions

    async def capture(self, name: str, max_lines: int = CAPTURE_LINES) -> str:
        """
        Return the last *max_lines* of the pane, escape sequences included,
        wrapped lines joined, with repeated status lines collapsed.
        """
        _, out, _ = await self._run(
            "capture-pane", "-p", "-e", "-J", "-t", f"={name}:", "-S", f"-{max_lines}"
        )
        return collapse_status_lines(out, self._status_re)

    async def resize(self, name: str, cols: int, rows: int) -> None:
        """Resize the session's window. Errors are ignored."""
        try:
            await self._run(
                "resize-window", "-t", f"={name}:", "-x", str(cols), "-y", str(rows), check=False
            )
        except MultiplexerUnavailableError:
            pass


def _parse_epoch(value: str) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (ValueError, OverflowError, OSError):
        return None
