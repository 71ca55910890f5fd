"""
Session domain models.

A Session is one agent process running in one working directory, owned by
a (user, worktree) pair. It holds at most one live handle: a direct PTY or
a PTY attached to a tmux session. A tmux-backed session recovered after an
engine restart has no handle until someone writes to it or reattaches.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from agentmux.core.constants import DEFAULT_COLS, DEFAULT_ROWS, SESSION_ID_PREFIX
from agentmux.core.output.buffer import OutputBuffer
from agentmux.core.state.detector import StateDetector
from agentmux.core.state.models import SessionState
from agentmux.os.tty.base import BaseTTY

__all__ = ["OwnerKey", "Session", "SessionInfo", "SessionState", "new_session_id", "short_id"]


def new_session_id() -> str:
    return SESSION_ID_PREFIX + secrets.token_hex(8)


def short_id(session_id: str) -> str:
    """First 8 chars of the random part of *session_id*, for display and logs."""
    return session_id.removeprefix(SESSION_ID_PREFIX)[:8]


@dataclass(frozen=True)
class OwnerKey:
    """Lookup and quota identity: a user, optionally narrowed to one worktree."""

    user: str
    worktree: str | None = None

    def __str__(self) -> str:
        return f"{self.user}:{self.worktree}" if self.worktree else self.user


@dataclass
class SessionInfo:
    """Read-only snapshot of a session for listings."""

    session_id: str
    user: str
    worktree: str | None
    working_directory: str
    command: str
    state: str
    pid: int | None
    attached: bool
    backend: str
    created_at: str
    last_activity_at: str
    buffer_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(eq=False)
class Session:
    """Live engine state for one session."""

    session_id: str
    owner: OwnerKey
    working_directory: str
    command: str
    buffer: OutputBuffer
    detector: StateDetector
    backend: str = "plain"
    handle: BaseTTY | None = None
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    exit_code: int | None = None
    destroyed: bool = False
    # Serialises lazy reattachment and handle swaps for this session only
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def state(self) -> SessionState:
        return self.detector.state

    @property
    def attached(self) -> bool:
        return self.handle is not None and self.handle.is_alive()

    @property
    def pid(self) -> int | None:
        if self.handle is None:
            return None
        pid = self.handle.pid()
        return pid if pid > 0 else None

    def touch(self) -> None:
        self.last_activity_at = datetime.now(UTC)

    def short_id(self) -> str:
        return short_id(self.session_id)

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            user=self.owner.user,
            worktree=self.owner.worktree,
            working_directory=self.working_directory,
            command=self.command,
            state=str(self.state),
            pid=self.pid,
            attached=self.attached,
            backend=self.backend,
            created_at=self.created_at.isoformat(),
            last_activity_at=self.last_activity_at.isoformat(),
            buffer_bytes=self.buffer.size,
        )
