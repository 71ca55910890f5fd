"""
History persistence as seen by the engine.

The engine depends only on the ``HistoryStore`` protocol. Every call is
best-effort: the registry catches and logs failures (``history_write_failed``)
and carries on with the live session.

``BufferedHistoryWriter`` is the SQLite-backed implementation. Lifecycle
records are written immediately; terminal content is split into lines and
queued, then flushed in one transaction per interval so no SQLite work runs
inside the per-chunk data callback.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import structlog

from agentmux.core.constants import HISTORY_FLUSH_INTERVAL_MS, HISTORY_MAX_LINE_CHARS
from agentmux.core.output.sanitize import strip_ansi
from agentmux.core.store.database import STATUS_CLOSED, STATUS_LOST, Database

logger = structlog.get_logger()

KIND_INPUT = "input"
KIND_OUTPUT = "output"


@dataclass(frozen=True)
class HistoryRecord:
    """A persisted session record, as needed for startup recovery."""

    session_id: str
    user: str
    worktree: str | None
    working_directory: str
    command: str


@runtime_checkable
class HistoryStore(Protocol):
    def record_create(
        self,
        session_id: str,
        user: str,
        worktree: str | None,
        working_directory: str,
        command: str,
        backend: str = "plain",
    ) -> None: ...

    def append_line(self, session_id: str, content: str, kind: str = KIND_OUTPUT) -> None: ...

    def record_close(self, session_id: str, exit_code: int | None = None) -> None: ...

    def record_lost(self, session_id: str) -> None: ...

    def list_active(self) -> list[HistoryRecord]: ...


class BufferedHistoryWriter:
    """HistoryStore over a Database with batched line writes."""

    def __init__(
        self,
        db: Database,
        flush_interval_s: float = HISTORY_FLUSH_INTERVAL_MS / 1000,
        max_line_chars: int = HISTORY_MAX_LINE_CHARS,
    ) -> None:
        self._db = db
        self._interval = flush_interval_s
        self._max_line = max_line_chars
        self._pending: list[tuple[str, str, str]] = []
        self._partial: dict[tuple[str, str], str] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # HistoryStore
    # ------------------------------------------------------------------

    def record_create(
        self,
        session_id: str,
        user: str,
        worktree: str | None,
        working_directory: str,
        command: str,
        backend: str = "plain",
    ) -> None:
        self._db.record_create(session_id, user, worktree, working_directory, command, backend)

    def append_line(self, session_id: str, content: str, kind: str = KIND_OUTPUT) -> None:
        """Queue *content*; complete lines are written on the next flush."""
        key = (session_id, kind)
        content = content.replace("\r\n", "\n")
        if kind == KIND_INPUT:
            content = content.replace("\r", "\n")  # Enter arrives as a bare CR
        text = self._partial.pop(key, "") + strip_ansi(content)
        *lines, rest = text.split("\n")
        while len(rest) > self._max_line:
            lines.append(rest[: self._max_line])
            rest = rest[self._max_line :]
        for line in lines:
            if line.strip():
                self._pending.append((session_id, line, kind))
        if rest:
            self._partial[key] = rest

    def record_close(self, session_id: str, exit_code: int | None = None) -> None:
        self._drain_partials(session_id)
        self.flush()
        self._db.record_close(session_id, exit_code, STATUS_CLOSED)

    def record_lost(self, session_id: str) -> None:
        self._db.record_close(session_id, None, STATUS_LOST)

    def list_active(self) -> list[HistoryRecord]:
        return [
            HistoryRecord(
                session_id=row["id"],
                user=row["user"],
                worktree=row["worktree"],
                working_directory=row["working_directory"],
                command=row["command"],
            )
            for row in self._db.list_active_sessions()
        ]

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def _drain_partials(self, session_id: str) -> None:
        for key in [k for k in self._partial if k[0] == session_id]:
            line = self._partial.pop(key)
            if line.strip():
                self._pending.append((session_id, line, key[1]))

    def flush(self) -> int:
        """Write every queued line in one transaction. Returns the number written."""
        if not self._pending:
            return 0
        batch, self._pending = self._pending, []
        return self._db.append_lines(batch)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.flush()
            except Exception as exc:  # noqa: BLE001
                logger.error("history_write_failed", operation="flush", error=str(exc))

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._flush_loop(), name="history_flush"
            )

    async def stop(self) -> None:
        """Stop the flush loop and write whatever is still queued."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for session_id in {k[0] for k in self._partial}:
            self._drain_partials(session_id)
        self.flush()
