"""
SQLite-backed session history.

Schema (2 tables):
  sessions        — one row per session: owner, directory, command, status
  terminal_lines  — line-split input/output with per-session line numbers

Status values: ``active`` (running or detached in tmux), ``closed`` (exited
or destroyed), ``lost`` (was active but its tmux session was gone at
startup).

Thread safety:
  WAL mode. Opened with check_same_thread=False; all calls are made from
  the event loop thread. All writes use parameterised queries.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

import structlog

logger = structlog.get_logger()

STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"
STATUS_LOST = "lost"


class Database:
    """SQLite persistence layer for session history."""

    def __init__(self, db_path: Path) -> None:
        self._path = db_path
        self._conn: sqlite3.Connection | None = None
        self._next_line: dict[str, int] = {}

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> None:
        from agentmux.core.store.migrations import run_migrations

        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        run_migrations(self._conn, self._path)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Sessions
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
        self._db.execute(
            """
            INSERT INTO sessions (id, user, worktree, working_directory, command, backend, status)
            VALUES (?, ?, ?, ?, ?, ?, 'active')
            ON CONFLICT(id) DO UPDATE SET status = 'active', closed_at = NULL, exit_code = NULL
            """,
            (session_id, user, worktree, working_directory, command, backend),
        )
        self._db.commit()

    def record_close(
        self, session_id: str, exit_code: int | None = None, status: str = STATUS_CLOSED
    ) -> None:
        self._db.execute(
            "UPDATE sessions SET status = ?, closed_at = ?, exit_code = ? WHERE id = ?",
            (status, datetime.now(UTC).isoformat(), exit_code, session_id),
        )
        self._db.commit()
        self._next_line.pop(session_id, None)

    def get_session(self, session_id: str) -> sqlite3.Row | None:
        return self._db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()

    def list_sessions(self, status: str = "", limit: int = 100) -> list[sqlite3.Row]:
        if status:
            return self._db.execute(
                "SELECT * FROM sessions WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (status, limit),
            ).fetchall()
        return self._db.execute(
            "SELECT * FROM sessions ORDER BY created_at DESC LIMIT ?", (limit,)
        ).fetchall()

    def list_active_sessions(self) -> list[sqlite3.Row]:
        return self._db.execute(
            "SELECT * FROM sessions WHERE status = 'active' ORDER BY created_at"
        ).fetchall()

    # ------------------------------------------------------------------
    # Terminal lines
    # ------------------------------------------------------------------

    def _line_number(self, session_id: str) -> int:
        n = self._next_line.get(session_id)
        if n is None:
            row = self._db.execute(
                "SELECT COALESCE(MAX(line_number), 0) FROM terminal_lines WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            n = row[0] + 1
        self._next_line[session_id] = n + 1
        return n

    def append_lines(self, rows: Iterable[tuple[str, str, str]]) -> int:
        """Insert ``(session_id, content, kind)`` rows in one transaction; return count."""
        values = [(sid, self._line_number(sid), kind, content) for sid, content, kind in rows]
        if not values:
            return 0
        try:
            self._db.executemany(
                "INSERT INTO terminal_lines (session_id, line_number, kind, content) "
                "VALUES (?, ?, ?, ?)",
                values,
            )
            self._db.commit()
        except sqlite3.Error:
            self._db.rollback()
            for sid in {v[0] for v in values}:
                self._next_line.pop(sid, None)
            raise
        return len(values)

    def recent_history(self, session_id: str, limit: int = 1000) -> list[sqlite3.Row]:
        """Return the last *limit* lines of a session, oldest first."""
        rows = self._db.execute(
            """
            SELECT line_number, kind, content, created_at FROM terminal_lines
             WHERE session_id = ?
             ORDER BY line_number DESC
             LIMIT ?
            """,
            (session_id, limit),
        ).fetchall()
        return list(reversed(rows))

    def count_lines(self, session_id: str) -> int:
        row = self._db.execute(
            "SELECT COUNT(*) FROM terminal_lines WHERE session_id = ?", (session_id,)
        ).fetchone()
        return row[0] if row else 0
