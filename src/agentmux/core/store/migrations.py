"""
Schema migrations for the agentmux history database.

Uses PRAGMA user_version as the version counter (atomic, no extra table).
Each migration is an idempotent function that upgrades from version N to N+1
and runs inside a transaction; user_version is bumped only after it succeeds.

Version history:
  0 → 1: Initial schema (sessions, terminal_lines)
  1 → 2: sessions.backend column (plain / tmux)
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from pathlib import Path

import structlog

logger = structlog.get_logger()

# Bump this when adding a new migration.
LATEST_SCHEMA_VERSION = 2


def _migrate_0_to_1(conn: sqlite3.Connection) -> None:
    """Version 0 → 1: sessions and terminal_lines tables."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS sessions (
            id                 TEXT PRIMARY KEY,
            user               TEXT NOT NULL,
            worktree           TEXT,
            working_directory  TEXT NOT NULL DEFAULT '',
            command            TEXT NOT NULL DEFAULT '',
            status             TEXT NOT NULL DEFAULT 'active',
            created_at         TEXT NOT NULL DEFAULT (datetime('now')),
            closed_at          TEXT,
            exit_code          INTEGER
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_sessions_status
            ON sessions(status)
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS terminal_lines (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id   TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            line_number  INTEGER NOT NULL,
            kind         TEXT NOT NULL DEFAULT 'output',
            content      TEXT NOT NULL,
            created_at   TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE(session_id, line_number)
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_terminal_lines_session
            ON terminal_lines(session_id, line_number)
    """)


def _migrate_1_to_2(conn: sqlite3.Connection) -> None:
    """Version 1 → 2: record which backend ran the session."""
    _add_column_if_missing(conn, "sessions", "backend", "TEXT NOT NULL DEFAULT 'plain'")


_MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    0: _migrate_0_to_1,
    1: _migrate_1_to_2,
}


def _add_column_if_missing(
    conn: sqlite3.Connection,
    table: str,
    column: str,
    column_def: str,
) -> None:
    """Add a column to *table* if it does not already exist."""
    cursor = conn.execute(f"PRAGMA table_info({table})")  # noqa: S608
    existing = {row[1] for row in cursor.fetchall()}
    if column not in existing:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_def}")  # noqa: S608
        logger.info("migration_added_column", table=table, column=column)


def get_user_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return row[0] if row else 0


def _set_user_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(f"PRAGMA user_version = {version}")  # noqa: S608


def run_migrations(conn: sqlite3.Connection, db_path: Path) -> None:
    """
    Run all pending schema migrations on *conn*.

    Raises ``RuntimeError`` naming the DB path if a migration fails or the
    database is newer than this build understands.
    """
    current = get_user_version(conn)

    if current > LATEST_SCHEMA_VERSION:
        raise RuntimeError(
            f"Database {db_path} has schema version {current}, but this build of "
            f"agentmux only supports up to version {LATEST_SCHEMA_VERSION}."
        )

    if current == LATEST_SCHEMA_VERSION:
        return

    logger.info("migration_starting", from_version=current, to_version=LATEST_SCHEMA_VERSION)

    for from_version in range(current, LATEST_SCHEMA_VERSION):
        migration = _MIGRATIONS[from_version]
        target = from_version + 1
        try:
            migration(conn)
            _set_user_version(conn, target)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RuntimeError(
                f"Schema migration v{from_version} → v{target} failed: {exc}\n"
                f"Database path: {db_path}\n"
                f"Recovery: delete (or rename) the database file and restart."
            ) from exc

    logger.info("migration_complete", version=get_user_version(conn))
