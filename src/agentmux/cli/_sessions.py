"""agentmux sessions — list, inspect and kill sessions outside a running engine."""

from __future__ import annotations

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from agentmux.core.constants import ExitCode

console = Console()


@click.group("sessions", invoke_without_command=True)
@click.pass_context
def sessions_group(ctx: click.Context) -> None:
    """Session inspection commands."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(sessions_list)


@sessions_group.command("list")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON")
@click.option("--all", "show_all", is_flag=True, default=False, help="Include closed sessions")
@click.option("--limit", default=50, show_default=True, help="Max sessions to show")
def sessions_list(as_json: bool = False, show_all: bool = False, limit: int = 50) -> None:
    """List sessions from history, joined with live tmux sessions."""
    cmd_sessions_list(as_json=as_json, show_all=show_all, limit=limit, console=console)


@sessions_group.command("capture")
@click.argument("session_id")
@click.option("--lines", default=0, help="Lines of scrollback (default: from config)")
def sessions_capture(session_id: str, lines: int = 0) -> None:
    """Print a tmux-backed session's pane, status lines collapsed."""
    cmd_sessions_capture(session_id=session_id, lines=lines, console=console)


@sessions_group.command("history")
@click.argument("session_id")
@click.option("--lines", default=200, show_default=True, help="Number of recorded lines")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON")
def sessions_history(session_id: str, lines: int = 200, as_json: bool = False) -> None:
    """Print the recorded input/output lines of a session."""
    cmd_sessions_history(session_id=session_id, lines=lines, as_json=as_json, console=console)


@sessions_group.command("kill")
@click.argument("session_id")
def sessions_kill(session_id: str) -> None:
    """Kill a tmux-backed session and close its history record."""
    cmd_sessions_kill(session_id=session_id, console=console)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _load_config(console: Console):
    from agentmux.core.config import load_config
    from agentmux.core.exceptions import ConfigError

    try:
        return load_config()
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)


def _open_db(config):
    """Open the history database if it exists, or return None."""
    from agentmux.core.store.database import Database

    db_path = config.db_path
    if not db_path.exists():
        return None
    db = Database(db_path)
    db.connect()
    return db


def _tmux(config):
    from agentmux.os.tmux import TmuxClient

    return TmuxClient(config.multiplexer.binary, config.multiplexer.status_line_pattern)


async def _live_sessions(config) -> dict[str, int] | None:
    """Map session id → attached client count, or None if tmux is unavailable."""
    from agentmux.core.exceptions import MultiplexerCommandError, MultiplexerUnavailableError

    if not config.multiplexer.enabled:
        return None
    prefix = config.multiplexer.prefix
    try:
        found = await _tmux(config).list_all(prefix)
    except (MultiplexerUnavailableError, MultiplexerCommandError):
        return None
    return {m.name.removeprefix(prefix): m.attached for m in found}


# ------------------------------------------------------------------
# sessions list
# ------------------------------------------------------------------

_STATUS_STYLE = {
    "active": "green",
    "closed": "dim",
    "lost": "red",
    "untracked": "yellow",
}


def cmd_sessions_list(*, as_json: bool, show_all: bool, limit: int, console: Console) -> None:
    config = _load_config(console)
    live = asyncio.run(_live_sessions(config))

    db = _open_db(config)
    rows: list[dict] = []
    try:
        if db is not None:
            records = db.list_sessions(limit=limit) if show_all else db.list_active_sessions()
            rows = [dict(r) for r in records]
    finally:
        if db is not None:
            db.close()

    known = {r["id"] for r in rows}
    for sid in sorted((live or {}).keys() - known):
        rows.append({"id": sid, "user": "", "working_directory": "", "status": "untracked"})
    for row in rows:
        row["tmux"] = None if live is None else row["id"] in live
        row["attached"] = bool(live and live.get(row["id"]))

    if as_json:
        print(json.dumps(rows, indent=2, default=str))
        return

    if not rows:
        console.print("[bold]Sessions[/bold]\n")
        console.print("  [dim]No active sessions.[/dim]")
        console.print("\nRun [cyan]agentmux run[/cyan] in a worktree to start one.")
        return

    table = Table(title="Sessions", show_lines=False)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("User", style="bold")
    table.add_column("Status")
    table.add_column("tmux")
    table.add_column("Directory", style="dim")
    table.add_column("Started", style="dim")

    for row in rows:
        status = row.get("status", "")
        style = _STATUS_STYLE.get(status, "")
        if row["tmux"] is None:
            mux = "[dim]n/a[/dim]"
        elif row["tmux"]:
            mux = "attached" if row["attached"] else "detached"
        else:
            mux = "[dim]-[/dim]"
        table.add_row(
            row["id"],
            row.get("user") or "",
            f"[{style}]{status}[/{style}]" if style else status,
            mux,
            row.get("working_directory") or "",
            str(row.get("created_at") or "")[:19],
        )
    console.print(table)


# ------------------------------------------------------------------
# sessions capture
# ------------------------------------------------------------------


def cmd_sessions_capture(*, session_id: str, lines: int, console: Console) -> None:
    from agentmux.core.exceptions import MultiplexerCommandError, MultiplexerUnavailableError

    config = _load_config(console)
    name = f"{config.multiplexer.prefix}{session_id}"
    try:
        text = asyncio.run(_tmux(config).capture(name, lines or config.multiplexer.capture_lines))
    except MultiplexerUnavailableError as exc:
        console.print(f"[red]tmux unavailable:[/red] {exc}")
        sys.exit(ExitCode.DEPENDENCY_MISSING)
    except MultiplexerCommandError:
        console.print(f"[red]Session not found:[/red] {session_id}")
        sys.exit(ExitCode.NOT_FOUND)
    click.echo(text, nl=not text.endswith("\n"))


# ------------------------------------------------------------------
# sessions history
# ------------------------------------------------------------------


def cmd_sessions_history(*, session_id: str, lines: int, as_json: bool, console: Console) -> None:
    config = _load_config(console)
    db = _open_db(config)
    if db is None or db.get_session(session_id) is None:
        if db is not None:
            db.close()
        console.print(f"[red]Session not found:[/red] {session_id}")
        sys.exit(ExitCode.NOT_FOUND)
    try:
        rows = db.recent_history(session_id, lines)
    finally:
        db.close()

    if as_json:
        print(json.dumps([dict(r) for r in rows], indent=2, default=str))
        return
    for row in rows:
        marker = "[cyan]>[/cyan]" if row["kind"] == "input" else " "
        console.print(f"{marker} {escape(row['content'])}", highlight=False)


# ------------------------------------------------------------------
# sessions kill
# ------------------------------------------------------------------


def cmd_sessions_kill(*, session_id: str, console: Console) -> None:
    from agentmux.core.exceptions import MultiplexerCommandError, MultiplexerUnavailableError

    config = _load_config(console)
    name = f"{config.multiplexer.prefix}{session_id}"
    try:
        asyncio.run(_tmux(config).kill(name))
    except MultiplexerUnavailableError as exc:
        console.print(f"[red]tmux unavailable:[/red] {exc}")
        sys.exit(ExitCode.DEPENDENCY_MISSING)
    except MultiplexerCommandError as exc:
        console.print(f"[red]Kill failed:[/red] {exc}")
        sys.exit(ExitCode.ERROR)

    db = _open_db(config)
    if db is not None:
        try:
            if db.get_session(session_id) is not None:
                db.record_close(session_id, None)
        finally:
            db.close()
    console.print(f"Killed session [cyan]{session_id}[/cyan].")
