"""agentmux doctor — environment and configuration health check."""

from __future__ import annotations

import asyncio
import json
import shutil
import sys

import click
from rich.console import Console

console = Console()


@click.command("doctor")
@click.option("--json", "as_json", is_flag=True, default=False)
def doctor_cmd(as_json: bool) -> None:
    """Environment and configuration health check."""
    cmd_doctor(as_json=as_json, console=console)


def _check_python_version() -> dict:
    ver = sys.version_info
    ok = ver >= (3, 11)
    return {
        "name": "Python version",
        "status": "pass" if ok else "fail",
        "detail": f"{ver.major}.{ver.minor}.{ver.micro}" + ("" if ok else " (3.11+ required)"),
    }


def _check_platform() -> dict:
    plat = sys.platform
    if plat == "darwin" or plat.startswith("linux"):
        return {"name": "Platform", "status": "pass", "detail": plat}
    return {"name": "Platform", "status": "fail", "detail": f"{plat} (unsupported: no PTY support)"}


def _check_ptyprocess() -> dict:
    try:
        import ptyprocess  # noqa: F401

        return {"name": "ptyprocess", "status": "pass", "detail": "installed"}
    except ImportError:
        return {
            "name": "ptyprocess",
            "status": "fail",
            "detail": "not installed — run: pip install ptyprocess",
        }


def _check_config() -> dict:
    from agentmux.core.config import _config_file_path, load_config

    cfg_path = _config_file_path()
    try:
        load_config()
    except Exception as exc:  # noqa: BLE001
        return {"name": "Config file", "status": "fail", "detail": str(exc)}
    if not cfg_path.exists():
        return {
            "name": "Config file",
            "status": "skip",
            "detail": f"not found at {cfg_path}, using defaults",
        }
    return {"name": "Config file", "status": "pass", "detail": str(cfg_path)}


def _check_tmux() -> dict:
    from agentmux.core.config import load_config
    from agentmux.core.exceptions import MultiplexerUnavailableError
    from agentmux.os.tmux import TmuxClient

    try:
        cfg = load_config()
    except Exception:  # noqa: BLE001
        return {"name": "tmux", "status": "skip", "detail": "config not loadable"}
    mux = cfg.multiplexer
    if not mux.enabled:
        return {"name": "tmux", "status": "skip", "detail": "disabled in config"}
    if shutil.which(mux.binary) is None:
        return {
            "name": "tmux",
            "status": "warn",
            "detail": f"{mux.binary} not found — sessions will not survive restarts",
        }
    try:
        version = asyncio.run(TmuxClient(mux.binary).probe())
    except MultiplexerUnavailableError as exc:
        return {"name": "tmux", "status": "warn", "detail": str(exc)}
    return {"name": "tmux", "status": "pass", "detail": version}


def _check_database() -> dict:
    import sqlite3

    from agentmux.core.config import load_config
    from agentmux.core.store.migrations import LATEST_SCHEMA_VERSION, get_user_version

    try:
        cfg = load_config()
    except Exception:  # noqa: BLE001
        return {"name": "Database", "status": "skip", "detail": "config not loadable"}
    if not cfg.database.history_enabled:
        return {"name": "Database", "status": "skip", "detail": "history disabled in config"}

    db_path = cfg.db_path
    if not db_path.exists():
        return {
            "name": "Database",
            "status": "skip",
            "detail": f"not created yet ({db_path})",
        }
    try:
        conn = sqlite3.connect(str(db_path))
        try:
            version = get_user_version(conn)
        finally:
            conn.close()
    except sqlite3.Error as exc:
        return {"name": "Database", "status": "fail", "detail": f"{db_path}: {exc}"}

    if version > LATEST_SCHEMA_VERSION:
        return {
            "name": "Database",
            "status": "fail",
            "detail": f"schema v{version} is newer than this build (v{LATEST_SCHEMA_VERSION})",
        }
    if version < LATEST_SCHEMA_VERSION:
        return {
            "name": "Database",
            "status": "warn",
            "detail": f"schema v{version}, migrates to v{LATEST_SCHEMA_VERSION} on next run",
        }
    return {"name": "Database", "status": "pass", "detail": f"{db_path} (schema v{version})"}


def cmd_doctor(as_json: bool, console: Console) -> None:
    checks: list[dict] = [
        _check_python_version(),
        _check_platform(),
        _check_ptyprocess(),
        _check_config(),
        _check_tmux(),
        _check_database(),
    ]

    all_pass = all(c["status"] in ("pass", "skip") for c in checks)

    if as_json:
        print(json.dumps({"checks": checks, "all_pass": all_pass}, indent=2))
        return

    console.print("[bold]agentmux doctor[/bold]\n")
    for c in checks:
        if c["status"] == "pass":
            icon = "[green]PASS[/green]"
        elif c["status"] == "skip":
            icon = "[dim]SKIP[/dim]"
        elif c["status"] == "warn":
            icon = "[yellow]WARN[/yellow]"
        else:
            icon = "[red]FAIL[/red]"
        console.print(f"  {icon}  {c['name']}: {c['detail']}")

    console.print()
    if all_pass:
        console.print("[green]All checks passed.[/green]")
    elif any(c["status"] == "fail" for c in checks):
        console.print("[red]Some checks failed.[/red]")
    else:
        console.print("[yellow]Some checks have warnings. Review above for details.[/yellow]")
