"""
agentmux CLI entry point.

Commands:
  agentmux run [--cwd DIR] [--command CMD]  — start an agent session and attach to it
  agentmux run --attach SESSION_ID          — reattach to a tmux-backed session
  agentmux sessions list                    — list sessions (history + tmux)
  agentmux sessions capture SESSION_ID      — print a session's captured pane
  agentmux sessions history SESSION_ID      — print recorded terminal lines
  agentmux sessions kill SESSION_ID         — kill a tmux-backed session
  agentmux config show | init               — inspect or write configuration
  agentmux doctor                           — environment health check
  agentmux version                          — show version information
"""

from __future__ import annotations

import click
from rich.console import Console

from agentmux import __version__

console = Console()
err_console = Console(stderr=True)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="agentmux %(version)s")
@click.option("--log-level", default="WARNING", hidden=True, help="Log level for structured logging.")
@click.option("--log-json", is_flag=True, default=False, hidden=True, help="Emit JSON log lines.")
def cli(log_level: str, log_json: bool) -> None:
    """agentmux — run coding agents in many worktrees and watch their state."""
    from agentmux.core.logging import configure_logging

    configure_logging(level=log_level, json_output=log_json)


# ---------------------------------------------------------------------------
# Subcommands (registered from sibling modules)
# ---------------------------------------------------------------------------

from agentmux.cli._config import config_group  # noqa: E402
from agentmux.cli._doctor import doctor_cmd  # noqa: E402
from agentmux.cli._run import run_cmd  # noqa: E402
from agentmux.cli._sessions import sessions_group  # noqa: E402
from agentmux.cli._version import version_cmd  # noqa: E402

cli.add_command(run_cmd)
cli.add_command(sessions_group)
cli.add_command(config_group)
cli.add_command(doctor_cmd)
cli.add_command(version_cmd, name="version")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
