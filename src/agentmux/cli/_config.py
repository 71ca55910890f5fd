"""agentmux config — show the effective configuration or write a default file."""

from __future__ import annotations

import json
import sys

import click
from rich.console import Console

from agentmux.core.constants import ExitCode

console = Console()


@click.group("config")
def config_group() -> None:
    """Configuration commands."""


@config_group.command("show")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON")
def config_show(as_json: bool) -> None:
    """Print the effective configuration (file + environment + defaults)."""
    from agentmux.core.config import load_config
    from agentmux.core.exceptions import ConfigError

    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    data = cfg.model_dump()
    if as_json:
        print(json.dumps(data, indent=2))
        return

    console.print(f"[bold]Config[/bold] [dim]({cfg._config_path})[/dim]\n")
    for section, values in data.items():
        if not isinstance(values, dict):
            console.print(f"  {section} = {values!r}", highlight=False)
            continue
        console.print(f"  [cyan][{section}][/cyan]")
        for key, value in values.items():
            console.print(f"    {key} = {value!r}", highlight=False)


@config_group.command("init")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file")
def config_init(force: bool) -> None:
    """Write a config file with the built-in defaults."""
    from agentmux.core.config import AgentMuxConfig, _config_file_path, save_config
    from agentmux.core.exceptions import ConfigError

    cfg_path = _config_file_path()
    if cfg_path.exists() and not force:
        console.print(f"Config already exists at {cfg_path}. Use [cyan]--force[/cyan] to overwrite.")
        sys.exit(ExitCode.ERROR)

    try:
        written = save_config(AgentMuxConfig().model_dump(), cfg_path)
    except ConfigError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(ExitCode.ERROR)
    console.print(f"Wrote default config to {written}")
