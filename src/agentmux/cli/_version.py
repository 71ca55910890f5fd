"""Version information CLI command."""

from __future__ import annotations

import click
from rich.console import Console

from agentmux import __version__

console = Console()


@click.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def version_cmd(as_json: bool) -> None:
    """Show version information."""
    import platform
    import sys as _sys

    if as_json:
        import json

        data: dict = {
            "agentmux": __version__,
            "python": _sys.version.split()[0],
            "platform": _sys.platform,
            "arch": platform.machine(),
        }
        click.echo(json.dumps(data, indent=2))
    else:
        console.print(f"agentmux {__version__}")
        console.print(f"Python {_sys.version.split()[0]}")
        console.print(f"Platform: {_sys.platform} {platform.machine()}")
