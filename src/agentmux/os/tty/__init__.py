"""
Process adapter: PTY handle dispatch and spawn preconditions.

``spawn()`` verifies the working directory and resolves the executable
before starting a handle. Both checks are preconditions, not race-free
guarantees: a failure after them is still reported as SpawnFailedError.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Mapping, Sequence

from agentmux.core.constants import DEFAULT_COLS, DEFAULT_ROWS
from agentmux.core.exceptions import (
    ExecutableNotFoundError,
    SpawnFailedError,
    WorkingDirectoryInvalidError,
)
from agentmux.os.tty.base import BaseTTY, PTYConfig


def get_tty_class() -> type[BaseTTY]:
    """Return the appropriate TTY class for the current platform."""
    if sys.platform == "darwin" or sys.platform.startswith("linux"):
        from agentmux.os.tty.posix import PosixTTY

        return PosixTTY
    raise RuntimeError(
        f"Unsupported platform: {sys.platform}. agentmux supports macOS and Linux only."
    )


def split_command(command: str, args: Sequence[str] = ()) -> list[str]:
    """
    Split a command string into an argv list.

    Legacy configuration stores the agent command as a single string with
    embedded arguments (``"claude --verbose"``). The string is split on
    whitespace into executable + arguments, then *args* is appended. This
    is a compatibility accommodation only: quoting is not interpreted, so
    arguments that contain spaces must be passed through *args*.
    """
    argv = command.split()
    if not argv:
        raise ExecutableNotFoundError("empty command")
    return argv + list(args)


def check_working_directory(path: str) -> str:
    """Return the absolute working directory, or raise WorkingDirectoryInvalidError."""
    resolved = os.path.abspath(os.path.expanduser(path))
    if not os.path.isdir(resolved):
        raise WorkingDirectoryInvalidError(f"working directory does not exist: {resolved}")
    if not os.access(resolved, os.R_OK | os.X_OK):
        raise WorkingDirectoryInvalidError(f"working directory is not accessible: {resolved}")
    return resolved


def resolve_executable(name: str, path: str | None = None) -> str:
    """Resolve *name* on the search path, or raise ExecutableNotFoundError."""
    found = shutil.which(name, path=path)
    if found is None:
        raise ExecutableNotFoundError(f"executable not found on PATH: {name}")
    return found


async def spawn(
    command: str,
    args: Sequence[str] = (),
    working_directory: str = ".",
    cols: int = DEFAULT_COLS,
    rows: int = DEFAULT_ROWS,
    env: Mapping[str, str] | None = None,
    session_id: str = "",
) -> BaseTTY:
    """
    Start *command* on a new PTY and return the running handle.

    Raises WorkingDirectoryInvalidError, ExecutableNotFoundError or
    SpawnFailedError. Nothing is left running on failure.
    """
    cwd = check_working_directory(working_directory)
    argv = split_command(command, args)
    search_path = (env or {}).get("PATH") or os.environ.get("PATH")
    argv[0] = resolve_executable(argv[0], search_path)

    config = PTYConfig(command=argv, env=dict(env or {}), cwd=cwd, cols=cols, rows=rows)
    tty = get_tty_class()(config, session_id)
    try:
        await tty.start()
    except (OSError, RuntimeError) as exc:
        raise SpawnFailedError(f"failed to start {argv[0]}: {exc}", session_id) from exc
    return tty


__all__ = [
    "BaseTTY",
    "PTYConfig",
    "check_working_directory",
    "get_tty_class",
    "resolve_executable",
    "spawn",
    "split_command",
]
