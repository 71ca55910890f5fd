"""
agentmux — session engine for interactive coding agents across many worktrees.

agentmux runs one interactive agent process per worktree inside a
pseudo-terminal, optionally backed by a detachable tmux session so the run
survives engine restarts and client disconnects. Output is sanitised,
buffered with bounded memory, and classified as idle / busy / waiting for
input without the caller having to parse the terminal.

Package layout (src/agentmux/):
  core/       — session registry, state detector, output pipeline, events, store
  os/tty/     — PTY process adapter (ptyprocess, POSIX)
  os/tmux.py  — tmux command client
  backends/   — plain vs. tmux-backed session persistence
  cli/        — Click CLI entry point
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
