"""agentmux constants: filesystem layout, engine defaults, and limits."""

from __future__ import annotations

import os
import sys
from enum import IntEnum
from pathlib import Path

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    ENV_ERROR = 3
    NOT_FOUND = 4
    DEPENDENCY_MISSING = 7


# ---------------------------------------------------------------------------
# Platform-specific data directory
# ---------------------------------------------------------------------------


def _default_data_dir() -> Path:
    """
    Return the platform-appropriate agentmux data directory.

    macOS : ~/Library/Application Support/agentmux
    Linux : ~/.config/agentmux
    Other : ~/.agentmux
    """
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "agentmux"
    if sys.platform.startswith("linux"):
        xdg = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        return xdg / "agentmux"
    return Path.home() / ".agentmux"


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

CONFIG_FILENAME = "config.toml"
DB_FILENAME = "agentmux.db"

# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

DEFAULT_COMMAND = "claude"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
MAX_SESSIONS_PER_OWNER = 20
SESSION_ID_PREFIX = "sess_"
SESSION_ENV_VAR = "AGENTMUX_SESSION_ID"
TERM_NAME = "xterm-256color"
READ_CHUNK_BYTES = 4096
KILL_GRACE_S = 2.0  # SIGHUP → SIGKILL escalation delay

# ---------------------------------------------------------------------------
# Output buffer
# ---------------------------------------------------------------------------

BUFFER_HIGH_WATER_BYTES = 10 * 1024 * 1024
BUFFER_LOW_WATER_BYTES = 8 * 1024 * 1024

# ---------------------------------------------------------------------------
# State detection
# ---------------------------------------------------------------------------

IDLE_TIMER_MS = 500  # per-chunk idle timer armed by a busy marker
IDLE_THRESHOLD_MS = 3000  # wall-clock silence fallback
STATE_TICK_MS = 500
DETECTOR_WINDOW_LINES = 50

# ---------------------------------------------------------------------------
# Multiplexer (tmux)
# ---------------------------------------------------------------------------

TMUX_BINARY = "tmux"
TMUX_PREFIX = "agentmux_"
CAPTURE_LINES = 1000

# Matches tmux's own status line when it leaks into a pane capture, e.g.
#   [agentmux@host: 0:0 "docker-1" 12:34 18-Oct-26]
#   [0] 0:bash*  "host" 12:34 18-Oct-26
STATUS_LINE_PATTERN = (
    r"^\[?[\w.@\-]*:?\]?\s*\d+:[\w.\-]+[*\-#!~MZ]?\s*"
    r'"[^"]*"\s*\d{1,2}:\d{2}\s+\d{1,2}-\w{3}-\d{2,4}\]?$'
)

# ---------------------------------------------------------------------------
# History store
# ---------------------------------------------------------------------------

HISTORY_FLUSH_INTERVAL_MS = 250

# Output without a newline (spinners, status redraws) is cut into lines of
# at most this many characters.
HISTORY_MAX_LINE_CHARS = 4096
