"""
Terminal output sanitisation.

Two independent checks run over every inbound chunk before it reaches the
buffer, the state detector or any subscriber:

  looks_problematic(chunk) — does the chunk carry terminal *responses*
                             (device attributes, cursor position reports)?
  sanitize(chunk)          — remove those responses and bare, unterminated
                             ESC bytes; colour and cursor-movement sequences
                             are left alone.

A real terminal sends DA/CPR responses back to the program that asked for
them. When several viewers observe the same multiplexer session and one of
them echoes a partial response back, the child sees garbage and can loop.
Stripping them on the way out stops that.

``strip_ansi`` is the separate, lossy view used by the state detector: it
removes every escape sequence and control byte so markers can be matched on
plain text.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Terminal responses
# ---------------------------------------------------------------------------

# Order matters for sanitize(): full sequences first, then orphaned remnants
# whose ESC [ prefix was split off by an earlier read.
_RESPONSE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\x1b\[[>?][0-9;]*c"),  # secondary / private DA response
    re.compile(r"\x1b\[[0-9;]*c"),  # primary DA response
    re.compile(r"\x1b\[[0-9]+;[0-9]+R"),  # cursor position report
    re.compile(r">[0-9;]+c"),  # orphaned secondary DA (e.g. ">0;276;0c")
    re.compile(r"\?[0-9;]+c"),  # orphaned private DA (e.g. "?1;2c")
)

# ESC that does not start a sequence: followed by a non-printable byte or
# sitting at the very end of the chunk.
_BARE_ESC_RE = re.compile(r"\x1b(?![ -~])")


def looks_problematic(chunk: str) -> bool:
    """Return True if *chunk* contains device-attribute or cursor-position responses."""
    if "c" not in chunk and "R" not in chunk:
        return False
    return any(p.search(chunk) for p in _RESPONSE_PATTERNS)


def sanitize(chunk: str) -> str:
    """Remove terminal responses and bare ESC bytes from *chunk*."""
    cleaned = chunk
    for pattern in _RESPONSE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return _BARE_ESC_RE.sub("", cleaned)


def sanitize_if_needed(chunk: str) -> str:
    """Hot-path entry point: only allocate a new string when there is something to strip."""
    if looks_problematic(chunk):
        return sanitize(chunk)
    return chunk


# ---------------------------------------------------------------------------
# ANSI stripping (detector view)
# ---------------------------------------------------------------------------
# Matches:
#   CSI sequences      \x1b[ ... final byte  (including private mode ? > ! =)
#   OSC sequences      \x1b] ... BEL  or  \x1b] ... ST
#   DCS/PM/APC/SOS     \x1bP ... ST etc.
#   Charset designators \x1b( B
#   Other ESC seqs     \x1b + intermediate + final (\x1b=, \x1b7)
_ANSI_RE = re.compile(
    r"\x1b\[[0-9;?>=!]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[PX^_].*?\x1b\\"
    r"|\x1b[()][A-Z0-9]"
    r"|\x1b[ -/]*[0-~]",
    re.DOTALL,
)

# Control bytes except newline; tabs become spaces below
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

# SGR parameter lists left behind when a chunk boundary split "\x1b[" off
_ORPHAN_SGR_RE = re.compile(r"^[0-9;]+m|[0-9]+;[0-9]+;[0-9;]+m", re.MULTILINE)


def strip_ansi(text: str) -> str:
    """Remove escape sequences, carriage returns and control bytes, keeping newlines."""
    text = _ANSI_RE.sub("", text)
    text = text.replace("\t", " ")
    text = _CONTROL_RE.sub("", text)
    return _ORPHAN_SGR_RE.sub("", text)
