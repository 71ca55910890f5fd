"""
Liveness state detector.

Classifies an interactive agent as ``busy``, ``waiting_input`` or ``idle``
from its terminal output. One detector per session; all bookkeeping lives in
a single ``DetectorState`` owned by that detector.

Signals (matched on ANSI-stripped text of the newest chunk):

  busy markers      "esc to interrupt" and friends — the agent is working
  waiting markers   interrogative phrasing ("Do you want…", "(y/n)", …) or a
                    bare ``>`` prompt at the very end of the output
  box markers       the agent draws its input box with ╭ … ╰ corners; a top
                    corner without a bottom one means the box is still being
                    drawn, a bottom corner closes it
  decorative lines  "? for shortcuts", update banners, … — noise

Per-chunk transition rules, first match wins:

  1. decorative-only chunk                       → no change
  2. waiting marker (chunk, or inside the box
     this chunk just closed)                     → waiting_input
  3. waiting_input + chunk is just the box's
     bottom border                               → stay waiting_input
  4. busy marker                                 → busy, arm idle timer
  5. chunk closes the box                        → idle
  6. any other visible output                    → busy

Two independent idle paths:

  idle timer   armed by a busy marker; fires after ``idle_timer_s`` unless a
               qualifying chunk cancels or re-arms it
  tick()       wall-clock fallback, called periodically: ``busy`` with no
               output for ``idle_threshold_s`` becomes ``idle``

Whichever reaches ``idle`` first cancels the other's pending timer. A state
change is reported to ``on_change`` exactly once.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from agentmux.core.constants import DETECTOR_WINDOW_LINES, IDLE_THRESHOLD_MS, IDLE_TIMER_MS
from agentmux.core.output.sanitize import strip_ansi
from agentmux.core.state.models import SessionState

# ---------------------------------------------------------------------------
# Marker library
# ---------------------------------------------------------------------------

BOX_TOP = "╭"
BOX_BOTTOM = "╰"

_BUSY_MARKERS: tuple[str, ...] = (
    "esc to interrupt",
    "press esc to stop",
    "[esc]",
)

_WAITING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bdo you want\b",
        r"\bwould you like\b",
        r"\bplease confirm\b",
        r"\bcontinue\?",
        r"\(y/n\)",
        r"\[y/n\]",
        r"\benter your\b",
        r"\bwhat would you\b",
        r"\b(?:should|may|can|shall) i\b",
    )
)

# ">" at the very end of the stream, not part of "->", "=>" or a tag
_BARE_PROMPT_RE = re.compile(r"(?:^|\s)>\s*$")

_BOX_TOP_LINE_RE = re.compile(r"^╭─+╮$")
_BOX_SIDE_LINE_RE = re.compile(r"^│.*│$")
_BOX_BOTTOM_LINE_RE = re.compile(r"^╰─+╯$")

_DECORATIVE_SUBSTRINGS: tuple[str, ...] = (
    "? for shortcuts",
    "use /ide",
    "auto-update",
    "auto-updating",
    "update available",
    "claude doctor",
    "press ctrl-c again to exit",
)
_DECORATIVE_PREFIXES: tuple[str, ...] = ("◯", "✗", "✓")


def has_busy_marker(text: str) -> bool:
    lower = text.lower()
    return any(marker in lower for marker in _BUSY_MARKERS)


def has_waiting_marker(text: str) -> bool:
    if any(p.search(text) for p in _WAITING_PATTERNS):
        return True
    return bool(_BARE_PROMPT_RE.search(text))


def _visible_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def _is_box_line(line: str) -> bool:
    return bool(
        _BOX_TOP_LINE_RE.match(line)
        or _BOX_SIDE_LINE_RE.match(line)
        or _BOX_BOTTOM_LINE_RE.match(line)
    )


def _is_decorative_line(line: str) -> bool:
    lower = line.lower()
    return line.startswith(_DECORATIVE_PREFIXES) or any(s in lower for s in _DECORATIVE_SUBSTRINGS)


def is_decorative_only(text: str) -> bool:
    """
    True if *text* is nothing but input-box lines plus known status lines.

    At least one status line must be present: a bare box is a real signal
    (the box closing), not decoration.
    """
    lines = _visible_lines(text)
    if not lines:
        return False
    saw_decoration = False
    for line in lines:
        if _is_decorative_line(line):
            saw_decoration = True
        elif not _is_box_line(line):
            return False
    return saw_decoration


def is_bottom_border_only(text: str) -> bool:
    lines = _visible_lines(text)
    return bool(lines) and all(_BOX_BOTTOM_LINE_RE.match(line) for line in lines)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


@dataclass
class DetectorState:
    """All mutable bookkeeping for one session's detector."""

    state: SessionState = SessionState.BUSY
    window: deque[str] = field(default_factory=lambda: deque(maxlen=DETECTOR_WINDOW_LINES))
    last_output_at: float = field(default_factory=time.monotonic)
    box_top_seen: bool = False
    box_bottom_seen: bool = False
    box_lines: list[str] = field(default_factory=list)  # lines since the last ╭
    waiting_with_bottom_border: bool = False
    idle_timer: asyncio.TimerHandle | None = None
    closed: bool = False


class StateDetector:
    """
    Per-session liveness state machine.

    Usage::

        detector = StateDetector("sess_ab12", on_change=lambda old, new: ...)
        detector.feed(chunk)        # for every sanitised output chunk
        detector.tick()             # from a periodic ticker
        detector.close()            # on destroy
    """

    def __init__(
        self,
        session_id: str,
        on_change: Callable[[SessionState, SessionState], None] | None = None,
        *,
        idle_timer_s: float = IDLE_TIMER_MS / 1000,
        idle_threshold_s: float = IDLE_THRESHOLD_MS / 1000,
        window_lines: int = DETECTOR_WINDOW_LINES,
        clock: Callable[[], float] = time.monotonic,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.session_id = session_id
        self._on_change = on_change
        self._idle_timer_s = idle_timer_s
        self._idle_threshold_s = idle_threshold_s
        self._clock = clock
        self._loop = loop
        self._state = DetectorState(window=deque(maxlen=window_lines), last_output_at=clock())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state.state

    @property
    def last_output_at(self) -> float:
        return self._state.last_output_at

    @property
    def idle_timer_pending(self) -> bool:
        return self._state.idle_timer is not None

    def recent_lines(self) -> list[str]:
        return list(self._state.window)

    def last_question(self) -> str | None:
        """Return the most recent line carrying a waiting marker, if any."""
        for line in reversed(self._state.window):
            if any(p.search(line) for p in _WAITING_PATTERNS):
                return line.strip(" │")
        return None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def feed(self, chunk: str) -> SessionState:
        """Evaluate one sanitised output chunk and return the resulting state."""
        st = self._state
        if st.closed:
            return st.state

        clean = strip_ansi(chunk)
        if not clean.strip():
            return st.state

        lines = clean.split("\n")
        st.window.extend(line for line in lines if line.strip())
        box_closed = self._track_box(lines)

        waiting = has_waiting_marker(clean)
        if not waiting and box_closed:
            waiting = has_waiting_marker("\n".join(st.box_lines))
        busy = has_busy_marker(clean)

        if not waiting and not busy and is_decorative_only(clean):
            return st.state

        st.last_output_at = self._clock()

        if waiting:
            st.waiting_with_bottom_border = BOX_BOTTOM in clean
            self._cancel_idle_timer()
            self._transition(SessionState.WAITING_INPUT)
        elif st.state == SessionState.WAITING_INPUT and is_bottom_border_only(clean):
            st.waiting_with_bottom_border = True
            self._cancel_idle_timer()
        elif busy:
            st.waiting_with_bottom_border = False
            self._transition(SessionState.BUSY)
            self._arm_idle_timer()
        elif box_closed:
            self._cancel_idle_timer()
            self._transition(SessionState.IDLE)
        else:
            self._transition(SessionState.BUSY)
        return st.state

    def tick(self) -> SessionState:
        """Wall-clock fallback: ``busy`` with no output for the threshold becomes ``idle``."""
        st = self._state
        if st.closed or st.state != SessionState.BUSY:
            return st.state
        if self._clock() - st.last_output_at >= self._idle_threshold_s:
            self._transition(SessionState.IDLE)
        return st.state

    def close(self) -> None:
        """Cancel pending work; later feed()/tick() calls and timer firings are ignored."""
        self._cancel_idle_timer()
        self._state.closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _track_box(self, lines: Iterable[str]) -> bool:
        """Update box corner bookkeeping; return True if this chunk closed an open box."""
        st = self._state
        closed = False
        cap = st.window.maxlen or DETECTOR_WINDOW_LINES
        for line in lines:
            if BOX_TOP in line:
                st.box_top_seen = True
                st.box_bottom_seen = False
                st.box_lines = []
            if st.box_top_seen and not st.box_bottom_seen and line.strip():
                st.box_lines.append(line)
                if len(st.box_lines) > cap:
                    del st.box_lines[0]
            if BOX_BOTTOM in line and st.box_top_seen and not st.box_bottom_seen:
                st.box_bottom_seen = True
                closed = True
        return closed

    def _transition(self, new: SessionState) -> None:
        st = self._state
        if new == st.state:
            return
        old = st.state
        st.state = new
        if new == SessionState.IDLE:
            self._cancel_idle_timer()
        if self._on_change is not None:
            self._on_change(old, new)

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        loop = self._loop or asyncio.get_running_loop()
        self._state.idle_timer = loop.call_later(self._idle_timer_s, self._on_idle_timer)

    def _cancel_idle_timer(self) -> None:
        timer = self._state.idle_timer
        if timer is not None:
            timer.cancel()
            self._state.idle_timer = None

    def _on_idle_timer(self) -> None:
        st = self._state
        st.idle_timer = None
        if st.closed:
            return
        if st.state == SessionState.BUSY:
            self._transition(SessionState.IDLE)
