"""Liveness states reported for a session."""

from __future__ import annotations

from enum import StrEnum


class SessionState(StrEnum):
    IDLE = "idle"
    BUSY = "busy"  # producing output / working
    WAITING_INPUT = "waiting_input"  # asked the user a question
