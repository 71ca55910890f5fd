"""
Engine event bus.

Typed lifecycle/data/state events fanned out to explicit subscribers
(transport layer, renderer, history persistence). Consumers subscribe to an
event class, optionally filtered to one session, and get back a callable
that removes the subscription. Subscribing to ``SessionEvent`` receives
every event.

``publish`` runs subscribers synchronously, in subscription order, on the
caller's thread of control. A failing subscriber is logged and skipped; it
never affects other subscribers or the session that produced the event.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from agentmux.core.session.models import short_id
from agentmux.core.state.models import SessionState

logger = structlog.get_logger()


@dataclass(frozen=True)
class SessionEvent:
    session_id: str


@dataclass(frozen=True)
class SessionCreated(SessionEvent):
    user: str
    worktree: str | None
    working_directory: str


@dataclass(frozen=True)
class SessionData(SessionEvent):
    data: str


@dataclass(frozen=True)
class SessionStateChanged(SessionEvent):
    state: SessionState
    previous: SessionState


@dataclass(frozen=True)
class SessionDetached(SessionEvent):
    """The local attachment ended but the multiplexer session is still running."""


@dataclass(frozen=True)
class SessionExit(SessionEvent):
    exit_code: int | None


@dataclass(frozen=True)
class SessionDestroyed(SessionEvent):
    pass


E = TypeVar("E", bound=SessionEvent)


@dataclass(eq=False)
class _Subscription:
    event_type: type[SessionEvent]
    callback: Callable[[Any], None]
    session_id: str | None


class EventBus:
    """Explicit observer list for session events."""

    def __init__(self) -> None:
        self._subs: list[_Subscription] = []

    def subscribe(
        self,
        event_type: type[E],
        callback: Callable[[E], None],
        *,
        session_id: str | None = None,
    ) -> Callable[[], None]:
        """Register *callback*; return a function that unsubscribes it."""
        sub = _Subscription(event_type, callback, session_id)
        self._subs.append(sub)

        def unsubscribe() -> None:
            if sub in self._subs:
                self._subs.remove(sub)

        return unsubscribe

    def unsubscribe_session(self, session_id: str) -> None:
        """Drop every subscription filtered to *session_id*."""
        self._subs = [s for s in self._subs if s.session_id != session_id]

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, event: SessionEvent) -> None:
        for sub in list(self._subs):
            if not isinstance(event, sub.event_type):
                continue
            if sub.session_id is not None and sub.session_id != event.session_id:
                continue
            try:
                sub.callback(event)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "subscriber_failed",
                    session_id=short_id(event.session_id),
                    event_type=type(event).__name__,
                    error=str(exc),
                )
