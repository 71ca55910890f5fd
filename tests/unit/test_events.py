"""Unit tests for the session event bus."""

from __future__ import annotations

from agentmux.core.events import (
    EventBus,
    SessionData,
    SessionDestroyed,
    SessionEvent,
    SessionStateChanged,
)
from agentmux.core.state.models import SessionState


def test_dispatch_by_event_type() -> None:
    bus = EventBus()
    data: list[SessionData] = []
    bus.subscribe(SessionData, data.append)

    bus.publish(SessionData("sess_a", "chunk"))
    bus.publish(SessionDestroyed("sess_a"))

    assert data == [SessionData("sess_a", "chunk")]


def test_base_class_receives_everything() -> None:
    bus = EventBus()
    seen: list[SessionEvent] = []
    bus.subscribe(SessionEvent, seen.append)

    bus.publish(SessionData("sess_a", "x"))
    bus.publish(SessionStateChanged("sess_a", SessionState.IDLE, SessionState.BUSY))

    assert [type(e) for e in seen] == [SessionData, SessionStateChanged]


def test_session_filter() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(SessionData, lambda e: seen.append(e.session_id), session_id="sess_a")

    bus.publish(SessionData("sess_b", "x"))
    bus.publish(SessionData("sess_a", "y"))

    assert seen == ["sess_a"]


def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[SessionData] = []
    unsubscribe = bus.subscribe(SessionData, seen.append)
    unsubscribe()
    unsubscribe()  # second call is harmless

    bus.publish(SessionData("sess_a", "x"))

    assert seen == []
    assert bus.subscriber_count == 0


def test_unsubscribe_removes_only_its_own_subscription() -> None:
    bus = EventBus()
    seen: list[SessionData] = []
    first = bus.subscribe(SessionData, seen.append)
    bus.subscribe(SessionData, seen.append)

    first()
    bus.publish(SessionData("sess_a", "x"))

    assert len(seen) == 1


def test_unsubscribe_session() -> None:
    bus = EventBus()
    bus.subscribe(SessionData, lambda e: None, session_id="sess_a")
    bus.subscribe(SessionData, lambda e: None, session_id="sess_b")
    bus.subscribe(SessionData, lambda e: None)

    bus.unsubscribe_session("sess_a")

    assert bus.subscriber_count == 2


def test_failing_subscriber_is_isolated() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(_event: SessionData) -> None:
        raise ValueError("bad subscriber")

    bus.subscribe(SessionData, broken)
    bus.subscribe(SessionData, lambda e: seen.append(e.data))

    bus.publish(SessionData("sess_a", "still delivered"))

    assert seen == ["still delivered"]


def test_subscribers_run_in_subscription_order() -> None:
    bus = EventBus()
    order: list[int] = []
    for i in range(3):
        bus.subscribe(SessionDestroyed, lambda e, i=i: order.append(i))

    bus.publish(SessionDestroyed("sess_a"))

    assert order == [0, 1, 2]
