# funnel/tests/test_event_bus.py
import logging

import pytest

from event_bus import EventBus, EventNames


@pytest.fixture
def bus():
    return EventBus()


def test_emit_reaches_subscribers_in_order(bus):
    got = []
    bus.subscribe(EventNames.LINE_SAVED, lambda d: got.append(("a", d)))
    bus.subscribe(EventNames.LINE_SAVED, lambda d: got.append(("b", d)))
    bus.subscribe(EventNames.RESET_SENT, lambda d: got.append(("other", d)))

    bus.emit(EventNames.LINE_SAVED, "outer-zf")
    assert got == [("a", "outer-zf"), ("b", "outer-zf")]


def test_wire_names_resolve_to_members(bus):
    got = []
    bus.subscribe("line_saved", got.append)
    bus.emit(EventNames.LINE_SAVED, "inner-zf")

    assert got == ["inner-zf"]
    assert bus.subscriber_count(EventNames.LINE_SAVED) == 1
    with pytest.raises(ValueError):
        bus.subscribe("no_such_event", got.append)


def test_failing_subscriber_is_logged_and_isolated(bus, caplog):
    got = []

    def boom(_d):
        raise RuntimeError("subscriber broke")

    bus.subscribe(EventNames.RESET_FAILED, boom)
    bus.subscribe(EventNames.RESET_FAILED, got.append)

    with caplog.at_level(logging.ERROR, logger="event_bus"):
        bus.emit(EventNames.RESET_FAILED, "HTTP 500")

    assert got == ["HTTP 500"]
    assert "RESET_FAILED" in caplog.text


def test_unsubscribe_during_emit(bus):
    got = []

    def once(d):
        got.append(d)
        bus.unsubscribe(EventNames.CONSOLE_INFO, once)

    bus.subscribe(EventNames.CONSOLE_INFO, once)
    bus.emit(EventNames.CONSOLE_INFO, 1)
    bus.emit(EventNames.CONSOLE_INFO, 2)

    assert got == [1]
    assert bus.subscriber_count(EventNames.CONSOLE_INFO) == 0
