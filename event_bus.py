import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventNames(Enum):
    CONSOLE_INFO = "console_info"
    CONFIG_LOADED = "config_loaded"
    CONFIG_LOAD_FAILED = "config_load_failed"
    LINE_SAVED = "line_saved"
    LINE_SAVE_FAILED = "line_save_failed"
    LINE_RELOADED = "line_reloaded"
    METRICS_TICK_SKIPPED = "metrics_tick_skipped"
    RESET_SENT = "reset_sent"
    RESET_FAILED = "reset_failed"


Subscriber = Callable[[Any], None]


class EventBus:
    """
    In-process fan-out of console events.

    Publishers emit an ``EventNames`` member with one payload; every
    subscriber of that event is called synchronously, in subscription order.
    A failing subscriber is logged and does not stop the others.
    """

    def __init__(self):
        self._subscribers: dict[EventNames, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event: EventNames, callback: Subscriber):
        self._subscribers[EventNames(event)].append(callback)

    def unsubscribe(self, event: EventNames, callback: Subscriber):
        subs = self._subscribers.get(EventNames(event), [])
        if callback in subs:
            subs.remove(callback)

    def subscriber_count(self, event: EventNames) -> int:
        return len(self._subscribers.get(EventNames(event), []))

    def emit(self, event: EventNames, data: Any = None):
        event = EventNames(event)
        # Copy: a subscriber may unsubscribe itself while being notified
        for callback in list(self._subscribers.get(event, [])):
            try:
                callback(data)
            except Exception:
                logger.exception("Error in event subscriber for %s", event.name)


event_bus = EventBus()
