import logging

from PySide6.QtCore import QObject, QTimer, Signal

from funnel.api_client import PendingCall
from funnel.errors import ConsoleError
from funnel.metrics import decode_snapshot

logger = logging.getLogger(__name__)


class MetricsPoller(QObject):
    """
    Self-scheduling ``/metrics/snapshot`` loop.

    The next tick is armed only once the current request has settled, so two
    polls are never in flight together and the cadence is measured from the
    end of the previous cycle. A failed tick is logged and skipped.
    """

    snapshot_ready = Signal(object)  # MetricsSnapshot
    tick_skipped = Signal(object)  # ConsoleError

    def __init__(
        self,
        api,
        line_ids: list[str] | tuple[str, ...],
        interval_ms: int = 1000,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._api = api
        self._line_ids = tuple(line_ids)
        self._running = False
        self._in_flight: PendingCall | None = None

        self.ticks_ok = 0
        self.ticks_skipped = 0

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(max(0, int(interval_ms)))
        self._timer.timeout.connect(self.poll_once)

    @property
    def interval_ms(self) -> int:
        return self._timer.interval()

    def is_running(self) -> bool:
        return self._running

    def is_polling(self) -> bool:
        return self._in_flight is not None

    def is_scheduled(self) -> bool:
        return self._timer.isActive()

    # ---- Lifecycle ---- #

    def start(self):
        if self._running:
            return
        self._running = True
        logger.info("Metrics polling every %d ms", self.interval_ms)
        self.poll_once()

    def stop(self):
        """Stop the loop and abandon the request in flight, if any."""
        self._running = False
        self._timer.stop()
        call, self._in_flight = self._in_flight, None
        if call is not None:
            call.cancel()

    # ---- Ticks ---- #

    def poll_once(self):
        if self._in_flight is not None:
            return
        call = self._api.get_snapshot()
        self._in_flight = call
        call.succeeded.connect(self._on_payload)
        call.failed.connect(self._on_failed)

    def _on_payload(self, payload):
        self._in_flight = None
        try:
            snapshot = decode_snapshot(payload, self._line_ids)
        except ConsoleError as e:
            self._skip(e)
            return
        self.ticks_ok += 1
        self._schedule_next()
        self.snapshot_ready.emit(snapshot)

    def _on_failed(self, err: ConsoleError):
        self._in_flight = None
        self._skip(err)

    def _skip(self, err: ConsoleError):
        self.ticks_skipped += 1
        logger.warning("Metrics tick skipped: %s", err)
        self._schedule_next()
        self.tick_skipped.emit(err)

    def _schedule_next(self):
        if self._running:
            self._timer.start()

