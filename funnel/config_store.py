import logging
from typing import Any

from PySide6.QtCore import QObject

from funnel.api_client import PendingCall
from funnel.errors import ConsoleError, DecodeError
from funnel.lines import LineConfig, decode_lines

logger = logging.getLogger(__name__)


class LineConfigStore(QObject):
    """
    Last server-confirmed configuration of every known line.

    The store reads from the backend but never writes to it; each line's form
    owns its own saves and reports back through ``confirm()`` once the server
    accepted a payload. One attempt per call, no retries.
    """

    def __init__(self, api, line_ids: list[str] | tuple[str, ...], parent: QObject | None = None):
        super().__init__(parent)
        self._api = api
        self._line_ids: tuple[str, ...] = tuple(line_ids)
        self._confirmed: dict[str, LineConfig] = {}

    # ---- Reads ---- #

    @property
    def line_ids(self) -> tuple[str, ...]:
        return self._line_ids

    def is_loaded(self) -> bool:
        return len(self._confirmed) == len(self._line_ids)

    def confirmed(self, line_id: str) -> LineConfig:
        """Last value the server acknowledged. Raises KeyError before load."""
        return self._confirmed[line_id]

    def snapshot(self) -> dict[str, LineConfig]:
        return dict(self._confirmed)

    # ---- Remote ---- #

    def load(self) -> PendingCall:
        """
        Fetch ``/admin/config`` once.

        The returned call resolves with ``{line_id: LineConfig}`` for every
        known line, or fails with FetchError, HttpStatusError, DecodeError or
        ContractViolation.
        """
        upstream = self._api.get_config()
        result = PendingCall("load config", parent=self)
        result.chain(upstream)

        def on_payload(payload: Any):
            try:
                lines = decode_lines(payload, self._line_ids)
            except ConsoleError as e:
                logger.error("Config load rejected: %s", e)
                result.reject(e)
                return
            self._confirmed = dict(lines)
            logger.info("Loaded config for %d lines", len(lines))
            result.resolve(lines)

        def on_error(err: ConsoleError):
            logger.error("Config load failed: %s", err)
            result.reject(err)

        upstream.succeeded.connect(on_payload)
        upstream.failed.connect(on_error)
        return result

    def fetch_line(self, line_id: str) -> PendingCall:
        """Re-read one line from ``/admin/line/{id}`` and adopt it as confirmed."""
        if line_id not in self._line_ids:
            raise KeyError(f"unknown line: {line_id}")

        upstream = self._api.get_line(line_id)
        result = PendingCall(f"fetch {line_id}", parent=self)
        result.chain(upstream)

        def on_payload(payload: Any):
            try:
                cfg = LineConfig.from_dict(payload, line_id)
            except DecodeError as e:
                result.reject(e)
                return
            self._confirmed[line_id] = cfg
            result.resolve(cfg)

        upstream.succeeded.connect(on_payload)
        upstream.failed.connect(result.reject)
        return result

    # ---- Reconciliation ---- #

    def confirm(self, line_id: str, config: LineConfig) -> None:
        """Record ``config`` as accepted by the server (after a successful save)."""
        if line_id not in self._line_ids:
            raise KeyError(f"unknown line: {line_id}")
        self._confirmed[line_id] = config
