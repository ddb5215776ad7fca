"""
HTTP access to the traffic-simulation backend.

All calls go through one QNetworkAccessManager on the GUI thread, so network
completion is just another event on the Qt loop. Every call returns a
``PendingCall`` handle: owners connect to ``succeeded`` / ``failed`` and may
``cancel()`` it on teardown, after which neither signal fires.
"""

import json
import logging
from enum import Enum
from typing import Any, Callable
from urllib.parse import quote

from PySide6.QtCore import QByteArray, QObject, QUrl, Signal
from PySide6.QtNetwork import QNetworkAccessManager, QNetworkReply, QNetworkRequest

from funnel.errors import ConsoleError, DecodeError, FetchError, HttpStatusError

logger = logging.getLogger(__name__)


class CallState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PendingCall(QObject):
    """Handle for one in-flight request."""

    succeeded = Signal(object)
    failed = Signal(object)

    def __init__(self, description: str, parent: QObject | None = None):
        super().__init__(parent)
        self.description = description
        self._state = CallState.PENDING
        self._abort: Callable[[], None] | None = None
        self._value: Any = None
        self._error: ConsoleError | None = None

    # ---- State ---- #

    @property
    def state(self) -> CallState:
        return self._state

    def is_pending(self) -> bool:
        return self._state is CallState.PENDING

    def is_cancelled(self) -> bool:
        return self._state is CallState.CANCELLED

    def value(self) -> Any:
        return self._value

    def error(self) -> ConsoleError | None:
        return self._error

    # ---- Settlement ---- #

    def attach(self, reply: QNetworkReply) -> None:
        self._abort = reply.abort

    def chain(self, upstream: "PendingCall") -> None:
        """Cancelling this call also cancels ``upstream``."""
        self._abort = upstream.cancel

    def resolve(self, value: Any = None) -> None:
        if not self.is_pending():
            return
        self._state = CallState.SUCCEEDED
        self._value = value
        self._abort = None
        self.succeeded.emit(value)

    def reject(self, error: ConsoleError) -> None:
        if not self.is_pending():
            return
        self._state = CallState.FAILED
        self._error = error
        self._abort = None
        self.failed.emit(error)

    def cancel(self) -> None:
        """Abandon the call. Safe to call in any state."""
        if not self.is_pending():
            return
        self._state = CallState.CANCELLED
        abort, self._abort = self._abort, None
        if abort is not None:
            abort()
        logger.debug("cancelled %s", self.description)


def interpret_response(
    status: int | None,
    transport_error: str,
    body: bytes,
    url: str = "",
    expect_json: bool = True,
) -> Any:
    """
    Turn the raw outcome of one request into a value or a ConsoleError.

    Args:
        status: HTTP status, or None when no response arrived.
        transport_error: Network-layer error text (used when status is None).
        body: Raw response body.
        url: For error messages.
        expect_json: Decode the body as JSON; otherwise the body is ignored.
    """
    if status is None:
        raise FetchError(transport_error or f"no response from {url}")
    if not 200 <= int(status) < 300:
        raise HttpStatusError(status, url)
    if not expect_json:
        return None
    if not body:
        raise DecodeError(f"empty body from {url}")
    try:
        return json.loads(body.decode("utf-8"))
    except ValueError as e:
        raise DecodeError(f"invalid JSON from {url}: {e}") from e


class ConsoleApiClient(QObject):
    """The backend's admin and metrics endpoints."""

    def __init__(self, base_url: str, timeout_ms: int = 5000, parent: QObject | None = None):
        super().__init__(parent)
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = int(timeout_ms)
        self._nam = QNetworkAccessManager(self)

    # ---- Endpoints ---- #

    def get_config(self) -> PendingCall:
        return self._send("GET", "/admin/config")

    def get_line(self, line_id: str) -> PendingCall:
        return self._send("GET", f"/admin/line/{quote(line_id, safe='')}")

    def save_line(self, line_id: str, body: dict) -> PendingCall:
        return self._send(
            "POST", f"/admin/line/{quote(line_id, safe='')}", body=body, expect_json=False
        )

    def get_snapshot(self) -> PendingCall:
        return self._send("GET", "/metrics/snapshot")

    def reset(self) -> PendingCall:
        return self._send("POST", "/admin/reset", body=None, expect_json=False)

    # ---- Transport ---- #

    def _send(
        self, method: str, path: str, body: dict | None = None, expect_json: bool = True
    ) -> PendingCall:
        url = f"{self.base_url}{path}"
        call = PendingCall(f"{method} {path}", parent=self)

        request = QNetworkRequest(QUrl(url))
        request.setTransferTimeout(self.timeout_ms)
        if method == "GET":
            reply = self._nam.get(request)
        else:
            request.setHeader(
                QNetworkRequest.KnownHeaders.ContentTypeHeader, "application/json"
            )
            data = b"" if body is None else json.dumps(body).encode("utf-8")
            reply = self._nam.post(request, QByteArray(data))

        logger.debug("%s %s", method, url)
        call.attach(reply)
        reply.finished.connect(lambda: self._on_finished(reply, call, url, expect_json))
        return call

    def _on_finished(
        self, reply: QNetworkReply, call: PendingCall, url: str, expect_json: bool
    ) -> None:
        reply.deleteLater()
        if not call.is_pending():
            call.deleteLater()
            return

        status = reply.attribute(QNetworkRequest.Attribute.HttpStatusCodeAttribute)
        if status is not None:
            status = int(status)
        body = reply.readAll().data()
        try:
            value = interpret_response(
                status, reply.errorString(), bytes(body), url=url, expect_json=expect_json
            )
        except ConsoleError as e:
            call.reject(e)
        else:
            call.resolve(value)
        finally:
            call.deleteLater()
