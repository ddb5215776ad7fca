import copy
import os
from dataclasses import dataclass

# Headless Qt for the whole test session
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
os.environ.setdefault("MPLBACKEND", "Agg")

import pytest
from PySide6.QtWidgets import QApplication

from funnel.api_client import PendingCall


@pytest.fixture(scope="session")
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


# -------------------------
# Fake backend transport
# -------------------------


@dataclass
class FakeRequest:
    method: str
    path: str
    body: dict | None
    call: PendingCall


class FakeApi:
    """
    Stands in for ConsoleApiClient. Every request is recorded and left
    pending; tests settle it with ``call.resolve(...)`` / ``call.reject(...)``.
    """

    def __init__(self):
        self.requests: list[FakeRequest] = []

    def _new(self, method: str, path: str, body: dict | None = None) -> PendingCall:
        call = PendingCall(f"{method} {path}")
        self.requests.append(FakeRequest(method, path, copy.deepcopy(body), call))
        return call

    def get_config(self) -> PendingCall:
        return self._new("GET", "/admin/config")

    def get_line(self, line_id: str) -> PendingCall:
        return self._new("GET", f"/admin/line/{line_id}")

    def save_line(self, line_id: str, body: dict) -> PendingCall:
        return self._new("POST", f"/admin/line/{line_id}", body)

    def get_snapshot(self) -> PendingCall:
        return self._new("GET", "/metrics/snapshot")

    def reset(self) -> PendingCall:
        return self._new("POST", "/admin/reset", None)

    def matching(self, method: str, path: str) -> list[FakeRequest]:
        return [r for r in self.requests if r.method == method and r.path == path]

    def last(self, method: str, path: str) -> FakeRequest:
        found = self.matching(method, path)
        assert found, f"no {method} {path} request recorded"
        return found[-1]


@pytest.fixture
def fake_api(qapp):
    return FakeApi()


# -------------------------
# Backend payloads
# -------------------------

LINE_IDS = ("outer-unified", "inner-unified", "outer-zf", "inner-zf")


def _line(name: str, **overrides) -> dict:
    cfg = {
        "name": name,
        "enabled": True,
        "base_latency_ms": 220,
        "jitter_ms": 80,
        "error_rate": 0.02,
        "timeout_rate": 0.01,
        "timeout_ms": 15000,
        "night_block_enabled": False,
        "night_block_window": {"start": "00:30", "end": "06:00"},
    }
    cfg.update(overrides)
    return cfg


@pytest.fixture
def line_ids():
    return LINE_IDS


@pytest.fixture
def config_payload():
    return {
        "lines": {
            "outer-unified": _line(
                "outer-unified",
                enabled=True,
                base_latency_ms=100,
                jitter_ms=20,
                error_rate=0.1,
                timeout_rate=0.05,
                timeout_ms=3000,
                night_block_enabled=False,
                night_block_window={"start": "00:00", "end": "06:00"},
            ),
            "inner-unified": _line("inner-unified", base_latency_ms=80, night_block_enabled=True),
            "outer-zf": _line("outer-zf", base_latency_ms=420, error_rate=0.08),
            "inner-zf": _line("inner-zf", base_latency_ms=160, timeout_ms=20000),
        }
    }


@pytest.fixture
def snapshot_payload():
    def _series(rps, avg):
        return {"sec": list(range(len(rps))), "rps": rps, "latency_avg": avg}

    return {
        "series": {
            "outer-unified": _series([1, 5, 3], [10, 20, 15]),
            "inner-unified": _series([0, 0, 0], [0, 0, 0]),
            "outer-zf": _series([80, 120], [300, 450]),
            "inner-zf": {"sec": None, "rps": None, "latency_avg": None},
        },
        "totals": {
            "outer-unified": {
                "requests": 9,
                "success": 8,
                "errors": 1,
                "timeouts": 0,
                "p50_ms": 15,
                "p95_ms": 20,
                "p99_ms": 20,
            },
        },
    }
