from dataclasses import dataclass, field
from typing import Any

from funnel.errors import ContractViolation, DecodeError


@dataclass(frozen=True)
class LineSeries:
    """
    Per-second series of one line, index aligned.

    Attributes:
        sec (list[float]): Timestamps (unix seconds) or elapsed seconds.
        rps (list[float]): Requests completed in each second.
        latency_avg (list[float]): Average latency (ms) in each second.
        success (list[float]): Optional breakdown, empty when not served.
        errors (list[float]): Optional breakdown, empty when not served.
        timeouts (list[float]): Optional breakdown, empty when not served.
    """

    sec: list[float]
    rps: list[float]
    latency_avg: list[float]
    success: list[float] = field(default_factory=list)
    errors: list[float] = field(default_factory=list)
    timeouts: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.sec)


@dataclass(frozen=True)
class LineTotals:
    """Running counters and latency percentiles since the last reset."""

    requests: int
    success: int
    errors: int
    timeouts: int
    p50_ms: int
    p95_ms: int
    p99_ms: int

    def summary(self) -> str:
        def pct(v: int) -> str:
            return "-" if v < 0 else f"{v}"

        return (
            f"req: {self.requests}, ok: {self.success}, err: {self.errors}, "
            f"timeout: {self.timeouts}, p50: {pct(self.p50_ms)}, "
            f"p95: {pct(self.p95_ms)}, p99: {pct(self.p99_ms)}"
        )


@dataclass(frozen=True)
class MetricsSnapshot:
    """One poll's view of every known line."""

    series: dict[str, LineSeries]
    totals: dict[str, LineTotals] = field(default_factory=dict)


# ---- Decoding ---- #

_TOTAL_KEYS = ("requests", "success", "errors", "timeouts", "p50_ms", "p95_ms", "p99_ms")


def _number_list(obj: dict, key: str, line_id: str, required: bool) -> list[float]:
    if key not in obj or obj[key] is None:
        # Empty windows are encoded as null by the backend
        if required and key not in obj:
            raise DecodeError(f"series {line_id}: missing '{key}'")
        return []
    values = obj[key]
    if not isinstance(values, list):
        raise DecodeError(f"series {line_id}: '{key}' must be a list")
    for v in values:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise DecodeError(f"series {line_id}: '{key}' holds a non-number {v!r}")
    return list(values)


def decode_series(obj: Any, line_id: str) -> LineSeries:
    if not isinstance(obj, dict):
        raise DecodeError(f"series {line_id}: expected an object")

    sec = _number_list(obj, "sec", line_id, required=True)
    rps = _number_list(obj, "rps", line_id, required=True)
    avg = _number_list(obj, "latency_avg", line_id, required=True)
    if not (len(sec) == len(rps) == len(avg)):
        raise DecodeError(
            f"series {line_id}: misaligned lengths sec={len(sec)} rps={len(rps)} latency_avg={len(avg)}"
        )

    extras = {}
    for key in ("success", "errors", "timeouts"):
        values = _number_list(obj, key, line_id, required=False)
        if values and len(values) != len(sec):
            raise DecodeError(f"series {line_id}: '{key}' length {len(values)} != {len(sec)}")
        extras[key] = values

    return LineSeries(sec=sec, rps=rps, latency_avg=avg, **extras)


def decode_totals(obj: Any, line_id: str) -> LineTotals:
    if not isinstance(obj, dict):
        raise DecodeError(f"totals {line_id}: expected an object")
    values = {}
    for key in _TOTAL_KEYS:
        v = obj.get(key, 0)
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise DecodeError(f"totals {line_id}: '{key}' must be a number")
        values[key] = int(v)
    return LineTotals(**values)


def decode_snapshot(payload: Any, line_ids: tuple[str, ...] | list[str]) -> MetricsSnapshot:
    """
    Decode the ``GET /metrics/snapshot`` body for the known lines.

    Raises DecodeError on a bad shape and ContractViolation when a known
    line has no series. Totals are optional; lines without totals are skipped.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("series"), dict):
        raise DecodeError("snapshot response has no 'series' object")
    raw_series = payload["series"]

    missing = [lid for lid in line_ids if lid not in raw_series]
    if missing:
        raise ContractViolation("snapshot response", missing)

    series = {lid: decode_series(raw_series[lid], lid) for lid in line_ids}

    totals: dict[str, LineTotals] = {}
    raw_totals = payload.get("totals")
    if raw_totals is not None:
        if not isinstance(raw_totals, dict):
            raise DecodeError("snapshot 'totals' must be an object")
        for lid in line_ids:
            if lid in raw_totals:
                totals[lid] = decode_totals(raw_totals[lid], lid)

    return MetricsSnapshot(series=series, totals=totals)
