import re
from dataclasses import dataclass, field, replace
from datetime import time
from typing import Any

from funnel.errors import ContractViolation, DecodeError

# Lines served by the mock funnel backend, in display order
DEFAULT_LINE_IDS: tuple[str, ...] = (
    "outer-unified",
    "inner-unified",
    "outer-zf",
    "inner-zf",
)

_CLOCK_RE = re.compile(r"^([0-9]{2}):([0-9]{2})$")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """
    A wall-clock time with minute resolution.

    Attributes:
        hour (int): 0..23
        minute (int): 0..59
    """

    hour: int
    minute: int

    def __post_init__(self):
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute out of range: {self.minute}")

    @classmethod
    def parse(cls, text: str) -> "TimeOfDay":
        """Parse strict 24h ``HH:MM``. Raises ValueError on anything else."""
        m = _CLOCK_RE.match(str(text).strip())
        if m is None:
            raise ValueError(f"expected HH:MM, got {text!r}")
        return cls(int(m.group(1), 10), int(m.group(2), 10))

    def to_time(self) -> time:
        return time(self.hour, self.minute)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class NightBlockWindow:
    """
    Daily blocking interval as entered by the operator.

    The endpoints are kept as the raw strings the server holds so an untouched
    window is sent back byte-for-byte; use ``parsed()`` to validate them.

    Attributes:
        start (str): "HH:MM" the block begins (inclusive).
        end (str): "HH:MM" the block ends (exclusive). ``end <= start`` wraps past midnight.
    """

    start: str = "00:00"
    end: str = "06:00"

    def parsed(self) -> tuple[TimeOfDay, TimeOfDay]:
        return TimeOfDay.parse(self.start), TimeOfDay.parse(self.end)

    def contains(self, at: time) -> bool:
        """Whether ``at`` falls inside the window. Raises ValueError if malformed."""
        start, end = (t.to_time() for t in self.parsed())
        at = at.replace(second=0, microsecond=0, tzinfo=None)
        if end <= start:
            # [start, 24h) U [0, end)
            return at >= start or at < end
        return start <= at < end

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class LineConfig:
    """
    Fault-injection settings of one traffic line.

    Attributes:
        name (str): Display label, edited server-side only.
        enabled (bool): Whether the line serves traffic.
        base_latency_ms (int): Deterministic latency floor.
        jitter_ms (int): Random jitter added on top of the base latency.
        error_rate (float): Probability of a simulated upstream error, 0..1.
        timeout_rate (float): Probability of a simulated timeout, 0..1.
        timeout_ms (int): How long a simulated timeout holds the request.
        night_block_enabled (bool): Whether the nightly window disables the line.
        night_block_window (NightBlockWindow): The nightly window.
    """

    name: str
    enabled: bool
    base_latency_ms: int
    jitter_ms: int
    error_rate: float
    timeout_rate: float
    timeout_ms: int
    night_block_enabled: bool
    night_block_window: NightBlockWindow = field(default_factory=NightBlockWindow)

    def with_changes(self, **changes) -> "LineConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """JSON body for ``POST /admin/line/{id}``; always the full field set."""
        return {
            "name": self.name,
            "enabled": bool(self.enabled),
            "base_latency_ms": int(self.base_latency_ms),
            "jitter_ms": int(self.jitter_ms),
            "error_rate": float(self.error_rate),
            "timeout_rate": float(self.timeout_rate),
            "timeout_ms": int(self.timeout_ms),
            "night_block_enabled": bool(self.night_block_enabled),
            "night_block_window": self.night_block_window.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any, line_id: str = "?") -> "LineConfig":
        """Build from a decoded JSON object. Raises DecodeError on a bad shape."""
        if not isinstance(data, dict):
            raise DecodeError(f"line {line_id}: expected an object, got {type(data).__name__}")

        window = data.get("night_block_window")
        if not isinstance(window, dict):
            raise DecodeError(f"line {line_id}: missing or invalid 'night_block_window'")

        return cls(
            name=_get_str(data, "name", line_id),
            enabled=_get_bool(data, "enabled", line_id),
            base_latency_ms=_get_int(data, "base_latency_ms", line_id),
            jitter_ms=_get_int(data, "jitter_ms", line_id),
            error_rate=_get_float(data, "error_rate", line_id),
            timeout_rate=_get_float(data, "timeout_rate", line_id),
            timeout_ms=_get_int(data, "timeout_ms", line_id),
            night_block_enabled=_get_bool(data, "night_block_enabled", line_id),
            night_block_window=NightBlockWindow(
                start=_get_str(window, "start", line_id),
                end=_get_str(window, "end", line_id),
            ),
        )


# ---- Field readers ---- #


def _require(data: dict, key: str, line_id: str) -> Any:
    if key not in data:
        raise DecodeError(f"line {line_id}: missing '{key}'")
    return data[key]


def _get_str(data: dict, key: str, line_id: str) -> str:
    v = _require(data, key, line_id)
    if not isinstance(v, str):
        raise DecodeError(f"line {line_id}: '{key}' must be a string")
    return v


def _get_bool(data: dict, key: str, line_id: str) -> bool:
    v = _require(data, key, line_id)
    if not isinstance(v, bool):
        raise DecodeError(f"line {line_id}: '{key}' must be a boolean")
    return v


def _get_int(data: dict, key: str, line_id: str) -> int:
    v = _require(data, key, line_id)
    if isinstance(v, bool):
        raise DecodeError(f"line {line_id}: '{key}' must be an integer")
    if isinstance(v, float) and v.is_integer():
        return int(v)
    if not isinstance(v, int):
        raise DecodeError(f"line {line_id}: '{key}' must be an integer")
    return v


def _get_float(data: dict, key: str, line_id: str) -> float:
    v = _require(data, key, line_id)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise DecodeError(f"line {line_id}: '{key}' must be a number")
    return float(v)


def decode_lines(payload: Any, line_ids: tuple[str, ...] | list[str]) -> dict[str, LineConfig]:
    """
    Decode the ``GET /admin/config`` body into ``{line_id: LineConfig}``.

    Only the known lines are kept, in ``line_ids`` order. Raises DecodeError
    on a bad shape and ContractViolation when a known line is absent.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("lines"), dict):
        raise DecodeError("config response has no 'lines' object")
    lines = payload["lines"]

    missing = [lid for lid in line_ids if lid not in lines]
    if missing:
        raise ContractViolation("config response", missing)

    return {lid: LineConfig.from_dict(lines[lid], lid) for lid in line_ids}
