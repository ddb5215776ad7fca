from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from funnel.lines import DEFAULT_LINE_IDS

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parent.parent / "config" / "console.yaml"


@dataclass(frozen=True)
class ConsoleSettings:
    """
    Settings of the operator console.

    Attributes:
        base_url (str): Root URL of the traffic-simulation backend.
        lines (tuple[str, ...]): Known line ids, in display order.
        poll_interval_ms (int): Pause between the end of one metrics poll and the next.
        hint_clear_ms (int): How long a "saved" confirmation stays visible.
        request_timeout_ms (int): Transfer timeout for every HTTP request.
        chart_width (int): Drawing surface width in pixels.
        chart_height (int): Drawing surface height in pixels.
        scaling_mode (str): Chart scaling mode name (see time_series_chart.SCALING_MODES).
        log_level (str): Root logging level.
        stylesheets (tuple[str, ...]): Qt stylesheet files applied at startup.
    """

    base_url: str = "http://127.0.0.1:8080"
    lines: tuple[str, ...] = DEFAULT_LINE_IDS
    poll_interval_ms: int = 1000
    hint_clear_ms: int = 1200
    request_timeout_ms: int = 5000
    chart_width: int = 800
    chart_height: int = 160
    scaling_mode: str = "compat"
    log_level: str = "INFO"
    stylesheets: tuple[str, ...] = field(default_factory=tuple)

    def with_overrides(self, **overrides) -> "ConsoleSettings":
        """Apply non-None overrides (e.g. from the command line)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _positive_int(section: dict[str, Any], key: str, default: int) -> int:
    v = section.get(key, default)
    if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
        raise ValueError(f"Missing or invalid '{key}': must be a positive integer.")
    return v


def _build_lines(value: Any) -> tuple[str, ...]:
    if value is None:
        return DEFAULT_LINE_IDS
    if not isinstance(value, list) or not value or not all(isinstance(s, str) and s for s in value):
        raise ValueError("'lines' must be a non-empty list of line ids.")
    if len(set(value)) != len(value):
        raise ValueError("'lines' must not contain duplicates.")
    return tuple(value)


def settings_from_dict(config: dict[str, Any] | None) -> ConsoleSettings:
    """Validate a parsed settings document and build ConsoleSettings."""
    config = config or {}
    if not isinstance(config, dict):
        raise ValueError("Settings file must contain a mapping.")
    defaults = ConsoleSettings()

    backend = config.get("backend", {})
    if not isinstance(backend, dict):
        raise ValueError("Invalid 'backend' section.")
    base_url = backend.get("base_url", defaults.base_url)
    if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
        raise ValueError("Missing or invalid 'base_url' in backend section.")

    timing = config.get("timing", {})
    if not isinstance(timing, dict):
        raise ValueError("Invalid 'timing' section.")

    chart = config.get("chart", {})
    if not isinstance(chart, dict):
        raise ValueError("Invalid 'chart' section.")
    scaling_mode = chart.get("scaling_mode", defaults.scaling_mode)
    if not isinstance(scaling_mode, str):
        raise ValueError("Invalid 'scaling_mode' in chart section.")

    log_level = str(config.get("log_level", defaults.log_level)).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Invalid 'log_level': {log_level}")

    stylesheets = config.get("stylesheets", [])
    if not isinstance(stylesheets, list) or not all(isinstance(s, str) for s in stylesheets):
        raise ValueError("'stylesheets' must be a list of paths.")

    return ConsoleSettings(
        base_url=base_url,
        lines=_build_lines(config.get("lines")),
        poll_interval_ms=_positive_int(timing, "poll_interval_ms", defaults.poll_interval_ms),
        hint_clear_ms=_positive_int(timing, "hint_clear_ms", defaults.hint_clear_ms),
        request_timeout_ms=_positive_int(timing, "request_timeout_ms", defaults.request_timeout_ms),
        chart_width=_positive_int(chart, "width", defaults.chart_width),
        chart_height=_positive_int(chart, "height", defaults.chart_height),
        scaling_mode=scaling_mode,
        log_level=log_level,
        stylesheets=tuple(stylesheets),
    )


def load_settings(yaml_path: str | Path | None = None) -> ConsoleSettings:
    """Load console settings from YAML; a missing default file yields defaults."""
    path = Path(yaml_path) if yaml_path is not None else DEFAULT_SETTINGS_PATH
    if not path.exists():
        if yaml_path is not None:
            raise FileNotFoundError(f"Settings file not found: {path}")
        return ConsoleSettings()

    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)
    return settings_from_dict(config)
