from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import pandas as pd
from PySide6.QtWidgets import QWidget, QVBoxLayout, QLabel, QHBoxLayout
from matplotlib.backends.backend_qtagg import FigureCanvasQTAgg as FigureCanvas
from matplotlib.figure import Figure

from funnel.metrics import LineTotals

# Surface geometry (pixels)
DPI = 100
MARGIN_LEFT = 30
MARGIN_TOP = 10
MARGIN_RIGHT = 10
MARGIN_BOTTOM = 20
PLOT_WIDTH_INSET = 50
PLOT_HEIGHT_INSET = 40

# Scale floors keep an empty or all-zero series from collapsing the scale
RPS_FLOOR = 5
LATENCY_FLOOR = 50

RPS_COLOR = "#7dd3fc"
LATENCY_COLOR = "#86efac"
AXIS_COLOR = "#4b5563"
LABEL_COLOR = "#9ca3af"
BACKGROUND = "#111827"
LABEL_FONT_PX = 12


@dataclass(frozen=True)
class ChartScale:
    """
    Vertical scales chosen for one redraw.

    Attributes:
        max_rps (float): max(RPS_FLOOR, max(rps)).
        max_latency (float): max(LATENCY_FLOOR, max(latency_avg)).
        rps_scale (float): Value mapped to the top of the plot for the rps line.
        latency_scale (float): Value mapped to the top of the plot for the latency line.
    """

    max_rps: float
    max_latency: float
    rps_scale: float
    latency_scale: float


def compat_scale(rps: Sequence[float], latency_avg: Sequence[float]) -> ChartScale:
    """
    Legacy shared scaling.

    Latency is plotted against max(max_rps, max_latency) rather than on its own
    axis, so it is compressed whenever the request rate dominates. Kept as-is
    for compatibility with the existing dashboard.
    """
    max_r = max([RPS_FLOOR, *rps])
    max_l = max([LATENCY_FLOOR, *latency_avg])
    return ChartScale(
        max_rps=max_r,
        max_latency=max_l,
        rps_scale=max_r,
        latency_scale=max(max_r, max_l),
    )


# name -> scale function; the chart picks one by name
SCALING_MODES: dict[str, Callable[[Sequence[float], Sequence[float]], ChartScale]] = {
    "compat": compat_scale,
}


def polyline(
    values: Sequence[float], scale: float, width: int, height: int
) -> tuple[list[float], list[float]]:
    """
    Pixel coordinates of one series (origin top-left, y down).

    Samples are spaced evenly by index across the plot width; the actual
    time deltas between samples are ignored.
    """
    n = len(values)
    if n == 0:
        return [], []
    usable_w = width - PLOT_WIDTH_INSET
    step = usable_w / max(1, n - 1)
    base_y = height - MARGIN_BOTTOM
    usable_h = height - PLOT_HEIGHT_INSET
    xs = [MARGIN_LEFT + i * step for i in range(n)]
    ys = [base_y - (v / scale) * usable_h for v in values]
    return xs, ys


def _fmt(v: float) -> str:
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


@dataclass(frozen=True)
class ChartFrame:
    """Everything rendered by the latest ``draw`` call."""

    sec: list[float]
    rps: list[float]
    latency_avg: list[float]
    scale: ChartScale
    rps_points: tuple[list[float], list[float]]
    latency_points: tuple[list[float], list[float]]
    labels: tuple[str, str]


class TimeSeriesChart(QWidget):
    """
    Request rate and average latency of one line on a fixed-size surface.

    Each ``draw`` clears the surface and renders only the arrays it is given.
    """

    def __init__(
        self,
        line_id: str,
        width: int = 800,
        height: int = 160,
        scaling_mode: str = "compat",
        parent=None,
    ):
        super().__init__(parent)
        if scaling_mode not in SCALING_MODES:
            raise ValueError(
                f"Unknown scaling mode '{scaling_mode}'. Options: {sorted(SCALING_MODES)}"
            )
        self.setObjectName("lineChart")
        self.line_id = line_id
        self.surface_width = int(width)
        self.surface_height = int(height)
        self._scale_fn = SCALING_MODES[scaling_mode]
        self._frame: ChartFrame | None = None

        v = QVBoxLayout(self)
        v.setContentsMargins(0, 12, 0, 0)

        header = QHBoxLayout()
        title = QLabel(f"{line_id} RPS / Avg Latency")
        title.setObjectName("chartTitle")
        title.setProperty("role", "small")
        self._summary = QLabel("")
        self._summary.setObjectName("chartSummary")
        self._summary.setProperty("role", "small")
        header.addWidget(title)
        header.addStretch(1)
        header.addWidget(self._summary)
        v.addLayout(header)

        self.fig = Figure(figsize=(width / DPI, height / DPI), dpi=DPI, facecolor=BACKGROUND)
        self.ax = self.fig.add_axes((0, 0, 1, 1))
        self.canvas = FigureCanvas(self.fig)
        self.canvas.setFixedSize(self.surface_width, self.surface_height)
        v.addWidget(self.canvas)

        self._reset_axes()

    # Methods

    @property
    def last_frame(self) -> ChartFrame | None:
        return self._frame

    def draw(
        self,
        sec: Sequence[float],
        rps: Sequence[float],
        latency_avg: Sequence[float],
    ) -> ChartFrame:
        """Clear the surface and render one snapshot of this line."""
        W, H = self.surface_width, self.surface_height
        scale = self._scale_fn(rps, latency_avg)

        rps_pts = polyline(rps, scale.rps_scale, W, H)
        lat_pts = polyline(latency_avg, scale.latency_scale, W, H)
        labels = (
            f"max RPS={_fmt(scale.max_rps)}",
            f"max Avg(ms)={_fmt(max(latency_avg)) if len(latency_avg) else '-'}",
        )

        self._reset_axes()
        # Axes
        self.ax.plot(
            [MARGIN_LEFT, MARGIN_LEFT, W - MARGIN_RIGHT],
            [MARGIN_TOP, H - MARGIN_BOTTOM, H - MARGIN_BOTTOM],
            color=AXIS_COLOR,
            linewidth=1,
        )
        if rps_pts[0]:
            self.ax.plot(*rps_pts, color=RPS_COLOR, linewidth=1, label="rps")
        if lat_pts[0]:
            self.ax.plot(*lat_pts, color=LATENCY_COLOR, linewidth=1, label="latency_avg")

        # Legends
        font_pt = LABEL_FONT_PX * 72 / DPI
        self.ax.text(40, 16, labels[0], color=LABEL_COLOR, fontsize=font_pt, va="baseline")
        self.ax.text(140, 16, labels[1], color=LABEL_COLOR, fontsize=font_pt, va="baseline")

        self._frame = ChartFrame(
            sec=list(sec),
            rps=list(rps),
            latency_avg=list(latency_avg),
            scale=scale,
            rps_points=rps_pts,
            latency_points=lat_pts,
            labels=labels,
        )
        self.canvas.draw_idle()
        return self._frame

    def set_totals(self, totals: LineTotals | None):
        self._summary.setText(totals.summary() if totals is not None else "")

    def summary_text(self) -> str:
        return self._summary.text()

    def save_csv(self, directory: str | Path) -> Path | None:
        """
        Write the currently drawn frame to ``<directory>/<line_id>.csv``
        with columns sec, rps, latency_avg. Returns None if nothing is drawn.
        """
        if self._frame is None:
            return None
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        p = directory / f"{self.line_id}.csv"
        pd.DataFrame(
            {
                "sec": self._frame.sec,
                "rps": self._frame.rps,
                "latency_avg": self._frame.latency_avg,
            }
        ).to_csv(p, index=False)
        return p

    # Private methods

    def _reset_axes(self):
        self.ax.clear()
        # Pixel coordinates, y grows downwards like a canvas
        self.ax.set_xlim(0, self.surface_width)
        self.ax.set_ylim(self.surface_height, 0)
        self.ax.set_facecolor(BACKGROUND)
        self.ax.set_axis_off()
