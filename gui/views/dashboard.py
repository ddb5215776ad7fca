import logging
from datetime import datetime
from pathlib import Path

from PySide6.QtCore import Qt, Signal, Slot
from PySide6.QtWidgets import (
    QWidget,
    QVBoxLayout,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QFileDialog,
    QPlainTextEdit,
    QGridLayout,
    QGroupBox,
    QScrollArea,
    QStackedWidget,
    QSizePolicy,
)

from event_bus import EventBus, EventNames, event_bus
from funnel.api_client import ConsoleApiClient, PendingCall
from funnel.config_store import LineConfigStore
from funnel.errors import ConsoleError
from funnel.lines import LineConfig
from funnel.metrics import MetricsSnapshot
from funnel.poller import MetricsPoller
from funnel.settings import ConsoleSettings
from gui.components.config_form import ConfigFormController
from gui.components.time_series_chart import TimeSeriesChart

logger = logging.getLogger(__name__)

_PAGE_LOADING, _PAGE_ERROR, _PAGE_CONTENT = 0, 1, 2
_CARD_COLUMNS = 2


class DashboardController(QWidget):
    """
    Top-level console view.

    Startup order: load every line's config, build one form and one chart per
    line, then start the metrics loop. If the load fails nothing is built and
    an error page explains why.
    """

    # GUI relays
    sig_log_line = Signal(str)
    sig_status = Signal(str)

    started = Signal()
    startup_failed = Signal(str)

    def __init__(
        self,
        settings: ConsoleSettings,
        api=None,
        bus: EventBus = event_bus,
        parent=None,
    ):
        super().__init__(parent)
        self.setObjectName("DashboardView")

        self._settings = settings
        self._bus = bus
        self._api = api or ConsoleApiClient(
            settings.base_url, timeout_ms=settings.request_timeout_ms, parent=self
        )
        self._store = LineConfigStore(self._api, settings.lines, parent=self)
        self._poller = MetricsPoller(
            self._api, settings.lines, interval_ms=settings.poll_interval_ms, parent=self
        )
        self._poller.snapshot_ready.connect(self._on_snapshot)
        self._poller.tick_skipped.connect(self._on_tick_skipped)

        # Per-line components, keyed by line id
        self.forms: dict[str, ConfigFormController] = {}
        self.charts: dict[str, TimeSeriesChart] = {}

        self._load_call: PendingCall | None = None
        self._reset_calls: set[PendingCall] = set()
        self._started = False

        # UI
        root = QVBoxLayout(self)

        bar = QHBoxLayout()
        title = QLabel("<b>Traffic line console</b>")
        title.setObjectName("consoleTitle")
        bar.addWidget(title)
        bar.addWidget(QLabel(settings.base_url))
        bar.addStretch(1)
        self._status = QLabel("Idle")
        self._status.setObjectName("consoleStatus")
        bar.addWidget(self._status)

        self._export_btn = QPushButton("Export CSV")
        self._export_btn.setObjectName("exportBtn")
        self._export_btn.setProperty("variant", "ghost")
        self._export_btn.setEnabled(False)
        self._export_btn.clicked.connect(self._browse_export_dir)
        bar.addWidget(self._export_btn)

        self._reset_btn = QPushButton("Reset metrics")
        self._reset_btn.setObjectName("resetBtn")
        self._reset_btn.setProperty("variant", "primary")
        self._reset_btn.setEnabled(False)
        self._reset_btn.clicked.connect(self.reset_metrics)
        bar.addWidget(self._reset_btn)
        root.addLayout(bar)

        self._stack = QStackedWidget()
        self._stack.setObjectName("dashboardStack")
        root.addWidget(self._stack, 1)

        # Loading page
        loading = QLabel("Loading line configuration…", alignment=Qt.AlignCenter)
        self._stack.addWidget(loading)

        # Error page
        err_page = QWidget()
        err_col = QVBoxLayout(err_page)
        err_col.setAlignment(Qt.AlignCenter)
        self._error_label = QLabel("")
        self._error_label.setObjectName("startupError")
        self._error_label.setWordWrap(True)
        self._error_label.setAlignment(Qt.AlignCenter)
        retry = QPushButton("Retry")
        retry.setObjectName("retryBtn")
        retry.clicked.connect(self.start)
        err_col.addWidget(self._error_label)
        err_col.addWidget(retry, alignment=Qt.AlignCenter)
        self._stack.addWidget(err_page)

        # Content page
        content = QWidget()
        content_col = QVBoxLayout(content)
        self._cards_grid = QGridLayout()
        self._cards_grid.setHorizontalSpacing(16)
        self._cards_grid.setVerticalSpacing(16)
        for i in range(_CARD_COLUMNS):
            self._cards_grid.setColumnStretch(i, 1)
        content_col.addLayout(self._cards_grid)

        charts_box = QGroupBox("Live metrics")
        charts_box.setObjectName("chartsGroup")
        self._charts_col = QVBoxLayout(charts_box)
        content_col.addWidget(charts_box)
        content_col.addStretch(1)

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        scroll.setWidget(content)
        self._stack.addWidget(scroll)

        # Log pane
        self._log = QPlainTextEdit()
        self._log.setObjectName("consoleLogPane")
        self._log.setReadOnly(True)
        self._log.setMaximumBlockCount(2000)
        self._log.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Fixed)
        self._log.setFixedHeight(120)
        root.addWidget(self._log)

        self.sig_log_line.connect(self._append_log, Qt.QueuedConnection)
        self.sig_status.connect(self._status.setText, Qt.QueuedConnection)

        # Event bus subscriptions
        self._subscriptions = [
            (EventNames.CONSOLE_INFO, lambda msg: f"[info] {msg or ''}"),
            (EventNames.CONFIG_LOADED, lambda n: f"[config] loaded {n} lines"),
            (EventNames.CONFIG_LOAD_FAILED, lambda msg: f"[error] config load failed: {msg}"),
            (EventNames.LINE_SAVED, lambda lid: f"[save] {lid} saved"),
            (EventNames.LINE_SAVE_FAILED, lambda d: f"[save] {d['line']}: {d['message']}"),
            (EventNames.LINE_RELOADED, lambda lid: f"[config] {lid} reloaded"),
            (EventNames.METRICS_TICK_SKIPPED, lambda msg: f"[metrics] tick skipped: {msg}"),
            (EventNames.RESET_SENT, lambda _d: "[reset] metrics reset requested"),
            (EventNames.RESET_FAILED, lambda msg: f"[reset] failed: {msg}"),
        ]
        self._bus_callbacks = []
        for name, fmt in self._subscriptions:
            cb = self._make_log_callback(fmt)
            self._bus.subscribe(name, cb)
            self._bus_callbacks.append((name, cb))

    # Public API

    @property
    def store(self) -> LineConfigStore:
        return self._store

    @property
    def poller(self) -> MetricsPoller:
        return self._poller

    def is_started(self) -> bool:
        return self._started

    def current_page(self) -> int:
        return self._stack.currentIndex()

    def error_text(self) -> str:
        return self._error_label.text()

    def start(self) -> PendingCall | None:
        """Load configuration; build panels and start polling once it arrives."""
        if self._started or (self._load_call is not None and self._load_call.is_pending()):
            return None
        self._stack.setCurrentIndex(_PAGE_LOADING)
        self.sig_status.emit("Loading…")
        call = self._store.load()
        self._load_call = call
        call.succeeded.connect(self._on_config_loaded)
        call.failed.connect(self._on_config_failed)
        return call

    def reset_metrics(self) -> PendingCall:
        """POST /admin/reset. Local state is left untouched."""
        call = self._api.reset()
        self._reset_calls.add(call)

        def on_ok(_v):
            self._reset_calls.discard(call)
            logger.info("Metrics reset accepted")
            self._bus.emit(EventNames.RESET_SENT)

        def on_err(err: ConsoleError):
            self._reset_calls.discard(call)
            logger.warning("Metrics reset failed: %s", err)
            self._bus.emit(EventNames.RESET_FAILED, str(err))

        call.succeeded.connect(on_ok)
        call.failed.connect(on_err)
        return call

    def export_csv(self, directory: str | Path) -> list[Path]:
        """Write each chart's current frame to ``<directory>/<line>.csv``."""
        written: list[Path] = []
        for chart in self.charts.values():
            p = chart.save_csv(directory)
            if p is not None:
                written.append(p)
        self._bus.emit(
            EventNames.CONSOLE_INFO, f"exported {len(written)} CSV files to {directory}"
        )
        return written

    def teardown(self):
        """Stop polling and cancel every request this view started."""
        self._poller.stop()
        if self._load_call is not None:
            self._load_call.cancel()
            self._load_call = None
        for call in list(self._reset_calls):
            call.cancel()
        self._reset_calls.clear()
        for form in self.forms.values():
            form.teardown()
        for name, cb in self._bus_callbacks:
            self._bus.unsubscribe(name, cb)
        self._bus_callbacks.clear()

    # Startup

    def _on_config_loaded(self, lines: dict[str, LineConfig]):
        self._load_call = None
        self._build_panels(lines)
        self._stack.setCurrentIndex(_PAGE_CONTENT)
        self._started = True
        self._reset_btn.setEnabled(True)
        self._export_btn.setEnabled(True)
        self.sig_status.emit("Live")
        self._bus.emit(EventNames.CONFIG_LOADED, len(lines))
        self._poller.start()
        self.started.emit()

    def _on_config_failed(self, err: ConsoleError):
        self._load_call = None
        msg = f"Could not load line configuration from {self._settings.base_url}:\n{err}"
        self._error_label.setText(msg)
        self._stack.setCurrentIndex(_PAGE_ERROR)
        self.sig_status.emit("Error")
        self._bus.emit(EventNames.CONFIG_LOAD_FAILED, str(err))
        self.startup_failed.emit(str(err))

    def _build_panels(self, lines: dict[str, LineConfig]):
        for idx, line_id in enumerate(self._settings.lines):
            form = ConfigFormController(
                line_id,
                self._store,
                self._api,
                hint_clear_ms=self._settings.hint_clear_ms,
                bus=self._bus,
            )
            self.forms[line_id] = form
            self._cards_grid.addWidget(form, idx // _CARD_COLUMNS, idx % _CARD_COLUMNS)

        for line_id in self._settings.lines:
            chart = TimeSeriesChart(
                line_id,
                width=self._settings.chart_width,
                height=self._settings.chart_height,
                scaling_mode=self._settings.scaling_mode,
            )
            self.charts[line_id] = chart
            self._charts_col.addWidget(chart)

    # Metrics

    def _on_snapshot(self, snapshot: MetricsSnapshot):
        for line_id, chart in self.charts.items():
            s = snapshot.series[line_id]
            chart.draw(s.sec, s.rps, s.latency_avg)
            chart.set_totals(snapshot.totals.get(line_id))
        self.sig_status.emit(f"Live · {datetime.now().strftime('%H:%M:%S')}")

    def _on_tick_skipped(self, err: ConsoleError):
        self._bus.emit(EventNames.METRICS_TICK_SKIPPED, str(err))

    # UI helpers

    def _make_log_callback(self, fmt):
        return lambda data: self.sig_log_line.emit(fmt(data))

    def _browse_export_dir(self):
        d = QFileDialog.getExistingDirectory(self, "Choose export folder")
        if d:
            self.export_csv(d)

    @Slot(str)
    def _append_log(self, line: str):
        if not line:
            return
        self._log.appendPlainText(line)

    def closeEvent(self, e):
        self.teardown()
        super().closeEvent(e)
