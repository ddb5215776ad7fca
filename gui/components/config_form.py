import logging
import math
from datetime import datetime, time
from typing import Any, Callable

from PySide6.QtCore import Qt, QTimer, Signal
from PySide6.QtWidgets import (
    QWidget,
    QVBoxLayout,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QToolButton,
    QFormLayout,
    QLineEdit,
    QCheckBox,
    QGroupBox,
    QSpinBox,
    QSizePolicy,
)

from event_bus import EventBus, EventNames, event_bus
from funnel.api_client import PendingCall
from funnel.config_store import LineConfigStore
from funnel.errors import ConsoleError
from funnel.lines import LineConfig, NightBlockWindow, TimeOfDay

logger = logging.getLogger(__name__)

_INT_MAX = 2_147_483_647

# (field, label, component, step)
_NUMERIC_FIELDS = [
    ("base_latency_ms", "Base latency (ms)", "ms", 10),
    ("jitter_ms", "Jitter (±ms)", "ms", 10),
    ("error_rate", "Error rate (0..1)", "rate", None),
    ("timeout_rate", "Timeout rate (0..1)", "rate", None),
    ("timeout_ms", "Timeout (ms)", "ms", 100),
]
_CLOCK_FIELDS = [
    ("night_start", "Night start HH:MM"),
    ("night_end", "Night end HH:MM"),
]
_BOOL_FIELDS = [
    ("enabled", "Line enabled"),
    ("night_block_enabled", "Night auto-block"),
]


def _now() -> time:
    return datetime.now().time()


def _parse_rate(key: str, text: str) -> float:
    """Decimal parse of a rate field. Range is left to the server."""
    try:
        v = float(text)
    except ValueError:
        raise ValueError(f"{key}: expected a number, got {text!r}") from None
    if not math.isfinite(v):
        raise ValueError(f"{key}: expected a finite number, got {text!r}")
    return v


class ConfigFormController(QGroupBox):
    """
    Editable form for one line.

    Owns the line's field state and its save lifecycle. A save always sends
    the whole LineConfig built from the current field values; on success the
    store's confirmed value is replaced with exactly that payload.
    """

    saved = Signal(str)  # line_id
    save_failed = Signal(str, str)  # line_id, message
    reloaded = Signal(str)

    def __init__(
        self,
        line_id: str,
        store: LineConfigStore,
        api,
        hint_clear_ms: int = 1200,
        bus: EventBus = event_bus,
        now_fn: Callable[[], time] = _now,
        parent=None,
    ):
        confirmed = store.confirmed(line_id)
        super().__init__(confirmed.name, parent)
        self.setObjectName("lineCard")
        self.setProperty("line", line_id)
        self.setAttribute(Qt.WA_StyledBackground, True)
        self.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Maximum)

        self.line_id = line_id
        self._store = store
        self._api = api
        self._bus = bus
        self._now_fn = now_fn
        self._in_flight: set[PendingCall] = set()
        self._populating = False

        # Per-field widgets
        self._widgets: dict[str, QWidget] = {}

        root = QVBoxLayout(self)

        form = QFormLayout()
        form.setObjectName("lineForm")
        form.setFieldGrowthPolicy(QFormLayout.AllNonFixedFieldsGrow)
        root.addLayout(form)

        for key, label, comp, step in _NUMERIC_FIELDS:
            w = self._create_widget_for_component(comp, step)
            self._add_row(form, key, label, w)
        for key, label in _CLOCK_FIELDS:
            w = self._create_widget_for_component("clock")
            self._add_row(form, key, label, w)
        for key, label in _BOOL_FIELDS:
            cb = self._create_widget_for_component("bool")
            cb.setText(label)
            cb.setObjectName(f"{key}Check")
            self._widgets[key] = cb
            self._wire_change_signal(cb)
            root.addWidget(cb)

        # Save bar
        bar = QHBoxLayout()
        self._save_btn = QPushButton("Save")
        self._save_btn.setObjectName("saveBtn")
        self._save_btn.setProperty("variant", "primary")
        self._save_btn.clicked.connect(self.save)

        self._reload_btn = QPushButton("Reload")
        self._reload_btn.setObjectName("reloadBtn")
        self._reload_btn.setProperty("variant", "ghost")
        self._reload_btn.clicked.connect(self.reload)

        self._hint = QLabel("")
        self._hint.setObjectName("saveHint")
        self._hint.setProperty("role", "small")

        self._dismiss = QToolButton()
        self._dismiss.setText("×")
        self._dismiss.setObjectName("dismissHintBtn")
        self._dismiss.setVisible(False)
        self._dismiss.clicked.connect(self.dismiss_hint)

        bar.addWidget(self._save_btn)
        bar.addWidget(self._reload_btn)
        bar.addWidget(self._hint, 1)
        bar.addWidget(self._dismiss)
        root.addLayout(bar)

        self._status = QLabel("")
        self._status.setObjectName("lineStatus")
        self._status.setProperty("role", "small")
        root.addWidget(self._status)

        self._hint_timer = QTimer(self)
        self._hint_timer.setSingleShot(True)
        self._hint_timer.setInterval(int(hint_clear_ms))
        self._hint_timer.timeout.connect(self._clear_hint)

        self.populate(confirmed)

    # ---- Field access ---- #

    def widget(self, key: str) -> QWidget:
        return self._widgets[key]

    def set_field(self, key: str, value: Any):
        """Set one field as if the operator had typed ``value``."""
        self._set_widget_value(self._widgets[key], value)

    def populate(self, cfg: LineConfig):
        """Show ``cfg`` in the form without treating it as an edit."""
        self._populating = True
        try:
            self.setTitle(cfg.name)
            for key, _label, _comp, _step in _NUMERIC_FIELDS:
                self._set_widget_value(self._widgets[key], getattr(cfg, key))
            self._set_widget_value(self._widgets["night_start"], cfg.night_block_window.start)
            self._set_widget_value(self._widgets["night_end"], cfg.night_block_window.end)
            self._set_widget_value(self._widgets["enabled"], cfg.enabled)
            self._set_widget_value(
                self._widgets["night_block_enabled"], cfg.night_block_enabled
            )
        finally:
            self._populating = False
        self._refresh_status()

    def current_config(self) -> LineConfig:
        """
        Build a LineConfig from the field values.

        The name is taken from the confirmed config (not editable here).
        Raises ValueError if a night-block time is not HH:MM or a rate is
        not a number.
        """
        values = {k: self._value_from_widget(w) for k, w in self._widgets.items()}
        start = values.pop("night_start")
        end = values.pop("night_end")
        TimeOfDay.parse(start)
        TimeOfDay.parse(end)
        return LineConfig(
            name=self._store.confirmed(self.line_id).name,
            night_block_window=NightBlockWindow(start=start, end=end),
            **values,
        )

    def is_dirty(self) -> bool:
        try:
            return self.current_config() != self._store.confirmed(self.line_id)
        except ValueError:
            return True

    def hint_text(self) -> str:
        return self._hint.text()

    def status_text(self) -> str:
        return self._status.text()

    def in_flight(self) -> int:
        return len(self._in_flight)

    # ---- Save / reload ---- #

    def save(self) -> PendingCall | None:
        """Send the full current config. Returns the call, or None if input is invalid."""
        try:
            cfg = self.current_config()
        except ValueError as e:
            self._show_failure(f"Invalid input: {e}")
            return None

        body = cfg.to_dict()
        logger.info("Saving line %s", self.line_id)
        call = self._api.save_line(self.line_id, body)
        self._track(call)
        call.succeeded.connect(lambda _v: self._on_saved(cfg))
        call.failed.connect(self._on_save_failed)
        return call

    def reload(self) -> PendingCall:
        """Replace the field values with the server's copy of this line."""
        call = self._store.fetch_line(self.line_id)
        self._track(call)
        call.succeeded.connect(self._on_reloaded)
        call.failed.connect(lambda err: self._show_failure(f"Reload failed: {err}"))
        return call

    def teardown(self):
        """Cancel everything this form started."""
        self._hint_timer.stop()
        for call in list(self._in_flight):
            call.cancel()
        self._in_flight.clear()

    def dismiss_hint(self):
        self._clear_hint()

    # ---- Outcomes ---- #

    def _track(self, call: PendingCall):
        self._in_flight.add(call)
        call.succeeded.connect(lambda _v: self._in_flight.discard(call))
        call.failed.connect(lambda _e: self._in_flight.discard(call))

    def _on_saved(self, cfg: LineConfig):
        self._store.confirm(self.line_id, cfg)
        self._show_hint("Saved ✓", state="ok")
        self._hint_timer.start()
        self._refresh_status()
        self._bus.emit(EventNames.LINE_SAVED, self.line_id)
        self.saved.emit(self.line_id)

    def _on_save_failed(self, err: ConsoleError):
        logger.warning("Save failed for %s: %s", self.line_id, err)
        self._show_failure(f"Save failed: {err}")

    def _on_reloaded(self, cfg: LineConfig):
        self.populate(cfg)
        self._show_hint("Reloaded", state="ok")
        self._hint_timer.start()
        self._bus.emit(EventNames.LINE_RELOADED, self.line_id)
        self.reloaded.emit(self.line_id)

    def _show_failure(self, message: str):
        # Stays until dismissed or replaced by a later outcome
        self._hint_timer.stop()
        self._show_hint(message, state="error")
        self._dismiss.setVisible(True)
        self._bus.emit(
            EventNames.LINE_SAVE_FAILED, {"line": self.line_id, "message": message}
        )
        self.save_failed.emit(self.line_id, message)

    def _show_hint(self, text: str, state: str):
        self._dismiss.setVisible(False)
        self._hint.setText(text)
        self._hint.setProperty("state", state)
        self._hint.style().unpolish(self._hint)
        self._hint.style().polish(self._hint)

    def _clear_hint(self):
        self._hint_timer.stop()
        self._dismiss.setVisible(False)
        self._hint.setText("")
        self._hint.setProperty("state", "")

    def _refresh_status(self):
        if self._populating:
            return
        parts = []
        if self.is_dirty():
            parts.append("modified")
        cfg = self._store.confirmed(self.line_id)
        if cfg.night_block_enabled:
            try:
                active = cfg.night_block_window.contains(self._now_fn())
            except ValueError:
                parts.append("night block: invalid window")
            else:
                parts.append("night block: active now" if active else "night block: idle")
        self._status.setText(" · ".join(parts))

    # ---- Widgets ---- #

    def _add_row(self, form: QFormLayout, key: str, label: str, w: QWidget):
        lbl = QLabel(label)
        lbl.setObjectName("paramLabel")
        w.setObjectName("paramInput")
        w.setProperty("field", key)
        w.setSizePolicy(QSizePolicy.Expanding, w.sizePolicy().verticalPolicy())
        self._wire_change_signal(w)
        self._widgets[key] = w
        form.addRow(lbl, w)

    def _create_widget_for_component(self, comp: str, step: float | None = 1) -> QWidget:
        if comp == "bool":
            cb = QCheckBox()
            cb.setTristate(False)
            cb.setProperty("role", "boolParam")
            return cb
        if comp == "ms":
            sb = QSpinBox()
            sb.setRange(0, _INT_MAX)
            sb.setSingleStep(int(step))
            return sb
        if comp == "rate":
            # Free text so the server's exact float is shown and sent back
            le = QLineEdit()
            le.setPlaceholderText("0..1")
            le.setProperty("component", "rate")
            return le
        le = QLineEdit()
        le.setPlaceholderText("HH:MM")
        le.setMaxLength(5)
        return le

    def _wire_change_signal(self, w: QWidget):
        if isinstance(w, QCheckBox):
            w.stateChanged.connect(lambda *_: self._refresh_status())
        elif isinstance(w, QSpinBox):
            w.valueChanged.connect(lambda *_: self._refresh_status())
        elif isinstance(w, QLineEdit):
            w.textChanged.connect(lambda *_: self._refresh_status())

    def _set_widget_value(self, w: QWidget, value: Any):
        if isinstance(w, QCheckBox):
            w.setChecked(bool(value))
            return
        if isinstance(w, QSpinBox):
            w.setValue(int(value.strip(), 10) if isinstance(value, str) else int(value))
            return
        if isinstance(w, QLineEdit):
            if value is None:
                w.setText("")
            elif w.property("component") == "rate" and not isinstance(value, str):
                w.setText(repr(float(value)))
            else:
                w.setText(str(value))

    def _value_from_widget(self, w: QWidget) -> Any:
        if isinstance(w, QCheckBox):
            return w.isChecked()
        if isinstance(w, QSpinBox):
            return int(w.value())
        if isinstance(w, QLineEdit):
            text = w.text().strip()
            if w.property("component") == "rate":
                return _parse_rate(w.property("field"), text)
            return text
        raise TypeError(f"unsupported widget {type(w).__name__}")
