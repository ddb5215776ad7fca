# gui/tests/test_config_form.py
from datetime import time

import pytest
from PySide6.QtTest import QTest

from event_bus import EventBus, EventNames
from funnel.config_store import LineConfigStore
from funnel.errors import FetchError, HttpStatusError
from gui.components.config_form import ConfigFormController

HINT_MS = 20

SCHEMA = {
    "name": str,
    "enabled": bool,
    "base_latency_ms": int,
    "jitter_ms": int,
    "error_rate": float,
    "timeout_rate": float,
    "timeout_ms": int,
    "night_block_enabled": bool,
    "night_block_window": dict,
}


# ------------------------- Fixtures -------------------------

@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store(fake_api, line_ids, config_payload):
    s = LineConfigStore(fake_api, line_ids)
    s.load()
    fake_api.last("GET", "/admin/config").call.resolve(config_payload)
    return s


@pytest.fixture
def make_form(store, fake_api, bus):
    forms = []

    def _make(line_id="outer-unified", now=time(12, 0)):
        f = ConfigFormController(
            line_id, store, fake_api, hint_clear_ms=HINT_MS, bus=bus, now_fn=lambda: now
        )
        forms.append(f)
        return f

    yield _make
    for f in forms:
        f.teardown()
        f.deleteLater()


@pytest.fixture
def form(make_form):
    return make_form()


def _saves(fake_api, line_id="outer-unified"):
    return fake_api.matching("POST", f"/admin/line/{line_id}")


# ------------------------- Population -------------------------

def test_form_shows_fetched_values(form):
    assert form.title() == "outer-unified"
    assert form.widget("enabled").isChecked() is True
    assert form.widget("base_latency_ms").value() == 100
    assert form.widget("jitter_ms").value() == 20
    assert form.widget("error_rate").text() == "0.1"
    assert form.widget("timeout_rate").text() == "0.05"
    assert form.widget("timeout_ms").value() == 3000
    assert form.widget("night_block_enabled").isChecked() is False
    assert form.widget("night_start").text() == "00:00"
    assert form.widget("night_end").text() == "06:00"
    assert not form.is_dirty()
    assert form.status_text() == ""


# ------------------------- Save body -------------------------

def test_end_to_end_toggle_enabled_and_save(form, fake_api, store):
    form.set_field("enabled", False)
    assert form.is_dirty()
    assert "modified" in form.status_text()

    form.save()

    req = _saves(fake_api)[-1]
    assert req.body == {
        "name": "outer-unified",
        "enabled": False,
        "base_latency_ms": 100,
        "jitter_ms": 20,
        "error_rate": 0.1,
        "timeout_rate": 0.05,
        "timeout_ms": 3000,
        "night_block_enabled": False,
        "night_block_window": {"start": "00:00", "end": "06:00"},
    }

    req.call.resolve(None)
    assert store.confirmed("outer-unified").enabled is False
    assert not form.is_dirty()


def test_save_body_matches_schema_types(form, fake_api):
    form.set_field("base_latency_ms", "250")
    form.set_field("error_rate", "0.25")
    form.save()

    body = _saves(fake_api)[-1].body
    assert set(body) == set(SCHEMA)
    for key, typ in SCHEMA.items():
        assert type(body[key]) is typ, key
    assert body["base_latency_ms"] == 250
    assert body["error_rate"] == pytest.approx(0.25)


@pytest.mark.parametrize("error_rate,timeout_rate", [
    (0.12345, 0.00005),
    (0.333333333333, 1e-09),
    (1.5, 0.0),
])
def test_untouched_rates_round_trip_exactly(make_form, store, fake_api, error_rate, timeout_rate):
    server_cfg = store.confirmed("outer-zf").with_changes(
        error_rate=error_rate, timeout_rate=timeout_rate
    )
    store.confirm("outer-zf", server_cfg)
    f = make_form("outer-zf")

    assert not f.is_dirty()
    assert "modified" not in f.status_text()

    f.save()
    body = _saves(fake_api, "outer-zf")[-1].body
    assert body == server_cfg.to_dict()
    assert body["error_rate"] == error_rate
    assert body["timeout_rate"] == timeout_rate


@pytest.mark.parametrize("text", ["abc", "", "nan", "inf"])
def test_unparsable_rate_fails_locally(form, fake_api, text):
    form.set_field("timeout_rate", text)

    assert form.is_dirty()
    assert form.save() is None
    assert _saves(fake_api) == []
    assert form.hint_text().startswith("Invalid input: timeout_rate")


def test_invalid_clock_fails_locally(form, fake_api, bus):
    seen = []
    bus.subscribe(EventNames.LINE_SAVE_FAILED, seen.append)
    form.set_field("night_start", "25:00")

    assert form.save() is None
    assert _saves(fake_api) == []
    assert form.hint_text().startswith("Invalid input")
    assert seen and seen[0]["line"] == "outer-unified"


# ------------------------- Outcomes -------------------------

def test_success_hint_clears_itself(form, fake_api, bus):
    saved = []
    bus.subscribe(EventNames.LINE_SAVED, saved.append)
    form.save()
    _saves(fake_api)[-1].call.resolve(None)

    assert form.hint_text() == "Saved ✓"
    assert saved == ["outer-unified"]
    QTest.qWait(HINT_MS * 5)
    assert form.hint_text() == ""


def test_failure_persists_and_keeps_fields(form, fake_api, store):
    failures = []
    form.save_failed.connect(lambda lid, msg: failures.append((lid, msg)))
    form.set_field("jitter_ms", 55)
    form.save()
    _saves(fake_api)[-1].call.reject(HttpStatusError(500, "http://127.0.0.1:8080/admin/line/outer-unified"))

    assert form.hint_text().startswith("Save failed: HTTP 500")
    QTest.qWait(HINT_MS * 5)
    assert form.hint_text().startswith("Save failed")

    # Edited value kept for correction, confirmed value untouched
    assert form.widget("jitter_ms").value() == 55
    assert store.confirmed("outer-unified").jitter_ms == 20
    assert failures[0][0] == "outer-unified"

    form.dismiss_hint()
    assert form.hint_text() == ""


def test_network_failure_is_not_retried(form, fake_api):
    form.save()
    _saves(fake_api)[-1].call.reject(FetchError("Connection refused"))
    QTest.qWait(HINT_MS * 5)
    assert len(_saves(fake_api)) == 1
    assert "Connection refused" in form.hint_text()


def test_saving_twice_unchanged_is_idempotent(form, fake_api, store):
    before = store.confirmed("outer-unified")
    form.save()
    _saves(fake_api)[-1].call.resolve(None)
    form.save()
    _saves(fake_api)[-1].call.resolve(None)

    first, second = _saves(fake_api)
    assert first.body == second.body
    assert store.confirmed("outer-unified") == before
    assert form.hint_text() == "Saved ✓"


def test_concurrent_saves_last_settled_wins(form, fake_api, store):
    form.set_field("base_latency_ms", 150)
    form.save()
    form.set_field("base_latency_ms", 200)
    form.save()
    assert form.in_flight() == 2

    first, second = _saves(fake_api)
    assert (first.body["base_latency_ms"], second.body["base_latency_ms"]) == (150, 200)

    second.call.resolve(None)
    first.call.reject(FetchError("timeout"))

    assert form.in_flight() == 0
    assert store.confirmed("outer-unified").base_latency_ms == 200
    assert form.hint_text().startswith("Save failed")


def test_teardown_cancels_in_flight_saves(form, fake_api, store):
    form.set_field("enabled", False)
    form.save()
    call = _saves(fake_api)[-1].call

    form.teardown()
    call.resolve(None)

    assert call.is_cancelled()
    assert store.confirmed("outer-unified").enabled is True


# ------------------------- Reload / status -------------------------

def test_reload_replaces_fields_with_server_copy(form, fake_api, store, config_payload):
    form.set_field("jitter_ms", 999)
    form.reload()
    fresh = dict(config_payload["lines"]["outer-unified"], jitter_ms=30)
    fake_api.last("GET", "/admin/line/outer-unified").call.resolve(fresh)

    assert form.widget("jitter_ms").value() == 30
    assert store.confirmed("outer-unified").jitter_ms == 30
    assert form.hint_text() == "Reloaded"
    assert not form.is_dirty()


def test_reload_failure_keeps_edits(form, fake_api):
    form.set_field("jitter_ms", 999)
    form.reload()
    fake_api.last("GET", "/admin/line/outer-unified").call.reject(HttpStatusError(503))

    assert form.widget("jitter_ms").value() == 999
    assert form.hint_text().startswith("Reload failed")


@pytest.mark.parametrize("now,expected", [
    (time(3, 0), "night block: active now"),
    (time(12, 0), "night block: idle"),
])
def test_night_block_status(make_form, now, expected):
    # inner-unified has night blocking on, 00:30-06:00
    f = make_form("inner-unified", now=now)
    assert f.status_text() == expected
