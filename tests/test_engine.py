"""Tests for the VitalsEngine facade using FakeSerial and the simulator."""

import threading
import time
from typing import Callable

import pytest

from data_store import VisitStore
from fakes.fake_serial import FakeSerial
from vitals_engine import VitalsEngine
from vitals_engine.errors import (
    CaptureBusy,
    CaptureTimeout,
    NoDevice,
    NoReading,
    SerialIOError,
    UnknownChannel,
)
from vitals_engine.models import Channel, SourceState


def wait_for(predicate: Callable[[], bool], timeout_s: float = 2.0) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def feed_later(fake_serial: FakeSerial, line: str, delay_s: float = 0.1) -> None:
    def run() -> None:
        time.sleep(delay_s)
        fake_serial.feed(line)

    threading.Thread(target=run, daemon=True).start()


@pytest.fixture
def engine():
    """Engine with short timeouts, shut down after the test."""
    eng = VitalsEngine(capture_timeout_s=1.0, window_s=10.0)
    yield eng
    eng.shutdown()


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def connected(engine, fake_serial):
    """Engine connected to a FakeSerial device."""
    engine.connect(serial_port=fake_serial)
    return engine


# =============================================================================
# Connection Lifecycle
# =============================================================================

def test_initially_disconnected(engine) -> None:
    assert engine.source_state is SourceState.DISCONNECTED
    assert engine.latest() is None
    assert engine.collecting is True


def test_connect_and_disconnect(engine, fake_serial) -> None:
    engine.connect(serial_port=fake_serial)
    assert engine.source_state is SourceState.HARDWARE

    engine.disconnect()
    assert engine.source_state is SourceState.DISCONNECTED
    assert not fake_serial.is_open

    engine.disconnect()  # idempotent


def test_connect_twice_fails(connected) -> None:
    """Test connecting while hardware is live is rejected."""
    with pytest.raises(SerialIOError, match="Already connected"):
        connected.connect(serial_port=FakeSerial())


def test_reconnect_without_previous_settings_fails(engine) -> None:
    with pytest.raises(SerialIOError):
        engine.reconnect()


def test_simulator_and_hardware_are_exclusive(engine, fake_serial) -> None:
    """Test starting one source closes the other."""
    engine.connect(serial_port=fake_serial)

    engine.start_simulation(seed=1)
    assert engine.source_state is SourceState.SIMULATED
    assert not fake_serial.is_open

    second_serial = FakeSerial()
    engine.connect(serial_port=second_serial)
    assert engine.source_state is SourceState.HARDWARE
    assert second_serial.is_open

    engine.stop_simulation()  # hardware is active; no effect
    assert engine.source_state is SourceState.HARDWARE


def test_stop_simulation(engine) -> None:
    engine.start_simulation(seed=2)
    engine.start_simulation(seed=2)  # already running
    assert engine.source_state is SourceState.SIMULATED

    engine.stop_simulation()
    assert engine.source_state is SourceState.DISCONNECTED


def test_device_failure_disconnects_without_retry(connected, fake_serial) -> None:
    """Test a read failure leaves the engine disconnected with the error recorded."""
    fake_serial.fail_reads()

    assert wait_for(lambda: connected.source_state is SourceState.DISCONNECTED)
    assert connected.last_error is not None

    time.sleep(0.2)
    assert connected.source_state is SourceState.DISCONNECTED
    with pytest.raises(NoDevice):
        connected.acquire_next()


# =============================================================================
# Cache
# =============================================================================

def test_readings_update_latest(connected, fake_serial) -> None:
    fake_serial.feed("72,98,37,99,0,12")

    assert wait_for(lambda: connected.latest() is not None)
    assert connected.latest().values["alcohol_level"] == 12


def test_unparseable_line_leaves_cache_and_session_untouched(connected, fake_serial) -> None:
    """Test lines that match no format change nothing."""
    connected.start_capture()
    fake_serial.feed_many(["garbage", "1,2,3", "{}"])
    time.sleep(0.3)

    assert connected.latest() is None
    for channel in Channel:
        assert connected.session.samples(channel) == []


def test_save_latest_pauses_cache(connected, fake_serial) -> None:
    """Test save-latest stores the cached reading and freezes the cache."""
    store = VisitStore()
    fake_serial.feed("72,98")
    assert wait_for(lambda: connected.latest() is not None)

    saved = connected.save_latest(store, {"firstName": "Ada"})

    assert saved["heart_rate"] == 72
    assert saved["first_name"] == "Ada"
    assert saved["saved_locally"] is True
    assert connected.collecting is False

    fake_serial.feed("90,95")
    time.sleep(0.3)
    assert connected.latest().values == {"heart_rate": 72, "spo": 98}

    connected.resume_collecting()
    fake_serial.feed("91,96")
    assert wait_for(lambda: connected.latest().values["heart_rate"] == 91)


def test_save_latest_without_reading(engine) -> None:
    with pytest.raises(NoReading):
        engine.save_latest(VisitStore())


# =============================================================================
# Single-Flight Capture
# =============================================================================

def test_acquire_without_device_is_fast(engine) -> None:
    start = time.monotonic()
    with pytest.raises(NoDevice):
        engine.acquire_next()
    assert time.monotonic() - start < 0.05


def test_acquire_returns_next_reading(connected, fake_serial) -> None:
    feed_later(fake_serial, "75,97")

    reading = connected.acquire_next()

    assert reading.values == {"heart_rate": 75, "spo": 97}
    assert connected.capture_in_flight is False


def test_acquire_timeout(connected) -> None:
    with pytest.raises(CaptureTimeout):
        connected.acquire_next(timeout_s=0.2)
    assert connected.capture_in_flight is False


def test_concurrent_acquire_is_busy(connected, fake_serial) -> None:
    errors = []

    def first() -> None:
        try:
            connected.acquire_next(timeout_s=2.0)
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=first, daemon=True)
    thread.start()
    assert wait_for(lambda: connected.capture_in_flight)

    with pytest.raises(CaptureBusy):
        connected.acquire_next()

    fake_serial.feed("70,99")
    thread.join(timeout=3.0)
    assert errors == []


def test_capture_and_save(connected, fake_serial) -> None:
    store = VisitStore()
    feed_later(fake_serial, '{"hr": 66, "spo2": 99}')

    saved = connected.capture_and_save(store, {"lastName": "Lovelace"})

    assert saved["id"] == 1
    assert saved["heart_rate"] == 66
    assert saved["last_name"] == "Lovelace"
    assert store.count() == 1


# =============================================================================
# Capture Session
# =============================================================================

def test_session_with_simulator_commits_required_vitals(engine) -> None:
    engine.start_simulation(seed=5)
    engine.start_capture()
    time.sleep(0.7)

    committed = engine.stop_capture()

    assert engine.session.is_complete()
    for key in ("bpSys", "bpDia", "heart_rate", "spo", "TempC"):
        assert key in committed
    assert engine.committed_vitals() == committed


def test_commit_and_recapture_by_key(connected, fake_serial) -> None:
    connected.start_capture()
    fake_serial.feed_many(["70,98", "72,97", "71,99"])
    assert wait_for(lambda: len(connected.session.samples(Channel.HEART_RATE)) == 3)

    assert connected.commit_vital("heart_rate") == 71

    connected.recapture_vital("heart_rate")
    assert "heart_rate" not in connected.committed_vitals()

    fake_serial.feed("80,96")
    assert wait_for(lambda: connected.session.samples(Channel.HEART_RATE) == [80])


def test_unknown_channel(engine) -> None:
    with pytest.raises(UnknownChannel):
        engine.commit_vital("pulse")
    with pytest.raises(UnknownChannel):
        engine.recapture_vital("pulse")


def test_status_snapshot(connected, fake_serial) -> None:
    fake_serial.feed("72,98")
    assert wait_for(lambda: connected.latest() is not None)

    status = connected.status()

    assert status["source"] == "hardware"
    assert status["collecting"] is True
    assert status["capture_in_flight"] is False
    assert status["capturing"] is False
    assert status["latest"]["heart_rate"] == 72
    assert status["last_error"] is None
