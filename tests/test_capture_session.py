"""Tests for the capture session state machine and median reduction."""

import pytest

from vitals_engine.errors import UnknownChannel
from vitals_engine.models import Channel, Reading, VitalStatus
from vitals_engine.session import CaptureSession, resolve_channel, upper_median


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def feed(session: CaptureSession, **values: float) -> int:
    return session.ingest(Reading(values=values))


# =============================================================================
# Median
# =============================================================================

def test_upper_median_even_count_takes_upper_middle() -> None:
    """Test four samples commit the upper of the two middle values."""
    assert upper_median([120, 118, 122, 121]) == 121


def test_upper_median_odd_count() -> None:
    assert upper_median([3, 1, 2]) == 2
    assert upper_median([7]) == 7


def test_upper_median_empty_raises() -> None:
    with pytest.raises(ValueError):
        upper_median([])


# =============================================================================
# Lifecycle
# =============================================================================

def test_initial_state_is_waiting_and_inactive() -> None:
    """Test a new session accepts no samples."""
    session = CaptureSession()

    assert not session.active
    assert session.state(Channel.HEART_RATE).status is VitalStatus.WAITING
    assert feed(session, heart_rate=70) == 0
    assert session.samples(Channel.HEART_RATE) == []


def test_start_sets_every_channel_capturing() -> None:
    session = CaptureSession()
    session.start()

    assert session.active
    for channel in Channel:
        state = session.state(channel)
        assert state.status is VitalStatus.CAPTURING
        assert state.samples == []
        assert state.committed_value is None


def test_ingest_appends_known_channels_only() -> None:
    """Test readings add samples per channel and unknown keys are ignored."""
    session = CaptureSession()
    session.start()

    assert feed(session, heart_rate=70, spo=98, mystery=5) == 2
    assert feed(session, heart_rate=72) == 1

    assert session.samples(Channel.HEART_RATE) == [70, 72]
    assert session.samples(Channel.SPO2) == [98]
    assert session.state(Channel.HEART_RATE).current_value == 72


def test_commit_uses_median_and_marks_captured() -> None:
    """Test commit takes the upper median and captured channels ignore samples."""
    session = CaptureSession()
    session.start()
    for value in (120, 118, 122, 121):
        feed(session, bpSys=value)

    assert session.commit(Channel.BP_SYS) == 121
    state = session.state(Channel.BP_SYS)
    assert state.status is VitalStatus.CAPTURED
    assert state.committed_value == 121

    feed(session, bpSys=200)
    assert session.samples(Channel.BP_SYS) == [120, 118, 122, 121]
    assert session.committed_vitals() == {"bpSys": 121}


def test_commit_without_samples_is_noop() -> None:
    session = CaptureSession()
    session.start()

    assert session.commit(Channel.TEMP_C) is None
    assert session.state(Channel.TEMP_C).status is VitalStatus.CAPTURING


def test_stop_without_sweep_commits_nothing() -> None:
    """Test stop() only deactivates."""
    session = CaptureSession()
    session.start()
    feed(session, heart_rate=70)

    session.stop()

    assert not session.active
    assert session.committed_vitals() == {}
    assert feed(session, heart_rate=99) == 0


def test_finish_sweeps_channels_with_samples() -> None:
    """Test finish commits every channel holding samples and skips empty ones."""
    session = CaptureSession()
    session.start()
    feed(session, heart_rate=70, spo=97)
    feed(session, heart_rate=74, spo=99)
    feed(session, heart_rate=72)

    committed = session.finish()

    assert committed == {"heart_rate": 72, "spo": 99}
    assert session.state(Channel.TEMP_C).status is VitalStatus.CAPTURING
    assert session.state(Channel.TEMP_C).committed_value is None
    assert not session.active


def test_finish_keeps_already_committed_values() -> None:
    """Test a manually committed channel is not recomputed by the sweep."""
    session = CaptureSession()
    session.start()
    feed(session, heart_rate=60)
    session.commit(Channel.HEART_RATE)

    session.finish()

    assert session.committed_vitals()["heart_rate"] == 60


def test_start_resets_previous_commits() -> None:
    """Test starting again discards earlier committed values and samples."""
    session = CaptureSession()
    session.start()
    feed(session, heart_rate=70)
    session.finish()
    assert session.committed_vitals() == {"heart_rate": 70}

    session.start()

    assert session.committed_vitals() == {}
    assert session.samples(Channel.HEART_RATE) == []
    assert session.state(Channel.HEART_RATE).status is VitalStatus.CAPTURING
    assert session.state(Channel.HEART_RATE).current_value is None
    assert session.snapshot()["vitals"]["heart_rate"]["current_value"] is None


def test_recapture_makes_next_reading_the_first_sample() -> None:
    """Test recapture clears history so the next value is the only sample."""
    session = CaptureSession()
    session.start()
    feed(session, heart_rate=70)
    feed(session, heart_rate=71)
    session.commit(Channel.HEART_RATE)

    session.recapture(Channel.HEART_RATE)
    state = session.state(Channel.HEART_RATE)
    assert state.status is VitalStatus.CAPTURING
    assert state.samples == []
    assert state.committed_value is None

    feed(session, heart_rate=88)
    assert session.samples(Channel.HEART_RATE) == [88]
    assert session.commit(Channel.HEART_RATE) == 88


def test_is_complete_requires_required_channels() -> None:
    """Test completeness considers blood pressure, heart rate, SpO2 and TempC."""
    session = CaptureSession()
    session.start()
    feed(session, bpSys=120, bpDia=80, heart_rate=70, spo=98)
    session.finish()
    assert not session.is_complete()

    session.start()
    feed(session, bpSys=120, bpDia=80, heart_rate=70, spo=98, TempC=36.8)
    session.finish()
    assert session.is_complete()


# =============================================================================
# Window & Progress
# =============================================================================

def test_poll_finishes_once_after_window() -> None:
    """Test the window ends the session on the first poll past its length."""
    clock = FakeClock()
    session = CaptureSession(window_s=10.0, clock=clock)
    session.start()
    feed(session, heart_rate=70)

    clock.advance(9.0)
    assert session.poll() is False
    assert session.active

    clock.advance(1.0)
    assert session.poll() is True
    assert not session.active
    assert session.committed_vitals() == {"heart_rate": 70}

    clock.advance(5.0)
    assert session.poll() is False


def test_progress_is_clamped() -> None:
    clock = FakeClock()
    session = CaptureSession(window_s=10.0, clock=clock)
    assert session.progress() == 0.0

    session.start()
    clock.advance(2.5)
    assert session.progress() == pytest.approx(25.0)

    clock.advance(100.0)
    assert session.progress() == 100.0


def test_snapshot_shape() -> None:
    clock = FakeClock()
    session = CaptureSession(window_s=10.0, clock=clock)
    session.start()
    feed(session, heart_rate=70)
    clock.advance(5.0)

    snap = session.snapshot()

    assert snap["active"] is True
    assert snap["progress"] == pytest.approx(50.0)
    assert snap["complete"] is False
    assert snap["vitals"]["heart_rate"] == {
        "status": "capturing",
        "current_value": 70,
        "committed_value": None,
        "samples": 1,
    }


def test_reset_returns_to_waiting() -> None:
    session = CaptureSession()
    session.start()
    feed(session, heart_rate=70)

    session.reset()

    assert not session.active
    assert session.state(Channel.HEART_RATE).status is VitalStatus.WAITING
    assert session.elapsed() == 0.0


def test_invalid_window_rejected() -> None:
    with pytest.raises(ValueError):
        CaptureSession(window_s=0)


def test_resolve_channel_by_key_or_name() -> None:
    """Test channel lookup accepts record keys and enum names."""
    assert resolve_channel("heart_rate") is Channel.HEART_RATE
    assert resolve_channel("bpSys") is Channel.BP_SYS
    assert resolve_channel("temp_c") is Channel.TEMP_C

    with pytest.raises(UnknownChannel):
        resolve_channel("pulse")
