"""Tests for the latest-reading cache and its collecting flag."""

from vitals_engine.cache import ReadingCache
from vitals_engine.models import Reading


def test_empty_cache_has_no_latest() -> None:
    """Test a fresh cache is empty and collecting."""
    cache = ReadingCache()
    assert cache.latest() is None
    assert cache.collecting is True


def test_offer_replaces_latest() -> None:
    """Test each offered reading becomes the latest."""
    cache = ReadingCache()
    assert cache.offer(Reading(values={"heart_rate": 70}))
    assert cache.offer(Reading(values={"heart_rate": 71}))

    assert cache.latest().values == {"heart_rate": 71}


def test_latest_returns_independent_copy() -> None:
    """Test callers cannot mutate the cached reading."""
    cache = ReadingCache()
    original = Reading(values={"heart_rate": 70})
    cache.offer(original)

    original.values["heart_rate"] = 0
    copy = cache.latest()
    copy.values["heart_rate"] = 999

    assert cache.latest().values == {"heart_rate": 70}


def test_pause_freezes_latest_until_resume() -> None:
    """Test paused cache ignores offers until resumed."""
    cache = ReadingCache()
    cache.offer(Reading(values={"heart_rate": 70}))

    cache.pause()
    assert cache.collecting is False
    assert cache.offer(Reading(values={"heart_rate": 90})) is False
    assert cache.latest().values == {"heart_rate": 70}

    cache.resume()
    assert cache.offer(Reading(values={"heart_rate": 91})) is True
    assert cache.latest().values == {"heart_rate": 91}


def test_clear_keeps_collecting_flag() -> None:
    """Test clear drops the reading without resuming a paused cache."""
    cache = ReadingCache()
    cache.offer(Reading(values={"heart_rate": 70}))
    cache.pause()

    cache.clear()

    assert cache.latest() is None
    assert cache.collecting is False
