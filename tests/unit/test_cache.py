"""Unit tests for the snapshot cache."""

from weather_app.models.weather import CurrentConditions, Location, WeatherSnapshot
from weather_app.services.cache import SnapshotCache


def _snapshot(name="Paris"):
    return WeatherSnapshot(
        location=Location(name=name, country="FR"),
        current=CurrentConditions(
            temperature_c=15, condition="Clear", humidity_pct=50, wind_speed_kmh=10
        ),
    )


def test_cache_set_and_get(clock):
    """Test setting and getting cache values."""
    cache = SnapshotCache(ttl=600, clock=clock)
    snapshot = _snapshot()

    entry = cache.set("paris", snapshot)

    assert entry.created_at == clock()
    assert cache.get("paris") is snapshot


def test_cache_miss(clock):
    """Test cache miss returns None."""
    cache = SnapshotCache(ttl=600, clock=clock)

    assert cache.get("nonexistent_key") is None


def test_cache_entry_expires_at_ttl(clock):
    """Test an entry is valid strictly before the TTL and gone at it."""
    cache = SnapshotCache(ttl=600, clock=clock)
    cache.set("paris", _snapshot())

    clock.advance(599.5)
    assert cache.get("paris") is not None

    clock.advance(0.5)
    assert cache.get("paris") is None
    assert "paris" not in cache


def test_cache_write_purges_other_expired_entries(clock):
    """Test stale entries are dropped on the next write."""
    cache = SnapshotCache(ttl=600, clock=clock)
    cache.set("paris", _snapshot("Paris"))
    clock.advance(601)

    cache.set("london", _snapshot("London"))

    assert len(cache) == 1
    assert "paris" not in cache


def test_cache_set_replaces_entry(clock):
    cache = SnapshotCache(ttl=600, clock=clock)
    cache.set("paris", _snapshot())
    clock.advance(300)
    replacement = _snapshot()

    entry = cache.set("paris", replacement)

    assert entry.created_at == clock()
    assert cache.get("paris") is replacement


def test_cache_stats(clock):
    """Test valid and expired entries are counted separately."""
    cache = SnapshotCache(ttl=600, clock=clock)
    cache.set("paris", _snapshot())
    clock.advance(400)
    cache.set("london", _snapshot("London"))
    clock.advance(300)

    stats = cache.stats()

    assert stats.total_entries == 2
    assert stats.valid_entries == 1
    assert stats.expired_entries == 1
    assert stats.ttl_seconds == 600


def test_cache_clear(clock):
    cache = SnapshotCache(ttl=600, clock=clock)
    cache.set("paris", _snapshot())

    cache.clear()

    assert len(cache) == 0
    assert cache.get("paris") is None
