"""Tests for the response cache."""

import pytest
from datetime import timedelta
from freezegun import freeze_time

from taskview.services.cache_store import CacheStore, fingerprint


@pytest.mark.unit
def test_fingerprint_ignores_key_order():
    """Test that structurally equal params give equal fingerprints."""
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})


@pytest.mark.unit
def test_get_returns_data_for_matching_params():
    """Test a plain hit."""
    store = CacheStore()
    store.set("recurring:instances:p1:s10:own", ["x"], {"page": 1, "status": "pending"})

    assert store.get("recurring:instances:p1:s10:own", {"status": "pending", "page": 1}) == ["x"]


@pytest.mark.unit
def test_get_misses_on_changed_params_and_drops_entry():
    """Test that a params mismatch is a miss that removes the entry."""
    store = CacheStore()
    store.set("k", ["x"], {"page": 1})

    assert store.get("k", {"page": 2}) is None
    assert "k" not in store
    assert store.get("k", {"page": 1}) is None


@pytest.mark.unit
def test_unknown_key_is_a_miss():
    """Test that a miss is never an error."""
    assert CacheStore().get("nothing", {}) is None


@pytest.mark.unit
def test_short_ttl_expiry():
    """Test lazy expiry of paged entries."""
    with freeze_time("2024-12-09 12:00:00") as frozen:
        store = CacheStore(short_ttl_seconds=1200, long_ttl_seconds=3600, long_ttl_markers=("series-light",))
        store.set("recurring:instances:p1:s10:own", "page", {})

        frozen.tick(timedelta(minutes=19))
        assert store.get("recurring:instances:p1:s10:own", {}) == "page"

        frozen.tick(timedelta(minutes=2))
        assert store.get("recurring:instances:p1:s10:own", {}) is None
        assert len(store) == 0


@pytest.mark.unit
def test_long_ttl_for_marked_keys():
    """Test that aggregate keys use the long TTL class."""
    with freeze_time("2024-12-09 12:00:00") as frozen:
        store = CacheStore(short_ttl_seconds=1200, long_ttl_seconds=3600, long_ttl_markers=("series-light",))
        store.set("recurring:series-light:privileged", ["s1"], {})

        assert store.ttl_for("recurring:series-light:privileged") == 3600
        assert store.ttl_for("recurring:instances:p1:s10:own") == 1200

        frozen.tick(timedelta(minutes=59))
        assert store.get("recurring:series-light:privileged", {}) == ["s1"]

        frozen.tick(timedelta(minutes=2))
        assert store.get("recurring:series-light:privileged", {}) is None


@pytest.mark.unit
def test_set_overwrites_and_restarts_clock():
    """Test that set always replaces the entry."""
    with freeze_time("2024-12-09 12:00:00") as frozen:
        store = CacheStore(short_ttl_seconds=60)
        store.set("k", "old", {"v": 1})
        frozen.tick(timedelta(seconds=50))
        store.set("k", "new", {"v": 2})
        frozen.tick(timedelta(seconds=50))

        assert store.get("k", {"v": 2}) == "new"


@pytest.mark.unit
def test_invalidate_by_prefix_is_substring_match():
    """Test substring invalidation across a family."""
    store = CacheStore()
    store.set("recurring:instances:p1:s10:own", 1, {})
    store.set("recurring:instances:p2:s10:own", 2, {})
    store.set("recurring:series-light:own", 3, {})
    store.set("bin:instances:p1:s10:own", 4, {})

    removed = store.invalidate_by_prefix("recurring:instances:")

    assert removed == 2
    assert sorted(store.keys()) == ["bin:instances:p1:s10:own", "recurring:series-light:own"]
    assert store.invalidate_by_prefix(":instances:") == 1


@pytest.mark.unit
def test_invalidate_and_clear():
    """Test single-key invalidation and clearing."""
    store = CacheStore()
    store.set("a", 1, {})
    store.set("b", 2, {})

    store.invalidate("a")
    store.invalidate("missing")
    assert store.keys() == ["b"]

    store.clear()
    assert len(store) == 0


@pytest.mark.unit
def test_injected_clock():
    """Test that an injected clock drives expiry."""
    now = [1000.0]
    store = CacheStore(short_ttl_seconds=10, clock=lambda: now[0])
    store.set("k", "v", None)

    now[0] += 11
    assert store.get("k", None) is None
