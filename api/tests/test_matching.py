import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from bump_exchange.models import Location
from bump_exchange.services.errors import StoreUnavailable
from bump_exchange.services.matching import MatchingEngine
from bump_exchange.store.memory_store import InMemoryExchangeStore


def _data(user_id: str, category: str = "All") -> dict:
    return {"user_id": user_id, "profile": {"user_id": user_id}, "magnitude": 3.1, "sharing_category": category}


def test_first_hit_waits_second_hit_matches(store):
    engine = MatchingEngine(store)
    loc = Location(city="New York", state="New York", country="US")
    now = store.now_ms()

    assert engine.store_and_match("s1", _data("u1", "Personal"), loc, now) is None
    result = engine.store_and_match("s2", _data("u2", "Work"), loc, now + 200)

    assert result is not None
    assert result.session_id == "s1"
    assert result.exchange.user_id == "u1"
    assert result.exchange.sharing_category == "Personal"
    assert store.pending_sessions() == []


def test_far_apart_locations_do_not_match(store):
    engine = MatchingEngine(store)
    now = store.now_ms()
    assert engine.store_and_match("s1", _data("u1"), Location(city="Austin", state="Texas", network="70"), now) is None
    assert engine.store_and_match("s2", _data("u2"), Location(city="Boise", state="Idaho", network="24"), now) is None


def test_hits_outside_window_do_not_match(store):
    engine = MatchingEngine(store, windows={"city": 500})
    loc = Location(city="New York", state="New York")
    now = store.now_ms()
    assert engine.store_and_match("s1", _data("u1"), loc, now) is None
    assert engine.store_and_match("s2", _data("u2"), loc, now + 501) is None


def test_missing_window_is_rejected(store, monkeypatch):
    import bump_exchange.services.matching as matching

    monkeypatch.setattr(matching, "DEFAULT_MATCH_WINDOWS_MS", {"city": 1})
    with pytest.raises(ValueError):
        MatchingEngine(store)


def test_at_most_one_match_under_concurrency(clock):
    store = InMemoryExchangeStore(clock=clock)
    engine = MatchingEngine(store)
    loc = Location()
    now = store.now_ms()
    barrier = threading.Barrier(8)

    def hit(i: int):
        barrier.wait()
        return engine.store_and_match(f"s{i}", _data(f"u{i}"), loc, now)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(hit, range(8)))

    matched = [r for r in results if r is not None]
    counterparts = [r.session_id for r in matched]
    # 8 hits pair off into 4 matches and nobody is consumed twice
    assert len(matched) == 4
    assert len(set(counterparts)) == 4
    assert store.pending_sessions() == []


def test_store_failure_fails_closed(store, monkeypatch):
    engine = MatchingEngine(store)

    def boom(*args, **kwargs):
        raise RuntimeError("lua not loaded")

    monkeypatch.setattr(store, "store_and_match", boom)
    with pytest.raises(StoreUnavailable):
        engine.store_and_match("s1", _data("u1"), Location(), store.now_ms())
