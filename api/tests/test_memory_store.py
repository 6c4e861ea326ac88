import json

from bump_exchange.models import Location, PendingExchange
from bump_exchange.store.base import PENDING_BUCKET_KEY, pending_key

WINDOWS = {"city": 3000, "state": 2500, "network": 2000, "vpn": 1500, "unknown": 1000}


def _pending(store, session_id, user_id, location=None):
    return PendingExchange(
        session_id=session_id,
        user_id=user_id,
        profile={"user_id": user_id},
        server_timestamp=store.now_ms(),
        magnitude=3.0,
        location=location or Location(),
    )


def test_values_expire_lazily(store, clock):
    store.set("k", "v", 5)
    assert store.get("k") == "v"
    clock.advance(5)
    assert store.get("k") is None
    assert store.expire("k", 5) is False


def test_expire_extends_ttl(store, clock):
    store.set("k", "v", 5)
    clock.advance(4)
    assert store.expire("k", 5) is True
    clock.advance(4)
    assert store.get("k") == "v"


def test_compare_and_set(store):
    store.set("k", "one", 60)
    assert store.compare_and_set("k", "two", "three", 60) is False
    assert store.get("k") == "one"
    assert store.compare_and_set("k", "one", "three", 60) is True
    assert store.get("k") == "three"
    assert store.compare_and_set("missing", "x", "y", 60) is False


def test_store_and_match_records_then_pairs(store):
    first = _pending(store, "s1", "u1")
    assert store.store_and_match(first, 30, WINDOWS) is None
    assert store.pending_sessions() == ["s1"]
    assert json.loads(store.get(pending_key("s1")))["user_id"] == "u1"

    second = _pending(store, "s2", "u2")
    counterpart = store.store_and_match(second, 30, WINDOWS)
    assert counterpart is not None
    assert counterpart.session_id == "s1"
    assert store.pending_sessions() == []
    assert store.get(pending_key("s1")) is None
    assert store.get(pending_key("s2")) is None


def test_same_user_never_pairs(store):
    assert store.store_and_match(_pending(store, "s1", "u1"), 30, WINDOWS) is None
    assert store.store_and_match(_pending(store, "s2", "u1"), 30, WINDOWS) is None
    assert sorted(store.pending_sessions()) == ["s1", "s2"]


def test_expired_pending_is_not_matched(store, clock):
    assert store.store_and_match(_pending(store, "s1", "u1"), 30, WINDOWS) is None
    clock.advance(31)
    assert store.store_and_match(_pending(store, "s2", "u2"), 30, WINDOWS) is None
    assert store.pending_sessions() == ["s2"]


def test_remove_pending(store):
    store.store_and_match(_pending(store, "s1", "u1"), 30, WINDOWS)
    store.remove_pending(["s1", "unknown"])
    assert store.pending_sessions() == []
    assert store.get(pending_key("s1")) is None
    assert PENDING_BUCKET_KEY == "pending_bucket"
