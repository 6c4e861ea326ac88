from __future__ import annotations

from typing import Iterable

from ..models import Location, PendingExchange

NO_MATCH = "no_match"


def _present(value: str | None) -> bool:
    return bool(value and str(value).strip())


def _same(x: str | None, y: str | None) -> bool:
    if not _present(x) and not _present(y):
        return True
    return x == y


def _is_unknown(location: Location) -> bool:
    return not (_present(location.city) or _present(location.state) or _present(location.network))


def match_confidence(a: Location, b: Location, windows: dict[str, int]) -> tuple[str, int]:
    """Classify how plausibly two hits came from the same place.

    Returns the confidence label and the time window (ms) allowed for it.
    VPN wins over everything since its geo data is meaningless. A side with
    no usable location still participates under the narrow ``unknown`` window.
    Keep in sync with the Lua script in ``store/redis_store.py``.
    """
    if a.is_vpn or b.is_vpn:
        return "vpn", int(windows["vpn"])

    if (
        _present(a.city)
        and _present(b.city)
        and a.city == b.city
        and _same(a.state, b.state)
        and _same(a.country, b.country)
    ):
        return "city", int(windows["city"])

    if _present(a.state) and _present(b.state) and a.state == b.state and _same(a.country, b.country):
        return "state", int(windows["state"])

    if _present(a.network) and _present(b.network) and a.network == b.network:
        return "network", int(windows["network"])

    if _is_unknown(a) or _is_unknown(b):
        return "unknown", int(windows["unknown"])

    return NO_MATCH, 0


def is_compatible(
    mine: PendingExchange,
    other: PendingExchange,
    now_ms: int,
    ttl_seconds: int,
    windows: dict[str, int],
) -> bool:
    if other.session_id == mine.session_id or other.user_id == mine.user_id:
        return False
    if now_ms - other.server_timestamp > ttl_seconds * 1000:
        return False
    confidence, window = match_confidence(mine.location, other.location, windows)
    if confidence == NO_MATCH:
        return False
    return abs(mine.server_timestamp - other.server_timestamp) <= window


def select_counterpart(
    mine: PendingExchange,
    candidates: Iterable[PendingExchange],
    now_ms: int,
    ttl_seconds: int,
    windows: dict[str, int],
) -> PendingExchange | None:
    """First-come wins: earliest server timestamp, then lowest session id."""
    best: PendingExchange | None = None
    for other in candidates:
        if not is_compatible(mine, other, now_ms, ttl_seconds, windows):
            continue
        if best is None or (other.server_timestamp, other.session_id) < (best.server_timestamp, best.session_id):
            best = other
    return best
