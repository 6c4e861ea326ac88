"""
Per-caller request limits on the exchange endpoints.

Counters live in the exchange store under fixed windows, so every API
instance sharing a Redis store enforces one limit per caller.
"""

import hashlib
from dataclasses import dataclass

from fastapi import Request

from ..store.base import ExchangeStore, rate_limit_key


@dataclass
class RateDecision:
    allowed: bool
    retry_after_seconds: int


class ExchangeRateLimiter:
    def __init__(self, store: ExchangeStore) -> None:
        self.store = store

    def check(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        now = self.store.now_ms() // 1000
        window = now // window_seconds
        count = self.store.incr(rate_limit_key(f"{key}:{window}"), window_seconds)
        if count > limit:
            return RateDecision(allowed=False, retry_after_seconds=max(1, (window + 1) * window_seconds - now))
        return RateDecision(allowed=True, retry_after_seconds=0)


def _digest(credential: str) -> str:
    return hashlib.sha256(credential.encode()).hexdigest()[:16]


def client_identifier(request: Request) -> str:
    auth = request.headers.get("authorization", "").strip()
    if auth.lower().startswith("bearer ") and auth[7:].strip():
        return f"token:{_digest(auth[7:].strip())}"
    cookie = request.cookies.get("exchange_session")
    if cookie:
        return f"cookie:{_digest(cookie)}"
    xff = request.headers.get("x-forwarded-for", "").strip()
    if xff:
        return f"ip:{xff.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "unknown"
