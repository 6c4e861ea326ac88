from __future__ import annotations

import json
import threading
import time
from typing import Callable

from ..models import PendingExchange
from ..services.proximity import select_counterpart
from .base import ExchangeStore, pending_key


class InMemoryExchangeStore(ExchangeStore):
    """Mutex-guarded dict with lazy TTL expiry, for tests and single-process dev."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._values: dict[str, tuple[str, float]] = {}
        self._bucket: dict[str, int] = {}
        self._bucket_expires_at = 0.0
        self._lock = threading.Lock()

    def ping(self) -> bool:
        return True

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _live(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._values.pop(key, None)
            return None
        return value

    def _live_bucket(self) -> dict[str, int]:
        if self._bucket and self._clock() >= self._bucket_expires_at:
            self._bucket.clear()
        return self._bucket

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def get_many(self, keys: list[str]) -> list[str | None]:
        with self._lock:
            return [self._live(k) for k in keys]

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._values[key] = (value, self._clock() + ttl_seconds)

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            value = self._live(key)
            if value is None:
                return False
            self._values[key] = (value, self._clock() + ttl_seconds)
            return True

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                self._values[key] = ("1", self._clock() + ttl_seconds)
                return 1
            count = int(current) + 1
            self._values[key] = (str(count), self._values[key][1])
            return count

    def compare_and_set(self, key: str, expected: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            self._values[key] = (value, self._clock() + ttl_seconds)
            return True

    def pending_sessions(self) -> list[str]:
        with self._lock:
            return list(self._live_bucket().keys())

    def remove_pending(self, session_ids: list[str]) -> None:
        with self._lock:
            bucket = self._live_bucket()
            for session_id in session_ids:
                self._values.pop(pending_key(session_id), None)
                bucket.pop(session_id, None)

    def store_and_match(
        self,
        exchange: PendingExchange,
        ttl_seconds: int,
        windows: dict[str, int],
    ) -> PendingExchange | None:
        with self._lock:
            now = self.now_ms()
            bucket = self._live_bucket()
            candidates: list[PendingExchange] = []
            for session_id in list(bucket.keys()):
                if session_id == exchange.session_id:
                    continue
                raw = self._live(pending_key(session_id))
                if raw is None:
                    bucket.pop(session_id, None)
                    continue
                candidates.append(PendingExchange.from_dict(json.loads(raw)))

            counterpart = select_counterpart(exchange, candidates, now, ttl_seconds, windows)
            if counterpart is not None:
                for session_id in (counterpart.session_id, exchange.session_id):
                    self._values.pop(pending_key(session_id), None)
                    bucket.pop(session_id, None)
                return counterpart

            expires_at = self._clock() + ttl_seconds
            self._values[pending_key(exchange.session_id)] = (json.dumps(exchange.to_dict()), expires_at)
            bucket[exchange.session_id] = exchange.server_timestamp
            self._bucket_expires_at = expires_at
            return None

