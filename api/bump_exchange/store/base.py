"""
Shared, ephemeral key-value store used by every exchange component.

All entries carry a TTL. Besides plain get/set the store offers two atomic
primitives: ``compare_and_set`` and ``store_and_match``. The latter records a
pending exchange and searches for its counterpart in one indivisible step.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import PendingExchange

PENDING_PREFIX = "pending_exchange:"
PENDING_BUCKET_KEY = "pending_bucket"
MATCH_PREFIX = "exchange_match:"
SESSION_PREFIX = "exchange_session:"
WAITING_PREFIX = "exchange_waiting:"
GEO_PREFIX = "ip_geo:"
RATE_LIMIT_PREFIX = "rate_limit:"


def pending_key(session_id: str) -> str:
    return f"{PENDING_PREFIX}{session_id}"


def match_key(token: str) -> str:
    return f"{MATCH_PREFIX}{token}"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def waiting_key(session_id: str) -> str:
    return f"{WAITING_PREFIX}{session_id}"


def geo_key(ip: str) -> str:
    return f"{GEO_PREFIX}{ip}"


def rate_limit_key(name: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{name}"


class ExchangeStore(ABC):
    def connect(self) -> None:
        return None

    def close(self) -> None:
        return None

    @abstractmethod
    def ping(self) -> bool: ...

    @abstractmethod
    def now_ms(self) -> int:
        """Authoritative clock shared by every server instance."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def get_many(self, keys: list[str]) -> list[str | None]: ...

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    def expire(self, key: str, ttl_seconds: int) -> bool: ...

    @abstractmethod
    def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter. A new counter expires after ``ttl_seconds``; later increments keep that expiry."""

    @abstractmethod
    def compare_and_set(self, key: str, expected: str, value: str, ttl_seconds: int) -> bool:
        """Write ``value`` only if the key still holds ``expected``."""

    @abstractmethod
    def pending_sessions(self) -> list[str]:
        """Session ids currently registered in the pending bucket."""

    @abstractmethod
    def remove_pending(self, session_ids: list[str]) -> None: ...

    @abstractmethod
    def store_and_match(
        self,
        exchange: PendingExchange,
        ttl_seconds: int,
        windows: dict[str, int],
    ) -> PendingExchange | None:
        """Atomically find a counterpart for ``exchange`` or record it as pending.

        On a match both pending entries are gone when this returns and the
        counterpart is returned. Otherwise ``exchange`` is stored under
        ``ttl_seconds`` and None is returned.
        """
