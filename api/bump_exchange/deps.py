import logging
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Depends, Request

from . import repo
from .config import EXCHANGE_STORE, REDIS_SOCKET_TIMEOUT_SECONDS, REDIS_URL
from .services.cleanup import CleanupService
from .services.discovery import PollingDiscovery
from .services.errors import RateLimited, StoreUnavailable
from .services.geolocation import IpGeolocator
from .services.ingestion import HitIngestion
from .services.match_store import MatchStore
from .services.matching import MatchingEngine
from .services.qr_completion import QRCompletionService
from .services.rate_limit import ExchangeRateLimiter, client_identifier
from .store.base import ExchangeStore
from .store.memory_store import InMemoryExchangeStore
from .store.redis_store import RedisExchangeStore

logger = logging.getLogger(__name__)


@dataclass
class ExchangeServices:
    store: ExchangeStore
    matches: MatchStore
    cleanup: CleanupService
    engine: MatchingEngine
    ingestion: HitIngestion
    qr: QRCompletionService
    discovery: PollingDiscovery
    limiter: ExchangeRateLimiter


def build_exchange_store(kind: str | None = None) -> ExchangeStore:
    kind = (kind or EXCHANGE_STORE).strip().lower()
    if kind == "memory":
        logger.warning("[store] using in-memory exchange store; matches are not shared across processes")
        return InMemoryExchangeStore()
    if kind == "redis":
        return RedisExchangeStore(REDIS_URL, socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS)
    raise ValueError(f"unknown EXCHANGE_STORE: {kind}")


def _default_profiles(user_id: str) -> dict[str, Any] | None:
    return repo.get_profile(user_id)


def build_services(
    store: ExchangeStore,
    *,
    profiles: Callable[[str], dict[str, Any] | None] | None = None,
    geolocator: IpGeolocator | None = None,
    windows: dict[str, int] | None = None,
) -> ExchangeServices:
    profiles = profiles or _default_profiles
    matches = MatchStore(store)
    cleanup = CleanupService(store)
    engine = MatchingEngine(store, windows)
    ingestion = HitIngestion(profiles, geolocator or IpGeolocator(store), cleanup, engine, matches)
    return ExchangeServices(
        store=store,
        matches=matches,
        cleanup=cleanup,
        engine=engine,
        ingestion=ingestion,
        qr=QRCompletionService(matches, cleanup, profiles),
        discovery=PollingDiscovery(matches),
        limiter=ExchangeRateLimiter(store),
    )


def get_services(request: Request) -> ExchangeServices:
    services = getattr(request.app.state, "exchange", None)
    if services is None:
        raise StoreUnavailable("Exchange store is not initialised")
    return services


def rate_limit_dependency(route_key: str, limit: int, window_seconds: int):
    def _dep(request: Request, services: ExchangeServices = Depends(get_services)) -> None:
        key = f"{route_key}:{client_identifier(request)}"
        decision = services.limiter.check(key, limit=limit, window_seconds=window_seconds)
        if not decision.allowed:
            logger.warning("[rate_limit] %s blocked for %ss", key, decision.retry_after_seconds)
            raise RateLimited(decision.retry_after_seconds)

    return Depends(_dep)
