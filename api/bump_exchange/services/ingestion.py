"""
Entry point for a single bump hit.

A hit is validated, enriched with the caller's profile and coarse location,
and handed to the matching engine. The caller's own stale pending entries are
cleared first so a user never matches themselves across sessions. The
ingestion never writes to the store directly: the engine and the match store
own every write.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..config import PENDING_TTL_SECONDS
from ..models import ROLE_A, Location
from ..schemas import HitRequest
from .cleanup import CleanupService
from .errors import NotFoundOrExpired
from .geolocation import IpGeolocator, unknown_location
from .match_store import MatchStore, create_exchange_token, token_prefix
from .matching import MatchingEngine

logger = logging.getLogger(__name__)


class HitIngestion:
    def __init__(
        self,
        profiles: Callable[[str], dict[str, Any] | None],
        geolocator: IpGeolocator,
        cleanup: CleanupService,
        engine: MatchingEngine,
        matches: MatchStore,
        ttl_seconds: int = PENDING_TTL_SECONDS,
    ) -> None:
        self.profiles = profiles
        self.geolocator = geolocator
        self.cleanup = cleanup
        self.engine = engine
        self.matches = matches
        self.ttl_seconds = ttl_seconds

    def _locate(self, client_ip: str | None) -> Location:
        try:
            return self.geolocator.lookup(client_ip)
        except Exception as exc:
            logger.warning("[geo] location lookup raised for %s, treating as unknown: %s", client_ip, exc)
            return unknown_location(client_ip)

    def ingest_hit(self, request: HitRequest, user_id: str, client_ip: str | None) -> dict[str, Any]:
        profile = self.profiles(user_id)
        if not profile:
            raise NotFoundOrExpired("User profile not found")
        profile = dict(profile)
        profile.setdefault("user_id", user_id)

        location = self._locate(client_ip)
        self.cleanup.cleanup(user_id)

        server_timestamp = self.matches.store.now_ms()
        if request.client_timestamp is not None:
            logger.debug(
                "[exchange] session=%s hit=%s client/server skew=%sms",
                request.session_id,
                request.hit_number,
                int(server_timestamp - request.client_timestamp),
            )

        result = self.engine.store_and_match(
            request.session_id,
            {
                "user_id": user_id,
                "profile": profile,
                "magnitude": request.magnitude,
                "vector_hash": request.vector_hash,
                "sharing_category": request.sharing_category,
                "client_timestamp": int(request.client_timestamp) if request.client_timestamp is not None else None,
            },
            location,
            server_timestamp,
            self.ttl_seconds,
        )
        if result is None:
            return {"matched": False}

        token = create_exchange_token()
        self.matches.create_match(
            token,
            session_a=request.session_id,
            session_b=result.session_id,
            profile_a=profile,
            profile_b=result.exchange.profile,
            category_a=request.sharing_category,
            category_b=result.exchange.sharing_category,
        )
        logger.info("[exchange] hit session=%s matched, token=%s", request.session_id, token_prefix(token))
        return {"matched": True, "token": token, "role": ROLE_A}
