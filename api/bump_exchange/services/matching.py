import logging
from typing import Any

from ..config import DEFAULT_MATCH_WINDOWS_MS, PENDING_TTL_SECONDS
from ..models import Location, MatchResult, PendingExchange
from ..store.base import ExchangeStore
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

REQUIRED_WINDOWS = ("city", "state", "network", "vpn", "unknown")


class MatchingEngine:
    """Atomic store-and-match over the shared exchange store.

    Recording the caller's pending exchange and searching for a counterpart
    happen in one indivisible store step. There is no read-then-write
    fallback: if the store cannot run the atomic primitive the hit fails with
    StoreUnavailable.
    """

    def __init__(self, store: ExchangeStore, windows: dict[str, int] | None = None) -> None:
        self.store = store
        self.windows = dict(DEFAULT_MATCH_WINDOWS_MS)
        if windows:
            self.windows.update(windows)
        missing = [name for name in REQUIRED_WINDOWS if name not in self.windows]
        if missing:
            raise ValueError(f"missing match windows: {', '.join(missing)}")

    def store_and_match(
        self,
        session_id: str,
        exchange_data: dict[str, Any],
        location: Location,
        server_timestamp: int,
        ttl_seconds: int = PENDING_TTL_SECONDS,
    ) -> MatchResult | None:
        exchange = PendingExchange(
            session_id=session_id,
            user_id=str(exchange_data["user_id"]),
            profile=dict(exchange_data.get("profile") or {}),
            server_timestamp=int(server_timestamp),
            client_timestamp=exchange_data.get("client_timestamp"),
            magnitude=float(exchange_data.get("magnitude") or 0.0),
            vector_hash=exchange_data.get("vector_hash"),
            location=location,
            sharing_category=str(exchange_data.get("sharing_category") or "All"),
        )

        try:
            counterpart = self.store.store_and_match(exchange, ttl_seconds, self.windows)
        except StoreUnavailable:
            raise
        except Exception as exc:
            logger.exception("[exchange] store_and_match failed for session=%s", session_id)
            raise StoreUnavailable("Exchange store unavailable") from exc

        if counterpart is None:
            logger.info(
                "[exchange] session=%s stored as pending (ts=%s, confidence=%s)",
                session_id,
                server_timestamp,
                location.confidence,
            )
            return None

        logger.info(
            "[exchange] session=%s matched session=%s (dt=%sms)",
            session_id,
            counterpart.session_id,
            abs(exchange.server_timestamp - counterpart.server_timestamp),
        )
        return MatchResult(session_id=counterpart.session_id, exchange=counterpart)
