import json
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"

EXCHANGE_STORE = os.getenv("EXCHANGE_STORE", "redis").strip().lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_SOCKET_TIMEOUT_SECONDS = float(os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", "2.0"))

JWT_SECRET = os.getenv("JWT_SECRET", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))

PENDING_TTL_SECONDS = int(os.getenv("PENDING_TTL_SECONDS", "30"))
MATCH_TTL_SECONDS = int(os.getenv("MATCH_TTL_SECONDS", "600"))

IPINFO_URL = os.getenv("IPINFO_URL", "https://ipinfo.io")
IPINFO_TOKEN = os.getenv("IPINFO_TOKEN", "")
GEO_TIMEOUT_SECONDS = float(os.getenv("GEO_TIMEOUT_SECONDS", "3.0"))
GEO_CACHE_TTL_SECONDS = int(os.getenv("GEO_CACHE_TTL_SECONDS", str(24 * 60 * 60)))

# Maximum |server timestamp delta| per location confidence, in milliseconds.
BASE_MATCH_WINDOWS_MS: dict[str, int] = {
    "city": int(os.getenv("MATCH_WINDOW_CITY_MS", "3000")),
    "state": int(os.getenv("MATCH_WINDOW_STATE_MS", "2500")),
    "network": int(os.getenv("MATCH_WINDOW_NETWORK_MS", "2000")),
    "vpn": int(os.getenv("MATCH_WINDOW_VPN_MS", "1500")),
    "unknown": int(os.getenv("MATCH_WINDOW_UNKNOWN_MS", "1000")),
}


def load_match_windows(raw: str | None, base: dict[str, int] = BASE_MATCH_WINDOWS_MS) -> dict[str, int]:
    windows = dict(base)
    if not raw:
        return windows
    try:
        overrides: dict[str, Any] = json.loads(raw)
        windows.update({str(k): int(v) for k, v in overrides.items()})
    except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as exc:
        logger.warning("[config] ignoring malformed MATCH_WINDOWS_JSON %r: %s", raw, exc)
        return dict(base)
    return windows


DEFAULT_MATCH_WINDOWS_MS = load_match_windows(os.getenv("MATCH_WINDOWS_JSON"))

RL_EXCHANGE_HIT_LIMIT = int(os.getenv("RL_EXCHANGE_HIT_LIMIT", "240"))
RL_EXCHANGE_PREVIEW_LIMIT = int(os.getenv("RL_EXCHANGE_PREVIEW_LIMIT", "60"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))

CLIENT_EXCHANGE_TIMEOUT_SECONDS = float(os.getenv("CLIENT_EXCHANGE_TIMEOUT_SECONDS", "10"))
CLIENT_QR_TIMEOUT_SECONDS = float(os.getenv("CLIENT_QR_TIMEOUT_SECONDS", "60"))
CLIENT_POLL_INTERVAL_SECONDS = float(os.getenv("CLIENT_POLL_INTERVAL_SECONDS", "1.0"))
CLIENT_HIT_COOLDOWN_SECONDS = float(os.getenv("CLIENT_HIT_COOLDOWN_SECONDS", "0.5"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]
STORE_CONNECT_ATTEMPTS = int(os.getenv("STORE_CONNECT_ATTEMPTS", "10"))
