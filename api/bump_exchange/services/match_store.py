import json
import logging
import secrets

from ..config import MATCH_TTL_SECONDS
from ..models import ROLE_A, ROLE_B, STATUS_MATCHED, STATUS_WAITING, ExchangeMatch
from ..store.base import ExchangeStore, match_key, session_key, waiting_key

logger = logging.getLogger(__name__)


def create_exchange_token() -> str:
    return secrets.token_urlsafe(32)


def token_prefix(token: str) -> str:
    return token[:8] + "..." if len(token) > 8 else token


def _dumps(match: ExchangeMatch) -> str:
    return json.dumps(match.to_dict())


class MatchStore:
    def __init__(self, store: ExchangeStore, ttl_seconds: int = MATCH_TTL_SECONDS) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    def index_session(self, session_id: str, token: str, role: str) -> None:
        self.store.set(session_key(session_id), json.dumps({"token": token, "role": role}), self.ttl_seconds)

    def create_match(
        self,
        token: str,
        session_a: str,
        session_b: str,
        profile_a: dict,
        profile_b: dict,
        category_a: str | None = None,
        category_b: str | None = None,
    ) -> ExchangeMatch:
        now = self.store.now_ms()
        match = ExchangeMatch(
            token=token,
            session_a=session_a,
            session_b=session_b,
            profile_a=profile_a,
            profile_b=profile_b,
            sharing_category_a=category_a or "All",
            sharing_category_b=category_b or "All",
            status=STATUS_MATCHED,
            created_at=now,
            matched_at=now,
        )
        self.store.set(match_key(token), _dumps(match), self.ttl_seconds)
        self.index_session(session_a, token, ROLE_A)
        self.index_session(session_b, token, ROLE_B)
        logger.info(
            "[exchange] stored match token=%s A=%s(%s) B=%s(%s)",
            token_prefix(token),
            session_a,
            match.sharing_category_a,
            session_b,
            match.sharing_category_b,
        )
        return match

    def create_waiting(self, session_a: str, profile_a: dict, category_a: str | None = None) -> ExchangeMatch:
        token = create_exchange_token()
        match = ExchangeMatch(
            token=token,
            session_a=session_a,
            profile_a=profile_a,
            sharing_category_a=category_a or "All",
            status=STATUS_WAITING,
            created_at=self.store.now_ms(),
        )
        self.store.set(match_key(token), _dumps(match), self.ttl_seconds)
        self.store.set(waiting_key(session_a), token, self.ttl_seconds)
        logger.info("[qr] waiting exchange token=%s session=%s", token_prefix(token), session_a)
        return match

    def get_match_with_raw(self, token: str) -> tuple[ExchangeMatch, str] | None:
        raw = self.store.get(match_key(token))
        if raw is None:
            return None
        return ExchangeMatch.from_dict(json.loads(raw)), raw

    def get_match(self, token: str) -> ExchangeMatch | None:
        found = self.get_match_with_raw(token)
        return found[0] if found else None

    def get_match_by_session(self, session_id: str) -> tuple[ExchangeMatch, str] | None:
        """Resolve a session through the session index. Returns (match, role)."""
        raw = self.store.get(session_key(session_id))
        if raw is None:
            return None
        entry = json.loads(raw)
        token = str(entry.get("token") or "")
        if not token:
            return None
        match = self.get_match(token)
        if match is None:
            return None
        return match, str(entry.get("role") or ROLE_A)

    def get_waiting_by_session(self, session_id: str) -> ExchangeMatch | None:
        token = self.store.get(waiting_key(session_id))
        if not token:
            return None
        return self.get_match(token)

    def mark_preview_accessed(self, match: ExchangeMatch, raw: str) -> ExchangeMatch:
        """Flag a waiting record as being scanned and refresh its TTL."""
        if match.scan_status is None:
            match.scan_status = "pending_auth"
            match.preview_accessed_at = self.store.now_ms()
            if not self.store.compare_and_set(match_key(match.token), raw, _dumps(match), self.ttl_seconds):
                logger.info("[qr] token=%s changed during preview, leaving it as is", token_prefix(match.token))
                return match
        else:
            self.store.expire(match_key(match.token), self.ttl_seconds)
        self.store.expire(waiting_key(match.session_a), self.ttl_seconds)
        return match

    def complete_waiting(self, expected_raw: str, match: ExchangeMatch) -> bool:
        """Persist a completed QR match unless the record changed since ``expected_raw`` was read."""
        if not self.store.compare_and_set(match_key(match.token), expected_raw, _dumps(match), self.ttl_seconds):
            return False
        self.index_session(match.session_a, match.token, ROLE_A)
        if match.session_b:
            self.index_session(match.session_b, match.token, ROLE_B)
        return True
