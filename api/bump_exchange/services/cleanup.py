import json
import logging

from ..store.base import ExchangeStore, pending_key

logger = logging.getLogger(__name__)


class CleanupService:
    def __init__(self, store: ExchangeStore) -> None:
        self.store = store

    def cleanup(self, user_id: str) -> int:
        """Delete every pending exchange owned by ``user_id``.

        Best-effort: a failure is logged and reported as zero removals. A
        stale duplicate just expires, while a blocked hit is a missed bump.
        """
        try:
            session_ids = self.store.pending_sessions()
            if not session_ids:
                return 0
            raws = self.store.get_many([pending_key(s) for s in session_ids])

            stale: list[str] = []
            owned: list[str] = []
            for session_id, raw in zip(session_ids, raws):
                if raw is None:
                    stale.append(session_id)
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    stale.append(session_id)
                    continue
                if str(data.get("user_id")) == str(user_id):
                    owned.append(session_id)

            if stale or owned:
                self.store.remove_pending(stale + owned)
            if owned:
                logger.info("[cleanup] removed %s pending exchange(s) for user_id=%s", len(owned), user_id)
            return len(owned)
        except Exception as exc:
            logger.warning("[cleanup] failed for user_id=%s: %s", user_id, exc)
            return 0
