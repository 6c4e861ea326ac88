import json
import logging
from typing import Any

from sqlalchemy import text

from .database import SessionLocal

logger = logging.getLogger(__name__)


def _coerce_json(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, (str, bytes)):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def get_profile(user_id: str) -> dict[str, Any] | None:
    """Shareable profile card for ``user_id``, or None when the user has none."""
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT user_id, profile_json FROM user_profile WHERE user_id=:user_id"),
            {"user_id": user_id},
        ).mappings().first()
    if not row:
        return None
    profile = _coerce_json(row.get("profile_json"))
    if profile is None:
        logger.warning("[exchange] unreadable profile_json for user_id=%s", user_id)
        return None
    profile["user_id"] = str(row.get("user_id") or user_id)
    profile.setdefault("contact_entries", [])
    return profile


PROFILE_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS user_profile (
    user_id TEXT PRIMARY KEY,
    profile_json JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


def ensure_profile_table() -> None:
    with SessionLocal() as db:
        db.execute(text(PROFILE_TABLE_DDL))
        db.commit()


def upsert_profile(user_id: str, profile: dict[str, Any]) -> None:
    body = {k: v for k, v in profile.items() if k != "user_id"}
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO user_profile (user_id, profile_json, updated_at)
                VALUES (:user_id, CAST(:profile_json AS jsonb), now())
                ON CONFLICT (user_id) DO UPDATE
                SET profile_json = EXCLUDED.profile_json, updated_at = now()
                """
            ),
            {"user_id": user_id, "profile_json": json.dumps(body)},
        )
        db.commit()
