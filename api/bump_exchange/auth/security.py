from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException

from ..config import ACCESS_TOKEN_TTL_MINUTES, JWT_SECRET

ALGORITHM = "HS256"


def _secret() -> str:
    if not JWT_SECRET:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return JWT_SECRET


def create_access_token(user_id: str, ttl_minutes: int | None = None, extra: dict[str, Any] | None = None) -> str:
    """Session token for the identity collaborator. Issued by the accounts service in production."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ttl_minutes or ACCESS_TOKEN_TTL_MINUTES)
    payload: dict[str, Any] = dict(extra or {})
    payload.update({"sub": user_id, "iat": int(now.timestamp()), "exp": int(exp.timestamp())})
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    secret = _secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        if not isinstance(payload, dict):
            raise HTTPException(status_code=401, detail="Invalid token")
        return payload
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
