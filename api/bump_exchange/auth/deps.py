"""
Identity dependency for the exchange routes.

The caller is identified by an HS256 session token, read from the
``exchange_session`` cookie (web) or an ``Authorization: Bearer`` header
(native clients). The token subject is the user id. Profiles are looked up
separately, so a valid token is all this layer checks.
"""

import logging
import uuid
from typing import Any

from fastapi import Cookie, Header, HTTPException
from pydantic import BaseModel

from ..config import DEV_MODE
from .security import decode_access_token

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "exchange_session"


class AuthErrorDetail(BaseModel):
    message: str = "unauthorized"
    reason: str
    trace_id: str


class AuthError(Exception):
    def __init__(self, reason: str, detail: str = "unauthorized"):
        self.reason = reason
        self.detail = detail
        self.trace_id = str(uuid.uuid4())
        super().__init__(detail)


def _unauthorized(message: str, reason: str, trace_id: str) -> HTTPException:
    if DEV_MODE:
        detail: dict[str, Any] = AuthErrorDetail(message=message, reason=reason, trace_id=trace_id).model_dump()
    else:
        detail = {"message": message, "trace_id": trace_id}
    return HTTPException(status_code=401, detail=detail)


def _log_auth_failure(reason: str, trace_id: str, auth_source: str, token_prefix: str | None = None) -> None:
    logger.warning("[auth] failure reason=%s source=%s token=%s trace_id=%s", reason, auth_source, token_prefix, trace_id)


def _extract_bearer(authorization: str | None) -> str:
    if not authorization:
        raise AuthError(reason="missing_token", detail="Missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError(reason="malformed_token", detail="Invalid Authorization header")
    return parts[1].strip()


def _validate_token(token: str, trace_id: str, auth_source: str) -> dict[str, Any]:
    token_prefix = token[:8] + "..." if len(token) > 8 else token
    try:
        payload = decode_access_token(token)
    except HTTPException as e:
        if e.status_code != 401:
            raise
        reason = "token_expired" if "expired" in str(e.detail).lower() else "signature_invalid"
        _log_auth_failure(reason, trace_id, auth_source, token_prefix)
        raise _unauthorized("unauthorized", reason, trace_id) from e

    user_id = str(payload.get("sub") or "")
    if not user_id:
        _log_auth_failure("token_missing_subject", trace_id, auth_source, token_prefix)
        raise _unauthorized("unauthorized", "token_missing_subject", trace_id)

    logger.debug("[auth] %s token valid for user_id=%s", auth_source, user_id)
    return {"id": user_id}


def get_current_user(
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """Cookie first, then bearer."""
    trace_id = str(uuid.uuid4())

    if session_token:
        return _validate_token(session_token, trace_id, "cookie")

    if authorization:
        try:
            token = _extract_bearer(authorization)
        except AuthError as e:
            _log_auth_failure(e.reason, e.trace_id, "bearer")
            raise _unauthorized(e.detail, e.reason, e.trace_id) from e
        return _validate_token(token, trace_id, "bearer")

    _log_auth_failure("missing_token", trace_id, "none")
    raise _unauthorized("Authentication required", "missing_token", trace_id)
