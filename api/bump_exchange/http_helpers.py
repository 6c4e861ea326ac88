from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .schemas import normalize_category
from .services.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(model: type[ModelT], payload: Any) -> ModelT:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        message = str(first.get("msg") or "invalid value").removeprefix("Value error, ")
        raise ValidationError(f"Invalid {field}: {message}") from exc


def validate_session_id(session_id: str | None) -> str:
    value = (session_id or "").strip()
    if not value:
        raise ValidationError("Session ID required")
    if len(value) > 128:
        raise ValidationError("Session ID too long")
    return value


def validate_token(token: str | None) -> str:
    value = (token or "").strip()
    if not value:
        raise ValidationError("Token required")
    return value


def validate_sharing_category(value: str | None) -> str:
    try:
        return normalize_category(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def get_client_ip(request: Request) -> str | None:
    xff = request.headers.get("x-forwarded-for", "").strip()
    if xff:
        return xff.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return None
