import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..auth.deps import get_current_user
from ..config import RL_EXCHANGE_HIT_LIMIT, RL_EXCHANGE_PREVIEW_LIMIT, RL_WINDOW_SECONDS
from ..deps import ExchangeServices, get_services, rate_limit_dependency
from ..http_helpers import get_client_ip, parse_payload, validate_session_id, validate_sharing_category, validate_token
from ..schemas import HitRequest, InitiateRequest, RespondRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exchange")

RL_EXCHANGE_HIT = rate_limit_dependency("exchange_hit", RL_EXCHANGE_HIT_LIMIT, RL_WINDOW_SECONDS)
RL_EXCHANGE_PREVIEW = rate_limit_dependency("exchange_preview", RL_EXCHANGE_PREVIEW_LIMIT, RL_WINDOW_SECONDS)


@router.post("/hit")
def exchange_hit(
    payload: dict[str, Any],
    request: Request,
    _: None = RL_EXCHANGE_HIT,
    current_user: dict[str, Any] = Depends(get_current_user),
    services: ExchangeServices = Depends(get_services),
) -> dict[str, Any]:
    hit = parse_payload(HitRequest, payload)
    outcome = services.ingestion.ingest_hit(hit, current_user["id"], get_client_ip(request))
    if not outcome["matched"]:
        return {"success": True, "matched": False, "message": "Waiting for match"}
    return {"success": True, **outcome}


@router.get("/status/{session_id}")
def exchange_status(
    session_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    services: ExchangeServices = Depends(get_services),
) -> dict[str, Any]:
    status = services.discovery.poll_status(validate_session_id(session_id))
    return {"success": True, **status}


@router.get("/pair/{token}")
def exchange_pair(
    token: str,
    sharing_category: str | None = None,
    current_user: dict[str, Any] = Depends(get_current_user),
    services: ExchangeServices = Depends(get_services),
) -> dict[str, Any]:
    paired = services.qr.get_paired_profile(
        validate_token(token),
        current_user["id"],
        validate_sharing_category(sharing_category),
    )
    return {"success": True, "profile": paired.profile, "matched_at": paired.matched_at}


@router.post("/pair/{token}")
def exchange_respond(
    token: str,
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(get_current_user),
    services: ExchangeServices = Depends(get_services),
) -> dict[str, Any]:
    body = parse_payload(RespondRequest, payload)
    profile = services.qr.respond(validate_token(token), current_user["id"], body.accept)
    if profile is None:
        return {"success": True, "message": "Exchange rejected"}
    return {"success": True, "profile": profile, "message": "Exchange accepted"}


@router.get("/preview/{token}")
def exchange_preview(
    token: str,
    _: None = RL_EXCHANGE_PREVIEW,
    services: ExchangeServices = Depends(get_services),
) -> dict[str, Any]:
    preview, category = services.qr.get_preview(validate_token(token))
    return {"success": True, "profile": preview, "sharing_category": category}


@router.post("/initiate")
def exchange_initiate(
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(get_current_user),
    services: ExchangeServices = Depends(get_services),
) -> dict[str, Any]:
    body = parse_payload(InitiateRequest, payload)
    match = services.qr.initiate(body.session_id, current_user["id"], body.sharing_category or "All")
    return {"success": True, "token": match.token}
