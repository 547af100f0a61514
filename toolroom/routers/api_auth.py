from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Header, HTTPException, status

from ..core.config import settings
from ..core.security import TokenError, issue_tokens, refresh_tokens
from ..schemas.auth import RefreshRequest, TokenRequest, TokenResponse

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = logging.getLogger("toolroom.auth")


@router.post("/token", response_model=TokenResponse, summary="Exchange the API key for device tokens")
async def exchange_token(
    payload: TokenRequest,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    configured_key = settings.API_KEY.strip()
    if not configured_key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="API key authentication is disabled")
    provided = (payload.api_key or x_api_key or "").strip()
    if not hmac.compare_digest(provided, configured_key):
        logger.warning("auth.token_rejected", extra={"extra_data": {"subject": payload.subject}})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    pair = issue_tokens(payload.subject, role=payload.role, name=payload.name)
    logger.info("auth.token_issued", extra={"extra_data": {"subject": payload.subject, "role": payload.role}})
    return pair


@router.post("/refresh", response_model=TokenResponse, summary="Re-issue tokens from a refresh token")
async def refresh(payload: RefreshRequest):
    try:
        return refresh_tokens(payload.refresh_token)
    except TokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
