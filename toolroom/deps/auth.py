from __future__ import annotations

import hmac
from typing import Callable

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param

from ..core.config import settings
from ..core.security import Role, TokenError, read_token, role_allows
from ..middlewares import principal_ctx_var


class AuthContext:
    def __init__(self, *, subject: str, scheme: str, role: Role, name: str | None = None) -> None:
        self.subject = subject
        self.scheme = scheme
        self.role = role
        self.name = name

    def allows(self, required: Role) -> bool:
        return role_allows(self.role, required)


def _unauthorized(detail: str = "Unauthorized") -> None:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _set_principal(request: Request, principal: str, role: Role) -> None:
    principal_ctx_var.set(principal)
    request.state.principal = principal
    request.state.role = role


async def require_principal(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> AuthContext:
    """Identify the caller from an API key or a bearer JWT.

    The API key grants ``admin``. A JWT carries its own ``role`` claim. When
    no API key is configured and no token is sent the caller gets
    ``OPEN_ACCESS_ROLE``.
    """

    api_key = settings.API_KEY
    provided_key = (x_api_key or "").strip()
    if api_key and provided_key and hmac.compare_digest(api_key, provided_key):
        _set_principal(request, "api-key", "admin")
        return AuthContext(subject="api-key", scheme="api_key", role="admin")

    if authorization:
        scheme, credentials = get_authorization_scheme_param(authorization)
        if scheme.lower() == "bearer" and credentials:
            try:
                payload = read_token(credentials)
            except TokenError as exc:
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
            subject = f"jwt:{payload.sub}"
            _set_principal(request, subject, payload.role)
            request.state.token_payload = payload
            return AuthContext(subject=subject, scheme="jwt", role=payload.role, name=payload.name)

    if not api_key and not authorization:
        _set_principal(request, "anonymous", settings.OPEN_ACCESS_ROLE)
        return AuthContext(subject="anonymous", scheme="open", role=settings.OPEN_ACCESS_ROLE)

    if provided_key:
        _unauthorized("Invalid API key")
    _unauthorized("Authorization required")


def require_role(required: Role) -> Callable[..., object]:
    async def _check(ctx: AuthContext = Depends(require_principal)) -> AuthContext:
        if not ctx.allows(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"The {required} role is required",
            )
        return ctx

    return _check


require_worker = require_role("worker")
require_supervisor = require_role("supervisor")
require_admin = require_role("admin")
