"""Bearer tokens for kiosks and handheld scanners.

A token says who the device acts for (``sub``) and how far it may go
(``role``). Access tokens are short lived; a refresh token re-issues a pair
with the same subject and role, so a role can never be raised by refreshing.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from .config import settings

ALGORITHM = "HS256"
AUDIENCE = "toolroom-clients"
ISSUER = "toolroom"

Role = Literal["admin", "supervisor", "worker"]
TokenKind = Literal["access", "refresh"]

ROLE_RANK: dict[str, int] = {"worker": 0, "supervisor": 1, "admin": 2}


def role_allows(role: str | None, required: str) -> bool:
    """Admins may do what supervisors may do, supervisors what workers may do."""
    return ROLE_RANK.get(role or "", -1) >= ROLE_RANK[required]


class TokenError(ValueError):
    """Raised for tokens that are malformed, expired or of the wrong kind."""


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    role: Role


class TokenClaims(BaseModel):
    sub: str
    exp: datetime
    iat: datetime
    typ: TokenKind
    aud: str
    iss: str
    role: Role = "worker"
    name: str | None = None


def _sign(claims: dict[str, Any], kind: TokenKind, lifetime: timedelta) -> str:
    issued = datetime.now(tz=timezone.utc)
    body = dict(
        claims,
        typ=kind,
        aud=AUDIENCE,
        iss=ISSUER,
        iat=int(issued.timestamp()),
        exp=int((issued + lifetime).timestamp()),
    )
    return jwt.encode(body, settings.JWT_SECRET, algorithm=ALGORITHM)


def issue_tokens(subject: str, role: Role = "worker", name: str | None = None) -> TokenPair:
    claims: dict[str, Any] = {"sub": subject, "role": role}
    if name:
        claims["name"] = name
    access_lifetime = timedelta(minutes=settings.JWT_ACCESS_TTL_MIN)
    return TokenPair(
        access_token=_sign(claims, "access", access_lifetime),
        refresh_token=_sign(claims, "refresh", timedelta(days=settings.JWT_REFRESH_TTL_DAYS)),
        expires_in=int(access_lifetime.total_seconds()),
        role=role,
    )


def read_token(token: str, kind: TokenKind = "access") -> TokenClaims:
    try:
        raw = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM], audience=AUDIENCE, issuer=ISSUER)
        claims = TokenClaims.model_validate(raw)
    except (JWTError, ValidationError) as exc:
        raise TokenError("Invalid token") from exc
    if claims.typ != kind:
        raise TokenError(f"Expected an {kind} token" if kind == "access" else f"Expected a {kind} token")
    return claims


def refresh_tokens(refresh_token: str) -> TokenPair:
    claims = read_token(refresh_token, kind="refresh")
    return issue_tokens(claims.sub, role=claims.role, name=claims.name)
