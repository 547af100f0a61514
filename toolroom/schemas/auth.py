from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ..core.security import Role


class TokenRequest(BaseModel):
    """A device asks for tokens; whoever holds the API key chooses the role."""

    api_key: str = Field(..., alias="apiKey", min_length=1)
    subject: str = Field(default="api-client", min_length=1, max_length=120)
    role: Role = "admin"
    name: Optional[str] = Field(default=None, max_length=120)

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {"apiKey": "<key>", "subject": "crib-kiosk-2", "role": "supervisor", "name": "Cleo Park"}
        },
    }


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    role: Role


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)
