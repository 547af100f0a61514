from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from .base import DocumentModel

ToolStatus = Literal["available", "checked_out"]

TOOLS_COLLECTION = "tools"
HOLDER_PATH_PREFIX = "staff/"


class Tool(DocumentModel):
    unique_id: str = ""
    name: str = ""
    brand: str = ""
    model: str = ""
    num: str = ""
    images: list[str] = Field(default_factory=list)
    qr_payload: str = ""
    status: ToolStatus = "available"
    current_holder: str | None = None
    last_assigned_to_name: str | None = None
    last_assigned_to_job_code: str | None = None
    last_assigned_by_name: str | None = None
    last_assigned_at: datetime | None = None
    last_checkin_at: datetime | None = None
    last_checkin_by_name: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("num", mode="before")
    @classmethod
    def _num_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: Any) -> Any:
        if value not in ("available", "checked_out"):
            return "available"
        return value

    @field_validator("current_holder", mode="before")
    @classmethod
    def _holder_id(cls, value: Any) -> Any:
        # Older records stored a full document path.
        if isinstance(value, str) and value.startswith(HOLDER_PATH_PREFIX):
            return value[len(HOLDER_PATH_PREFIX):]
        return value or None

    @property
    def is_available(self) -> bool:
        return self.status == "available"

    @property
    def is_checked_out(self) -> bool:
        return self.status == "checked_out"

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.brand, self.model, self.name) if part).strip()
