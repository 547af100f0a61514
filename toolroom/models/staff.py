from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from .base import DocumentModel

StaffRole = Literal["admin", "supervisor", "worker"]

STAFF_COLLECTION = "staff"


class Staff(DocumentModel):
    job_code: str = ""
    full_name: str = ""
    email: str = ""
    role: StaffRole = "worker"
    team_id: str | None = None
    is_active: bool = True
    assigned_tool_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _known_role(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() in ("admin", "supervisor", "worker"):
            return value.lower()
        return "worker"

    @property
    def display_name(self) -> str:
        if self.job_code:
            return f"{self.full_name} ({self.job_code})"
        return self.full_name
