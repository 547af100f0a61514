from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UsageRequest(BaseModel):
    quantity: float = Field(..., gt=0)
    staff_job_code: str = Field(..., min_length=1)
    assigned_to_job_code: Optional[str] = None
    project_name: Optional[str] = None
    notes: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {"quantity": 2, "staff_job_code": "W001", "project_name": "Line 4 retrofit"}
        }
    }


class RestockRequest(BaseModel):
    quantity: float = Field(..., gt=0)
    approved_by_job_code: Optional[str] = None
    notes: Optional[str] = None


class RestockItem(BaseModel):
    code: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)

    @field_validator("code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("code must not be blank")
        return value


class BatchRestockRequest(BaseModel):
    items: List[RestockItem] = Field(..., min_length=1)
    approved_by_job_code: Optional[str] = None
    notes: Optional[str] = None


class ConsumableTransactionOut(BaseModel):
    id: str
    consumable_id: str
    consumable_unique_id: str
    action: Literal["usage", "restock", "adjustment"]
    quantity_before: float
    quantity_change: float
    quantity_after: float
    used_by: Optional[str] = None
    approved_by: Optional[str] = None
    assigned_to: Optional[str] = None
    recorded_by: Optional[str] = None
    project_name: Optional[str] = None
    batch_id: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
