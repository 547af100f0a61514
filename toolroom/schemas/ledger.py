from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.consumable import StockLevel


class CheckOutRequest(BaseModel):
    staff_job_code: str = Field(..., min_length=1)
    notes: Optional[str] = None
    admin_name: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {"staff_job_code": "W001", "notes": "Bay 3", "admin_name": "Dana"}
        }
    }


class CheckInRequest(BaseModel):
    notes: Optional[str] = None
    admin_name: Optional[str] = None


class BatchCheckOutRequest(BaseModel):
    tool_ids: List[str] = Field(..., min_length=1)
    staff_job_code: str = Field(..., min_length=1)
    notes: Optional[str] = None
    admin_name: Optional[str] = None

    @field_validator("tool_ids")
    @classmethod
    def strip_blank_ids(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("tool_ids must contain at least one code")
        return cleaned


class BatchCheckInRequest(BaseModel):
    tool_ids: List[str] = Field(..., min_length=1)
    notes: Optional[str] = None
    admin_name: Optional[str] = None

    @field_validator("tool_ids")
    @classmethod
    def strip_blank_ids(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("tool_ids must contain at least one code")
        return cleaned


class ScanRequest(BaseModel):
    payload: str = Field(..., min_length=1)


class LedgerMetadataOut(BaseModel):
    staff_name: str
    staff_job_code: str
    tool_name: str
    tool_unique_id: str
    tool_brand: str
    tool_model: str
    admin_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerEntryOut(BaseModel):
    id: str
    action: Literal["checkout", "checkin"]
    tool_id: str
    tool_unique_id: str
    by_staff_uid: str
    assigned_to_staff_uid: Optional[str] = None
    supervisor_id: Optional[str] = None
    batch_id: Optional[str] = None
    is_batch: bool = False
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: LedgerMetadataOut

    model_config = ConfigDict(from_attributes=True)


class BatchResultOut(BaseModel):
    batch_id: str
    results: Dict[str, bool]
    errors: List[str]
    succeeded: int
    failed: int
    all_succeeded: bool

    model_config = ConfigDict(from_attributes=True)


class ToolOut(BaseModel):
    id: str
    unique_id: str
    name: str
    brand: str
    model: str
    num: str
    display_name: str
    status: Literal["available", "checked_out"]
    current_holder: Optional[str] = None
    last_assigned_to_name: Optional[str] = None
    last_assigned_to_job_code: Optional[str] = None
    last_assigned_by_name: Optional[str] = None
    last_assigned_at: Optional[datetime] = None
    last_checkin_at: Optional[datetime] = None
    last_checkin_by_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StaffOut(BaseModel):
    id: str
    job_code: str
    full_name: str
    role: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ToolStatusOut(BaseModel):
    tool: ToolOut
    assigned_staff: Optional[StaffOut] = None
    assigned_staff_job_code: Optional[str] = None
    can_check_out: bool
    can_check_in: bool

    model_config = ConfigDict(from_attributes=True)


class ConsumableOut(BaseModel):
    id: str
    unique_id: str
    name: str
    category: str
    unit: str
    current_quantity: float
    min_quantity: float
    max_quantity: float
    is_active: bool
    stock_level: StockLevel
    stock_percentage: float

    model_config = ConfigDict(from_attributes=True)


class ScanOut(BaseModel):
    kind: Literal["tool", "consumable", "unknown"]
    code: str
    found: bool
    tool_status: Optional[ToolStatusOut] = None
    consumable: Optional[ConsumableOut] = None
