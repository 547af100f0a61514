from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class ActionCounts(BaseModel):
    total: int
    checkouts: int
    checkins: int


class StaffActivityOut(BaseModel):
    staff_uid: str
    staff_name: str
    job_code: str
    checkouts: int
    checkins: int
    total: int


class BatchSummaryOut(BaseModel):
    batch_id: str
    count: int
    actions: List[str]
    latest_at: Optional[datetime] = None
    admin_name: Optional[str] = None


class TransactionReportOut(BaseModel):
    start: datetime
    end: datetime
    counts: ActionCounts
    most_active_staff: List[StaffActivityOut]
    batches: List[BatchSummaryOut]
    distinct_tools: int
    first_at: Optional[datetime] = None
    last_at: Optional[datetime] = None


class StockCounts(BaseModel):
    low_stock: int
    out_of_stock: int
    overstocked: int


class StockRowOut(BaseModel):
    unique_id: str
    name: str
    unit: str
    current_quantity: float
    min_quantity: float
    max_quantity: float
    stock_level: str
    stock_percentage: float


class StockReportOut(BaseModel):
    active: int
    low_stock: List[StockRowOut]
    out_of_stock: List[StockRowOut]
    overstocked: List[StockRowOut]
    counts: StockCounts
    total_value: Decimal


class IdCacheStatsOut(BaseModel):
    tools: int
    staff: int


class PurgeOut(BaseModel):
    since: datetime
    before: datetime
    deleted: int


__all__ = [
    "ActionCounts",
    "BatchSummaryOut",
    "IdCacheStatsOut",
    "PurgeOut",
    "StaffActivityOut",
    "StockReportOut",
    "TransactionReportOut",
]
