from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import Field, field_validator

from .base import DocumentModel

CONSUMABLES_COLLECTION = "consumables"
CONSUMABLE_TRANSACTIONS_COLLECTION = "consumable_transactions"

ConsumableAction = Literal["usage", "restock", "adjustment"]


class StockLevel(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW = "low"
    NORMAL = "normal"
    OVERSTOCKED = "overstocked"


class Consumable(DocumentModel):
    unique_id: str = ""
    name: str = ""
    category: str = ""
    brand: str = ""
    unit: str = "pieces"
    current_quantity: float = 0
    min_quantity: float = 0
    max_quantity: float = 100
    unit_price: float = 0
    sku: str | None = None
    qr_payload: str = ""
    notes: str | None = None
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_low_stock(self) -> bool:
        return self.current_quantity <= self.min_quantity

    @property
    def is_out_of_stock(self) -> bool:
        return self.current_quantity <= 0

    @property
    def is_overstocked(self) -> bool:
        return self.current_quantity >= self.max_quantity

    @property
    def stock_percentage(self) -> float:
        if self.max_quantity <= 0:
            return 0.0
        return max(0.0, min(100.0, self.current_quantity / self.max_quantity * 100))

    @property
    def stock_level(self) -> StockLevel:
        if self.is_out_of_stock:
            return StockLevel.OUT_OF_STOCK
        if self.is_low_stock:
            return StockLevel.LOW
        if self.is_overstocked:
            return StockLevel.OVERSTOCKED
        return StockLevel.NORMAL

    @property
    def total_value(self) -> float:
        return self.current_quantity * self.unit_price


class ConsumableTransaction(DocumentModel):
    """One quantity change, stored in ``consumable_transactions``.

    ``quantity_change`` is signed: negative for usage, positive for restock.
    ``used_by``, ``approved_by`` and ``assigned_to`` are staff document ids.
    """

    consumable_id: str = ""
    consumable_unique_id: str = ""
    action: ConsumableAction = "adjustment"
    quantity_before: float = 0
    quantity_change: float = 0
    quantity_after: float = 0
    used_by: str | None = None
    approved_by: str | None = None
    assigned_to: str | None = None
    recorded_by: str | None = None
    project_name: str | None = None
    batch_id: str | None = None
    notes: str | None = None
    timestamp: datetime | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _known_action(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() in ("usage", "restock", "adjustment"):
            return value.lower()
        return "adjustment"

    @property
    def is_usage(self) -> bool:
        return self.quantity_change < 0

    @property
    def is_restock(self) -> bool:
        return self.quantity_change > 0
