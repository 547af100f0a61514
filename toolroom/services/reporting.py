from __future__ import annotations

from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List

from ..models.consumable import Consumable
from ..models.ledger import LedgerEntry, sort_newest_first

TWOPLACES = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return Decimal("0")


def _quantize_currency(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP) if value else Decimal("0.00")


def count_by_action(entries: Iterable[LedgerEntry]) -> Dict[str, int]:
    totals = {"total": 0, "checkouts": 0, "checkins": 0}
    for entry in entries:
        totals["total"] += 1
        if entry.action == "checkout":
            totals["checkouts"] += 1
        elif entry.action == "checkin":
            totals["checkins"] += 1
    return totals


def staff_activity(entries: Iterable[LedgerEntry]) -> List[Dict[str, Any]]:
    """Per staff member counts, most active first (ties by name)."""

    grouped: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        staff_uid = entry.staff_uid or "unknown"
        row = grouped.get(staff_uid)
        if row is None:
            row = grouped[staff_uid] = {
                "staff_uid": staff_uid,
                "staff_name": entry.metadata.staff_name,
                "job_code": entry.metadata.staff_job_code,
                "checkouts": 0,
                "checkins": 0,
                "total": 0,
            }
        row["total"] += 1
        if entry.action == "checkout":
            row["checkouts"] += 1
        else:
            row["checkins"] += 1
    return sorted(grouped.values(), key=lambda row: (-row["total"], row["staff_name"], row["staff_uid"]))


def most_active_staff(entries: Iterable[LedgerEntry], limit: int = 5) -> List[Dict[str, Any]]:
    return staff_activity(entries)[: max(limit, 0)]


def batch_operations(entries: Iterable[LedgerEntry]) -> List[Dict[str, Any]]:
    """Distinct batch ids with their entry counts, newest batch first."""

    batches: Dict[str, Dict[str, Any]] = {}
    actions: Dict[str, set[str]] = defaultdict(set)
    for entry in sort_newest_first(entries):
        if not entry.batch_id:
            continue
        actions[entry.batch_id].add(entry.action)
        batch = batches.get(entry.batch_id)
        if batch is None:
            batches[entry.batch_id] = {
                "batch_id": entry.batch_id,
                "count": 1,
                "latest_at": entry.timestamp,
                "admin_name": entry.metadata.admin_name,
            }
        else:
            batch["count"] += 1
    rows = list(batches.values())
    for row in rows:
        row["actions"] = sorted(actions[row["batch_id"]])
    return rows


def summarize_ledger(entries: Iterable[LedgerEntry], *, top: int = 5) -> Dict[str, Any]:
    items = list(entries)
    timestamps = [entry.timestamp for entry in items if entry.timestamp is not None]
    return {
        "counts": count_by_action(items),
        "most_active_staff": most_active_staff(items, limit=top),
        "batches": batch_operations(items),
        "distinct_tools": len({entry.tool_unique_id or entry.tool_id for entry in items}),
        "first_at": min(timestamps) if timestamps else None,
        "last_at": max(timestamps) if timestamps else None,
    }


def _stock_row(item: Consumable) -> Dict[str, Any]:
    return {
        "unique_id": item.unique_id,
        "name": item.name,
        "unit": item.unit,
        "current_quantity": item.current_quantity,
        "min_quantity": item.min_quantity,
        "max_quantity": item.max_quantity,
        "stock_level": item.stock_level.value,
        "stock_percentage": round(item.stock_percentage, 1),
    }


def stock_report(consumables: Iterable[Consumable]) -> Dict[str, Any]:
    """Low/out/over stock lists across active consumables.

    Out-of-stock items are also low stock by definition and appear in both
    lists.
    """

    active = sorted((item for item in consumables if item.is_active), key=lambda item: item.unique_id)
    low = [_stock_row(item) for item in active if item.is_low_stock]
    out = [_stock_row(item) for item in active if item.is_out_of_stock]
    over = [_stock_row(item) for item in active if item.is_overstocked]
    total_value = sum((_to_decimal(item.current_quantity) * _to_decimal(item.unit_price) for item in active), Decimal("0"))
    return {
        "active": len(active),
        "low_stock": low,
        "out_of_stock": out,
        "overstocked": over,
        "counts": {
            "low_stock": len(low),
            "out_of_stock": len(out),
            "overstocked": len(over),
        },
        "total_value": _quantize_currency(total_value),
    }
