"""Consumable stock and its usage ledger.

A quantity change and the ``consumable_transactions`` record describing it
commit in one store transaction, so ``currentQuantity`` always equals the
``quantityAfter`` of the newest record for that consumable. Stock never
goes below zero.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..core.codes import code_aliases, normalize_code
from ..core.config import AppSettings, settings
from ..core.errors import InsufficientQuantityError, InvalidQuantityError, LedgerError, NotFoundError, StoreError
from ..models.consumable import (
    CONSUMABLE_TRANSACTIONS_COLLECTION,
    CONSUMABLES_COLLECTION,
    Consumable,
    ConsumableAction,
    ConsumableTransaction,
)
from ..models.ledger import new_batch_id, new_entry_id, sort_newest_first
from ..store.base import SERVER_TIMESTAMP, DocumentStore, Transaction
from .batches import BatchResult
from .id_mapping import IdMappingCache

logger = logging.getLogger("toolroom.consumables")


def _merge_items(items: Iterable[Tuple[str, float]]) -> Dict[str, float]:
    """Sum quantities of repeated codes, keeping first-seen order."""
    merged: Dict[str, float] = {}
    for raw_code, quantity in items:
        code = normalize_code(raw_code) or ""
        merged[code] = merged.get(code, 0) + quantity
    return merged


class ConsumableLedger:
    def __init__(
        self,
        store: DocumentStore,
        id_cache: IdMappingCache,
        *,
        clock: Callable[[], datetime] | None = None,
        config: AppSettings | None = None,
    ) -> None:
        self.store = store
        self.id_cache = id_cache
        self.clock = clock or store.clock
        self.config = config or settings

    async def find(self, code: str | None) -> Optional[Consumable]:
        for alias in code_aliases(code):
            matches = await self.store.query_equal(CONSUMABLES_COLLECTION, "uniqueId", alias, limit=1)
            if matches:
                return Consumable.from_snapshot(matches[0])
        return None

    async def list_all(self) -> List[Consumable]:
        snapshots = await self.store.list_documents(CONSUMABLES_COLLECTION)
        return [Consumable.from_snapshot(snapshot) for snapshot in snapshots]

    async def _require(self, code: str) -> Consumable:
        consumable = await self.find(code)
        if consumable is None:
            raise NotFoundError(f"Consumable {code!r} not found", details={"consumable_unique_id": code})
        return consumable

    async def _staff_id(self, job_code: str | None) -> Optional[str]:
        if not job_code:
            return None
        staff_id = await self.id_cache.resolve_staff_id(job_code)
        if not staff_id:
            raise NotFoundError(f"Staff member {job_code!r} not found", details={"job_code": job_code})
        return staff_id

    async def adjust_quantity(
        self,
        code: str,
        change: float,
        action: ConsumableAction,
        *,
        used_by: str | None = None,
        approved_by: str | None = None,
        assigned_to: str | None = None,
        recorded_by: str | None = None,
        project_name: str | None = None,
        notes: str | None = None,
        batch_id: str | None = None,
    ) -> ConsumableTransaction:
        """Apply a signed quantity change and record it.

        Staff arguments are document ids. Raises ``InsufficientQuantityError``
        when the change would take stock below zero.
        """

        if change == 0:
            raise InvalidQuantityError("Quantity change must not be zero")
        consumable = await self._require(code)
        now = self.clock()
        record_id = new_entry_id(now)

        async def _apply(tx: Transaction) -> ConsumableTransaction:
            snapshot = await tx.get(CONSUMABLES_COLLECTION, consumable.id)
            if snapshot is None:
                raise NotFoundError(f"Consumable {code!r} not found", details={"consumable_id": consumable.id})
            current = Consumable.from_snapshot(snapshot)
            if not current.is_active:
                raise NotFoundError(f"Consumable {current.unique_id} is inactive", details={"consumable_id": current.id})

            before = current.current_quantity
            after = before + change
            if after < 0:
                raise InsufficientQuantityError(
                    f"Insufficient quantity of {current.unique_id}: {before:g} {current.unit} available",
                    details={"available": before, "requested": -change, "unit": current.unit},
                )

            record = ConsumableTransaction(
                id=record_id,
                consumable_id=current.id,
                consumable_unique_id=current.unique_id,
                action=action,
                quantity_before=before,
                quantity_change=change,
                quantity_after=after,
                used_by=used_by,
                approved_by=approved_by,
                assigned_to=assigned_to,
                recorded_by=recorded_by,
                project_name=project_name,
                batch_id=batch_id,
                notes=notes,
                timestamp=now,
            )
            tx.update(CONSUMABLES_COLLECTION, current.id, {"currentQuantity": after, "updatedAt": SERVER_TIMESTAMP})
            tx.set(CONSUMABLE_TRANSACTIONS_COLLECTION, record_id, {**record.to_document(), "createdAt": SERVER_TIMESTAMP})
            return record

        record = await self.store.run_transaction(_apply, max_attempts=self.config.TRANSACTION_MAX_ATTEMPTS)
        logger.info(
            "consumable.%s",
            action,
            extra={
                "extra_data": {
                    "consumable": record.consumable_unique_id,
                    "change": change,
                    "quantity_after": record.quantity_after,
                    "batch_id": batch_id,
                }
            },
        )
        return record

    async def record_usage(
        self,
        code: str,
        quantity: float,
        staff_job_code: str,
        *,
        assigned_to_job_code: str | None = None,
        project_name: str | None = None,
        notes: str | None = None,
        recorded_by: str | None = None,
    ) -> ConsumableTransaction:
        if quantity <= 0:
            raise InvalidQuantityError("Usage quantity must be positive", details={"quantity": quantity})
        used_by = await self._staff_id(staff_job_code)
        if used_by is None:
            raise NotFoundError("A staff job code is required to record usage")
        return await self.adjust_quantity(
            code,
            -quantity,
            "usage",
            used_by=used_by,
            assigned_to=await self._staff_id(assigned_to_job_code),
            recorded_by=recorded_by,
            project_name=project_name,
            notes=notes,
        )

    async def record_restock(
        self,
        code: str,
        quantity: float,
        approved_by_job_code: str | None = None,
        *,
        notes: str | None = None,
        recorded_by: str | None = None,
        batch_id: str | None = None,
    ) -> ConsumableTransaction:
        if quantity <= 0:
            raise InvalidQuantityError("Restock quantity must be positive", details={"quantity": quantity})
        return await self.adjust_quantity(
            code,
            quantity,
            "restock",
            approved_by=await self._staff_id(approved_by_job_code),
            recorded_by=recorded_by,
            notes=notes,
            batch_id=batch_id,
        )

    async def batch_restock(
        self,
        items: Iterable[Tuple[str, float]],
        approved_by_job_code: str | None = None,
        *,
        notes: str | None = None,
        recorded_by: str | None = None,
    ) -> BatchResult:
        """Restock each ``(code, quantity)`` in turn under one batch id.

        Repeated codes are merged into one restock of the summed quantity.
        """

        result = BatchResult(batch_id=new_batch_id(self.clock()))
        for code, quantity in _merge_items(items).items():
            try:
                await self.record_restock(
                    code,
                    quantity,
                    approved_by_job_code,
                    notes=notes,
                    recorded_by=recorded_by,
                    batch_id=result.batch_id,
                )
            except (LedgerError, StoreError) as exc:
                result.record(code, exc)
            else:
                result.record(code)
        logger.info(
            "batch.completed",
            extra={
                "extra_data": {
                    "action": "restock",
                    "batch_id": result.batch_id,
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                }
            },
        )
        return result

    async def _records(self, field_name: str, value: str, limit: int | None) -> List[ConsumableTransaction]:
        snapshots = await self.store.query_equal(CONSUMABLE_TRANSACTIONS_COLLECTION, field_name, value)
        ordered = sort_newest_first(ConsumableTransaction.from_snapshot(snapshot) for snapshot in snapshots)
        return ordered if limit is None else ordered[: max(limit, 0)]

    async def history_for_consumable(self, code: str, limit: int | None = None) -> List[ConsumableTransaction]:
        consumable = await self.find(code)
        if consumable is None:
            return []
        return await self._records("consumableId", consumable.id, limit)

    async def history_for_staff(self, job_code: str, limit: int | None = None) -> List[ConsumableTransaction]:
        staff_id = await self.id_cache.resolve_staff_id(job_code)
        if not staff_id:
            return []
        return await self._records("usedBy", staff_id, limit)
