"""Tool check-out and check-in.

Each operation resolves readable codes through the id cache, flips the tool
and staff documents in one optimistic store transaction, and then appends
a ledger entry to the history buckets. The state change is authoritative:
a failed history append is logged by the ledger writer and does not undo
or fail the operation.

``perform_*`` methods raise the ``LedgerError`` family; ``check_out``,
``check_in`` and the batch variants convert anticipated failures into
booleans and error strings for scan screens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from ..core.codes import ScanTarget, parse_scan_payload
from ..core.config import AppSettings, settings
from ..core.errors import AlreadyAvailableError, AlreadyCheckedOutError, LedgerError, NotFoundError, StoreError
from ..models.consumable import Consumable
from ..models.ledger import (
    UNKNOWN_JOB_CODE,
    UNKNOWN_STAFF_NAME,
    LedgerAction,
    LedgerEntry,
    LedgerMetadata,
    batch_notes,
    new_batch_id,
    new_entry_id,
)
from ..models.staff import STAFF_COLLECTION, Staff
from ..models.tool import HOLDER_PATH_PREFIX, TOOLS_COLLECTION, Tool
from ..store.base import SERVER_TIMESTAMP, ArrayRemove, ArrayUnion, DocumentStore, Transaction
from .batches import BatchResult, unique_codes
from .consumables import ConsumableLedger
from .history import HistoryQueryEngine
from .id_mapping import IdMappingCache
from .ledger_writer import LedgerWriter

logger = logging.getLogger("toolroom.ledger")


@dataclass
class ToolStatusInfo:
    tool: Tool
    assigned_staff: Optional[Staff] = None
    assigned_staff_job_code: Optional[str] = None

    @property
    def can_check_out(self) -> bool:
        return self.tool.is_available

    @property
    def can_check_in(self) -> bool:
        return self.tool.is_checked_out


@dataclass
class ScanResult:
    target: ScanTarget
    tool_status: Optional[ToolStatusInfo] = None
    consumable: Optional[Consumable] = None

    @property
    def found(self) -> bool:
        return self.tool_status is not None or self.consumable is not None


class TransactionEngine:
    def __init__(
        self,
        store: DocumentStore,
        id_cache: IdMappingCache | None = None,
        *,
        writer: LedgerWriter | None = None,
        history: HistoryQueryEngine | None = None,
        clock: Callable[[], datetime] | None = None,
        config: AppSettings | None = None,
    ) -> None:
        self.store = store
        self.id_cache = id_cache or IdMappingCache(store)
        self.writer = writer or LedgerWriter(store)
        self.clock = clock or store.clock
        self.config = config or settings
        self.history = history or HistoryQueryEngine(
            store,
            clock=self.clock,
            max_range_days=self.config.HISTORY_MAX_RANGE_DAYS,
            read_concurrency=self.config.HISTORY_READ_CONCURRENCY,
        )
        self.consumables = ConsumableLedger(store, self.id_cache, clock=self.clock, config=self.config)

    # ------------------------------------------------------------------
    # Check-out / check-in
    # ------------------------------------------------------------------

    async def _resolve_tool(self, tool_unique_id: str) -> str:
        tool_id = await self.id_cache.resolve_tool_id(tool_unique_id)
        if not tool_id:
            raise NotFoundError(f"Tool {tool_unique_id!r} not found", details={"tool_unique_id": tool_unique_id})
        return tool_id

    async def _resolve_staff(self, job_code: str) -> str:
        staff_id = await self.id_cache.resolve_staff_id(job_code)
        if not staff_id:
            raise NotFoundError(f"Staff member {job_code!r} not found", details={"job_code": job_code})
        return staff_id

    async def perform_check_out(
        self,
        tool_unique_id: str,
        staff_job_code: str,
        notes: str | None = None,
        admin_name: str | None = None,
        batch_id: str | None = None,
        supervisor_id: str | None = None,
    ) -> LedgerEntry:
        tool_id = await self._resolve_tool(tool_unique_id)
        staff_id = await self._resolve_staff(staff_job_code)

        async def _assign(tx: Transaction) -> tuple[Tool, Staff]:
            tool_snapshot = await tx.get(TOOLS_COLLECTION, tool_id)
            if tool_snapshot is None:
                raise NotFoundError(f"Tool {tool_unique_id!r} not found", details={"tool_id": tool_id})
            staff_snapshot = await tx.get(STAFF_COLLECTION, staff_id)
            if staff_snapshot is None:
                raise NotFoundError(f"Staff member {staff_job_code!r} not found", details={"staff_id": staff_id})

            tool = Tool.from_snapshot(tool_snapshot)
            staff = Staff.from_snapshot(staff_snapshot)
            if not tool.is_available:
                raise AlreadyCheckedOutError(
                    f"Tool {tool.unique_id or tool_unique_id} is already checked out",
                    details={"tool_unique_id": tool.unique_id, "current_holder": tool.current_holder},
                )

            tx.update(
                TOOLS_COLLECTION,
                tool_id,
                {
                    "status": "checked_out",
                    "currentHolder": staff_id,
                    "lastAssignedToName": staff.full_name,
                    "lastAssignedToJobCode": staff.job_code,
                    "lastAssignedByName": admin_name or UNKNOWN_STAFF_NAME,
                    "lastAssignedAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                },
            )
            tx.update(
                STAFF_COLLECTION,
                staff_id,
                {
                    "assignedToolIds": ArrayUnion([tool.unique_id or tool_unique_id]),
                    "updatedAt": SERVER_TIMESTAMP,
                },
            )
            return tool, staff

        tool, staff = await self.store.run_transaction(_assign, max_attempts=self.config.TRANSACTION_MAX_ATTEMPTS)

        entry = self._build_entry(
            "checkout",
            tool=tool,
            by_staff_uid=staff_id,
            assigned_to_staff_uid=staff_id,
            staff_name=staff.full_name or UNKNOWN_STAFF_NAME,
            staff_job_code=staff.job_code or UNKNOWN_JOB_CODE,
            notes=notes,
            admin_name=admin_name,
            batch_id=batch_id,
            supervisor_id=supervisor_id,
        )
        await self.writer.append(entry)
        logger.info(
            "tool.checked_out",
            extra={"extra_data": {"tool": entry.tool_unique_id, "staff": staff.job_code, "batch_id": batch_id}},
        )
        return entry

    async def perform_check_in(
        self,
        tool_unique_id: str,
        notes: str | None = None,
        admin_name: str | None = None,
        batch_id: str | None = None,
        supervisor_id: str | None = None,
    ) -> LedgerEntry:
        tool_id = await self._resolve_tool(tool_unique_id)

        async def _release(tx: Transaction) -> tuple[Tool, Optional[Staff], Optional[str]]:
            tool_snapshot = await tx.get(TOOLS_COLLECTION, tool_id)
            if tool_snapshot is None:
                raise NotFoundError(f"Tool {tool_unique_id!r} not found", details={"tool_id": tool_id})
            tool = Tool.from_snapshot(tool_snapshot)
            if not tool.is_checked_out:
                raise AlreadyAvailableError(
                    f"Tool {tool.unique_id or tool_unique_id} is already available",
                    details={"tool_unique_id": tool.unique_id},
                )

            holder: Optional[Staff] = None
            holder_code: Optional[str] = None
            if tool.current_holder:
                holder_code = await self.id_cache.staff_job_code_for(tool.current_holder)
                holder_snapshot = await tx.get(STAFF_COLLECTION, tool.current_holder)
                if holder_snapshot is not None:
                    holder = Staff.from_snapshot(holder_snapshot)

            tx.update(
                TOOLS_COLLECTION,
                tool_id,
                {
                    "status": "available",
                    "currentHolder": None,
                    "lastCheckinAt": SERVER_TIMESTAMP,
                    "lastCheckinByName": admin_name or UNKNOWN_STAFF_NAME,
                    "updatedAt": SERVER_TIMESTAMP,
                },
            )
            if holder is not None:
                tx.update(
                    STAFF_COLLECTION,
                    holder.id,
                    {
                        "assignedToolIds": ArrayRemove([tool.unique_id or tool_unique_id]),
                        "updatedAt": SERVER_TIMESTAMP,
                    },
                )
            return tool, holder, holder_code

        tool, holder, holder_code = await self.store.run_transaction(
            _release, max_attempts=self.config.TRANSACTION_MAX_ATTEMPTS
        )

        if holder is None:
            logger.warning(
                "Tool %s was held by %s, which no longer exists",
                tool.unique_id or tool_unique_id,
                tool.current_holder,
            )
        entry = self._build_entry(
            "checkin",
            tool=tool,
            by_staff_uid=holder.id if holder else UNKNOWN_JOB_CODE,
            assigned_to_staff_uid=holder.id if holder else None,
            staff_name=(holder.full_name if holder else "") or UNKNOWN_STAFF_NAME,
            staff_job_code=(holder.job_code if holder else "") or holder_code or UNKNOWN_JOB_CODE,
            notes=notes,
            admin_name=admin_name,
            batch_id=batch_id,
            supervisor_id=supervisor_id,
        )
        await self.writer.append(entry)
        logger.info(
            "tool.checked_in",
            extra={"extra_data": {"tool": entry.tool_unique_id, "staff": entry.metadata.staff_job_code, "batch_id": batch_id}},
        )
        return entry

    def _build_entry(
        self,
        action: LedgerAction,
        *,
        tool: Tool,
        by_staff_uid: str,
        assigned_to_staff_uid: str | None,
        staff_name: str,
        staff_job_code: str,
        notes: str | None,
        admin_name: str | None,
        batch_id: str | None,
        supervisor_id: str | None,
    ) -> LedgerEntry:
        now = self.clock()
        return LedgerEntry(
            id=new_entry_id(now),
            action=action,
            tool_id=tool.id,
            tool_unique_id=tool.unique_id,
            by_staff_uid=by_staff_uid,
            assigned_to_staff_uid=assigned_to_staff_uid,
            supervisor_id=supervisor_id,
            batch_id=batch_id,
            is_batch=batch_id is not None,
            notes=notes,
            timestamp=now,
            metadata=LedgerMetadata(
                staff_name=staff_name,
                staff_job_code=staff_job_code,
                tool_name=tool.name,
                tool_unique_id=tool.unique_id,
                tool_brand=tool.brand,
                tool_model=tool.model,
                admin_name=admin_name,
            ),
        )

    async def check_out(
        self,
        tool_unique_id: str,
        staff_job_code: str,
        notes: str | None = None,
        admin_name: str | None = None,
        batch_id: str | None = None,
    ) -> bool:
        try:
            await self.perform_check_out(tool_unique_id, staff_job_code, notes, admin_name, batch_id)
        except (LedgerError, StoreError) as exc:
            logger.warning("Check-out of %s to %s failed: %s", tool_unique_id, staff_job_code, exc)
            return False
        return True

    async def check_in(
        self,
        tool_unique_id: str,
        notes: str | None = None,
        admin_name: str | None = None,
        batch_id: str | None = None,
    ) -> bool:
        try:
            await self.perform_check_in(tool_unique_id, notes, admin_name, batch_id)
        except (LedgerError, StoreError) as exc:
            logger.warning("Check-in of %s failed: %s", tool_unique_id, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def batch_check_out(
        self,
        tool_unique_ids: Iterable[str],
        staff_job_code: str,
        notes: str | None = None,
        admin_name: str | None = None,
        supervisor_id: str | None = None,
    ) -> BatchResult:
        """Check out each tool in turn under one batch id.

        Items succeed or fail independently; nothing is rolled back when a
        later item fails.
        """

        result = BatchResult(batch_id=new_batch_id(self.clock()))
        entry_notes = batch_notes("checkout", result.batch_id, notes)
        for code in unique_codes(tool_unique_ids):
            try:
                await self.perform_check_out(
                    code,
                    staff_job_code,
                    notes=entry_notes,
                    admin_name=admin_name,
                    batch_id=result.batch_id,
                    supervisor_id=supervisor_id,
                )
            except (LedgerError, StoreError) as exc:
                result.results[code] = False
                result.errors.append(f"{code}: {exc}")
            else:
                result.results[code] = True
        self._log_batch("checkout", result)
        return result

    async def batch_check_in(
        self,
        tool_unique_ids: Iterable[str],
        notes: str | None = None,
        admin_name: str | None = None,
        supervisor_id: str | None = None,
    ) -> BatchResult:
        result = BatchResult(batch_id=new_batch_id(self.clock()))
        entry_notes = batch_notes("checkin", result.batch_id, notes)
        for code in unique_codes(tool_unique_ids):
            try:
                await self.perform_check_in(
                    code,
                    notes=entry_notes,
                    admin_name=admin_name,
                    batch_id=result.batch_id,
                    supervisor_id=supervisor_id,
                )
            except (LedgerError, StoreError) as exc:
                result.results[code] = False
                result.errors.append(f"{code}: {exc}")
            else:
                result.results[code] = True
        self._log_batch("checkin", result)
        return result

    def _log_batch(self, action: LedgerAction, result: BatchResult) -> None:
        logger.info(
            "batch.completed",
            extra={
                "extra_data": {
                    "action": action,
                    "batch_id": result.batch_id,
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                }
            },
        )

    # ------------------------------------------------------------------
    # Lookups and history views
    # ------------------------------------------------------------------

    async def get_tool_status_info(self, tool_unique_id: str) -> Optional[ToolStatusInfo]:
        tool_id = await self.id_cache.resolve_tool_id(tool_unique_id)
        if not tool_id:
            return None
        snapshot = await self.store.get_document(TOOLS_COLLECTION, tool_id)
        if snapshot is None:
            return None
        info = ToolStatusInfo(tool=Tool.from_snapshot(snapshot))
        holder_id = info.tool.current_holder
        if holder_id:
            holder_snapshot = await self.store.get_document(STAFF_COLLECTION, holder_id)
            if holder_snapshot is not None:
                info.assigned_staff = Staff.from_snapshot(holder_snapshot)
                info.assigned_staff_job_code = info.assigned_staff.job_code or None
            if info.assigned_staff_job_code is None:
                info.assigned_staff_job_code = await self.id_cache.staff_job_code_for(holder_id)
        return info

    async def get_tools_assigned_to_staff(self, job_code: str) -> List[Tool]:
        staff_id = await self.id_cache.resolve_staff_id(job_code)
        if not staff_id:
            return []
        # Older tools store the holder as a "staff/<id>" path.
        found = await asyncio.gather(
            self.store.query_equal(TOOLS_COLLECTION, "currentHolder", staff_id),
            self.store.query_equal(TOOLS_COLLECTION, "currentHolder", f"{HOLDER_PATH_PREFIX}{staff_id}"),
        )
        tools = {snapshot.id: Tool.from_snapshot(snapshot) for snapshots in found for snapshot in snapshots}
        return sorted(tools.values(), key=lambda tool: tool.unique_id)

    async def find_consumable(self, code: str) -> Optional[Consumable]:
        return await self.consumables.find(code)

    async def list_consumables(self) -> List[Consumable]:
        return await self.consumables.list_all()

    async def resolve_scan(self, payload: str) -> Optional[ScanResult]:
        """Look up whatever a decoded QR payload points at.

        The payload's kind decides the lookup (see ``parse_scan_payload``);
        a target of unknown kind is tried as a tool first and then as a
        consumable.
        """

        target = parse_scan_payload(payload)
        if target is None:
            return None
        result = ScanResult(target=target)
        if target.kind in ("tool", "unknown"):
            result.tool_status = await self.get_tool_status_info(target.code)
        if result.tool_status is None and target.kind in ("consumable", "unknown"):
            result.consumable = await self.find_consumable(target.code)
        return result

    def _window(self, days_back: int) -> tuple[datetime, datetime]:
        end = self.clock()
        return end - timedelta(days=max(days_back, 0)), end

    async def get_tool_history(
        self,
        tool_unique_id: str,
        days_back: int | None = None,
        limit: int | None = None,
    ) -> List[LedgerEntry]:
        tool_id = await self.id_cache.resolve_tool_id(tool_unique_id)
        if not tool_id:
            return []
        start, end = self._window(self.config.HISTORY_DAYS_BACK if days_back is None else days_back)
        limit = self.config.HISTORY_LIMIT if limit is None else limit
        entries = await self.history.query_tool_range(
            tool_id,
            start,
            end,
            limit=limit,
            max_months=self.config.TOOL_HISTORY_MAX_MONTHS,
        )
        if entries:
            return entries
        # Entries written before per-tool buckets existed only live globally.
        start = max(start, end - timedelta(days=self.history.max_range_days - 1))
        return await self.history.query_range(start, end, tool_id=tool_id, limit=limit)

    async def get_staff_history(
        self,
        job_code: str,
        days_back: int | None = None,
        limit: int | None = None,
    ) -> List[LedgerEntry]:
        staff_id = await self.id_cache.resolve_staff_id(job_code)
        if not staff_id:
            return []
        start, end = self._window(self.config.HISTORY_DAYS_BACK if days_back is None else days_back)
        return await self.history.query_range(
            start,
            end,
            staff_id=staff_id,
            limit=self.config.HISTORY_LIMIT if limit is None else limit,
        )

    async def get_today_transactions(self, limit: int | None = None) -> List[LedgerEntry]:
        return await self.history.today(limit=self.config.TODAY_LIMIT if limit is None else limit)

    async def get_recent_transactions(self, limit: int | None = None, days_back: int = 1) -> List[LedgerEntry]:
        start, end = self._window(days_back)
        return await self.history.query_range(
            start,
            end,
            limit=self.config.RECENT_LIMIT if limit is None else limit,
        )
