"""Range queries over the bucketed ledger.

History is never stored as one document per entry. A query enumerates the
bucket keys covering the requested range, reads the buckets that exist,
and filters and orders the entries in memory.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional

from ..core.config import settings
from ..core.errors import RangeTooLargeError
from ..core.timeutil import ensure_aware, ledger_tz
from ..models.ledger import (
    LedgerAction,
    LedgerEntry,
    day_key,
    days_between,
    entries_from_bucket,
    global_bucket_collection,
    month_key,
    month_keys_between,
    parse_month_key,
    sort_newest_first,
    to_ledger_time,
    tool_bucket_collection,
)
from ..models.tool import TOOLS_COLLECTION
from ..store.base import DocumentStore, Snapshot

logger = logging.getLogger(__name__)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=ledger_tz())


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=ledger_tz())


def _month_end(year: int, month: int) -> date:
    first_of_next = (date(year, month, 1) + timedelta(days=32)).replace(day=1)
    return first_of_next - timedelta(days=1)


def _select(
    entries: Iterable[LedgerEntry],
    start: datetime,
    end: datetime,
    *,
    tool_id: str | None = None,
    staff_id: str | None = None,
    action: LedgerAction | None = None,
    limit: int | None = None,
) -> List[LedgerEntry]:
    kept = []
    for entry in entries:
        if entry.timestamp is None or not (start <= entry.timestamp <= end):
            continue
        if tool_id and not entry.involves_tool(tool_id):
            continue
        if staff_id and not entry.involves_staff(staff_id):
            continue
        if action and entry.action != action:
            continue
        kept.append(entry)
    ordered = sort_newest_first(kept)
    if limit is not None:
        ordered = ordered[: max(limit, 0)]
    return ordered


class HistoryQueryEngine:
    """Reads cost one bucket per day (global) or per month (per tool).

    ``max_range_days`` caps the calendar span of a single query and
    ``read_concurrency`` caps how many bucket reads are in flight at once.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Optional[Callable[[], datetime]] = None,
        *,
        max_range_days: int | None = None,
        read_concurrency: int | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or store.clock
        self.max_range_days = max_range_days or settings.HISTORY_MAX_RANGE_DAYS
        self.read_concurrency = read_concurrency or settings.HISTORY_READ_CONCURRENCY

    def check_span(self, start: datetime, end: datetime) -> None:
        span = (to_ledger_time(end).date() - to_ledger_time(start).date()).days + 1
        if span > self.max_range_days:
            raise RangeTooLargeError(
                f"History range covers {span} days; at most {self.max_range_days} are allowed",
                details={"days": span, "max_days": self.max_range_days},
            )

    async def _read_buckets(self, keys: list[tuple[str, str]]) -> List[LedgerEntry]:
        semaphore = asyncio.Semaphore(self.read_concurrency)

        async def read(collection: str, doc_id: str) -> Snapshot | None:
            async with semaphore:
                return await self.store.get_document(collection, doc_id)

        snapshots: list[Snapshot | None] = await asyncio.gather(
            *(read(collection, doc_id) for collection, doc_id in keys)
        )
        entries: List[LedgerEntry] = []
        for snapshot in snapshots:
            if snapshot is not None:
                entries.extend(entries_from_bucket(snapshot.data))
        return entries

    async def query_range(
        self,
        start: datetime,
        end: datetime,
        *,
        tool_id: str | None = None,
        staff_id: str | None = None,
        action: LedgerAction | None = None,
        limit: int | None = None,
    ) -> List[LedgerEntry]:
        """Entries from the global day buckets with ``start <= timestamp <= end``.

        ``tool_id`` matches either the internal or the readable tool id;
        ``staff_id`` matches the acting or the assigned staff member.
        Raises ``RangeTooLargeError`` when the span exceeds ``max_range_days``.
        """

        start, end = ensure_aware(start), ensure_aware(end)
        if start > end:
            return []
        self.check_span(start, end)
        keys = [(global_bucket_collection(month_key(day)), day_key(day)) for day in days_between(start, end)]
        entries = await self._read_buckets(keys)
        return _select(entries, start, end, tool_id=tool_id, staff_id=staff_id, action=action, limit=limit)

    async def query_tool_range(
        self,
        tool_id: str,
        start: datetime,
        end: datetime,
        *,
        limit: int | None = None,
        max_months: int | None = None,
    ) -> List[LedgerEntry]:
        """Entries from one tool's month buckets; ``tool_id`` is the internal id.

        Without ``max_months`` the span is capped like ``query_range``.
        """

        start, end = ensure_aware(start), ensure_aware(end)
        if start > end:
            return []
        if max_months is None:
            self.check_span(start, end)
        months = month_keys_between(start, end)
        if max_months is not None:
            months = months[-max_months:] if max_months > 0 else []
        collection = tool_bucket_collection(tool_id)
        entries = await self._read_buckets([(collection, month) for month in months])
        return _select(entries, start, end, limit=limit)

    async def today(self, limit: int | None = None) -> List[LedgerEntry]:
        today = to_ledger_time(self.clock()).date()
        return await self.query_range(start_of_day(today), end_of_day(today), limit=limit)

    async def current_month(self, limit: int | None = None) -> List[LedgerEntry]:
        today = to_ledger_time(self.clock()).date()
        first = today.replace(day=1)
        last = _month_end(today.year, today.month)
        return await self.query_range(start_of_day(first), end_of_day(last), limit=limit)

    async def purge_before(self, cutoff: datetime, since: datetime) -> int:
        """Delete ledger buckets older than ``cutoff``.

        Global day buckets are removed for every day in ``[since, cutoff)``;
        per-tool month buckets only once their whole month lies before
        ``cutoff``. Returns the number of bucket documents deleted.
        """

        cutoff_day = to_ledger_time(cutoff).date()
        since = ensure_aware(since)
        if since >= ensure_aware(cutoff):
            return 0

        targets: list[tuple[str, str]] = [
            (global_bucket_collection(month_key(day)), day_key(day))
            for day in days_between(since, cutoff)
            if day < cutoff_day
        ]

        expired_months = []
        for key in month_keys_between(since, cutoff):
            parsed = parse_month_key(key)
            if parsed and _month_end(*parsed) < cutoff_day:
                expired_months.append(key)
        if expired_months:
            for tool in await self.store.list_documents(TOOLS_COLLECTION):
                collection = tool_bucket_collection(tool.id)
                targets.extend((collection, key) for key in expired_months)

        deleted = 0
        for collection, doc_id in targets:
            if await self.store.get_document(collection, doc_id) is None:
                continue
            await self.store.delete_document(collection, doc_id)
            deleted += 1

        logger.warning(
            "ledger.purged",
            extra={
                "extra_data": {
                    "since": since.isoformat(),
                    "cutoff": ensure_aware(cutoff).isoformat(),
                    "deleted": deleted,
                }
            },
        )
        return deleted
