"""Ledger entries and the bucket layout they are stored in.

Every entry is written twice: into the tool's month bucket
(``tools/{toolId}/history/{MM-YYYY}``) and into the global day bucket
(``tool_history/{MM-YYYY}/days/{DD}``). Keys are derived in the ledger
timezone so an entry made at 23:30 local time lands on the local day.
"""

from __future__ import annotations

import itertools
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Literal, TypeVar

from pydantic import Field, model_validator

from ..core.timeutil import ensure_aware, ledger_tz
from .base import RecordModel

LedgerAction = Literal["checkout", "checkin"]

GLOBAL_HISTORY_ROOT = "tool_history"
UNKNOWN_STAFF_NAME = "Unknown"
UNKNOWN_JOB_CODE = "unknown"


class LedgerMetadata(RecordModel):
    staff_name: str = UNKNOWN_STAFF_NAME
    staff_job_code: str = UNKNOWN_JOB_CODE
    tool_name: str = ""
    tool_unique_id: str = ""
    tool_brand: str = ""
    tool_model: str = ""
    admin_name: str | None = None


class LedgerEntry(RecordModel):
    id: str
    action: LedgerAction
    tool_id: str = ""
    tool_unique_id: str = ""
    by_staff_uid: str = ""
    assigned_to_staff_uid: str | None = None
    supervisor_id: str | None = None
    batch_id: str | None = None
    is_batch: bool = False
    notes: str | None = None
    timestamp: datetime | None = None
    metadata: LedgerMetadata = Field(default_factory=LedgerMetadata)

    @model_validator(mode="before")
    @classmethod
    def _legacy_layout(cls, data: Any) -> Any:
        # Early per-tool entries kept staff details flat on the entry.
        if not isinstance(data, dict) or "staffUid" not in data:
            return data
        data = dict(data)
        data.setdefault("byStaffUid", data.pop("staffUid"))
        metadata = dict(data.get("metadata") or {})
        for name in ("staffName", "staffJobCode", "adminName"):
            if name in data:
                metadata.setdefault(name, data.pop(name))
        data["metadata"] = metadata
        return data

    @property
    def staff_uid(self) -> str:
        """The staff member the entry is about."""
        return self.assigned_to_staff_uid or self.by_staff_uid

    def involves_tool(self, tool_id: str) -> bool:
        return tool_id in (self.tool_id, self.tool_unique_id)

    def involves_staff(self, staff_id: str) -> bool:
        return staff_id in (self.by_staff_uid, self.assigned_to_staff_uid)


def to_ledger_time(moment: datetime) -> datetime:
    return ensure_aware(moment).astimezone(ledger_tz())


def month_key(moment: datetime | date) -> str:
    if isinstance(moment, datetime):
        moment = to_ledger_time(moment)
    return f"{moment.month:02d}-{moment.year:04d}"


def day_key(moment: datetime | date) -> str:
    if isinstance(moment, datetime):
        moment = to_ledger_time(moment)
    return f"{moment.day:02d}"


def date_string(moment: datetime | date) -> str:
    if isinstance(moment, datetime):
        moment = to_ledger_time(moment)
    return moment.strftime("%Y-%m-%d")


def parse_month_key(key: str) -> tuple[int, int] | None:
    """Return ``(year, month)`` for an ``MM-YYYY`` key, ``None`` when malformed."""
    month_text, _, year_text = key.partition("-")
    if not (month_text.isdigit() and year_text.isdigit()):
        return None
    month, year = int(month_text), int(year_text)
    if not 1 <= month <= 12:
        return None
    return year, month


def days_between(start: datetime, end: datetime) -> list[date]:
    """Every local calendar day touched by ``[start, end]``, oldest first."""
    first = to_ledger_time(start).date()
    last = to_ledger_time(end).date()
    days: list[date] = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def month_keys_between(start: datetime, end: datetime) -> list[str]:
    """Month keys touched by ``[start, end]``, oldest first."""
    first = to_ledger_time(start).date().replace(day=1)
    last = to_ledger_time(end).date().replace(day=1)
    keys: list[str] = []
    current = first
    while current <= last:
        keys.append(month_key(current))
        current = (current + timedelta(days=32)).replace(day=1)
    return keys


def tool_bucket_collection(tool_id: str) -> str:
    return f"tools/{tool_id}/history"


def global_bucket_collection(month: str) -> str:
    return f"{GLOBAL_HISTORY_ROOT}/{month}/days"


def _epoch_ms(moment: datetime) -> int:
    return int(ensure_aware(moment).timestamp() * 1000)


_entry_sequence = itertools.count()


def new_entry_id(moment: datetime) -> str:
    # Sequence prefix keeps ids minted in the same millisecond in creation order.
    return f"{_epoch_ms(moment)}-{next(_entry_sequence) % 0x10000:04x}{secrets.token_hex(2)}"


def new_batch_id(moment: datetime) -> str:
    return f"BATCH_{_epoch_ms(moment)}"


def batch_notes(action: LedgerAction, batch_id: str, notes: str | None) -> str:
    if notes:
        return f"BATCH: {notes}"
    return f"Batch {action} ({batch_id})"


def entries_from_bucket(data: dict[str, Any]) -> list[LedgerEntry]:
    entries: list[LedgerEntry] = []
    for raw in data.get("transactions") or []:
        if isinstance(raw, dict) and raw.get("id") and raw.get("action") in ("checkout", "checkin"):
            entries.append(LedgerEntry.model_validate(raw))
    return entries


_OLDEST = datetime(1970, 1, 1, tzinfo=timezone.utc)


Stamped = TypeVar("Stamped", bound=RecordModel)


def sort_newest_first(entries: Iterable[Stamped]) -> list[Stamped]:
    """Order records carrying ``timestamp`` and ``id`` newest first."""
    return sorted(entries, key=lambda entry: (entry.timestamp or _OLDEST, entry.id), reverse=True)
