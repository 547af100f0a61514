from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from .config import settings


def ledger_tz(tz: str | None = None) -> ZoneInfo:
    return ZoneInfo(tz or settings.TZ)


def now_local(tz: str | None = None) -> datetime:
    return datetime.now(ledger_tz(tz))


def ensure_aware(dt: datetime, tz: str | None = None) -> datetime:
    """Attach the ledger timezone to naive datetimes; aware values pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ledger_tz(tz))
    return dt


def parse_iso(ts: str | None, tz: str | None = None) -> datetime | None:
    """Parse an ISO-8601 timestamp string.
    If naive, attach the provided tz. Returns None if ts is falsy or unparseable.
    """
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_aware(dt, tz)
