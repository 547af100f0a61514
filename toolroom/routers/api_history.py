from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.timeutil import ensure_aware
from ..deps.auth import require_worker
from ..deps.engine import get_engine
from ..schemas.ledger import LedgerEntryOut, ToolOut
from ..services.transactions import TransactionEngine

router = APIRouter(prefix="/api/v1", tags=["history"], dependencies=[Depends(require_worker)])


def _entries_out(entries) -> List[LedgerEntryOut]:
    return [LedgerEntryOut.model_validate(entry, from_attributes=True) for entry in entries]


@router.get("/staff/{job_code}/history", response_model=List[LedgerEntryOut])
async def api_staff_history(
    job_code: str,
    days_back: Optional[int] = Query(default=None, ge=0, le=3650),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: TransactionEngine = Depends(get_engine),
):
    entries = await engine.get_staff_history(job_code, days_back=days_back, limit=limit)
    return _entries_out(entries)


@router.get("/staff/{job_code}/tools", response_model=List[ToolOut])
async def api_staff_tools(job_code: str, engine: TransactionEngine = Depends(get_engine)):
    if not await engine.id_cache.resolve_staff_id(job_code):
        raise HTTPException(status_code=404, detail="Staff member not found")
    tools = await engine.get_tools_assigned_to_staff(job_code)
    return [ToolOut.model_validate(tool, from_attributes=True) for tool in tools]


@router.get("/history", response_model=List[LedgerEntryOut])
async def api_history(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    tool: Optional[str] = Query(default=None, description="Tool unique id or internal id"),
    staff: Optional[str] = Query(default=None, description="Staff job code"),
    action: Optional[Literal["checkout", "checkin"]] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: TransactionEngine = Depends(get_engine),
):
    end = ensure_aware(end) if end else engine.clock()
    start = ensure_aware(start) if start else end - timedelta(days=engine.config.HISTORY_DAYS_BACK)

    staff_id = None
    if staff:
        staff_id = await engine.id_cache.resolve_staff_id(staff)
        if not staff_id:
            return []

    entries = await engine.history.query_range(
        start,
        end,
        tool_id=tool.strip() if tool else None,
        staff_id=staff_id,
        action=action,
        limit=limit if limit is not None else engine.config.HISTORY_LIMIT,
    )
    return _entries_out(entries)


@router.get("/history/today", response_model=List[LedgerEntryOut])
async def api_history_today(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: TransactionEngine = Depends(get_engine),
):
    return _entries_out(await engine.get_today_transactions(limit=limit))


@router.get("/history/recent", response_model=List[LedgerEntryOut])
async def api_history_recent(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    days_back: int = Query(default=1, ge=0, le=365),
    engine: TransactionEngine = Depends(get_engine),
):
    return _entries_out(await engine.get_recent_transactions(limit=limit, days_back=days_back))
