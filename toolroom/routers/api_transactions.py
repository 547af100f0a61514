from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps.auth import AuthContext, require_supervisor, require_worker
from ..deps.engine import get_engine
from ..models.ledger import LedgerEntry
from ..schemas.ledger import (
    BatchCheckInRequest,
    BatchCheckOutRequest,
    BatchResultOut,
    CheckInRequest,
    CheckOutRequest,
    ConsumableOut,
    LedgerEntryOut,
    ScanOut,
    ScanRequest,
    ToolStatusOut,
)
from ..services.transactions import TransactionEngine

router = APIRouter(prefix="/api/v1", tags=["tools"])


def _entry_out(entry: LedgerEntry) -> LedgerEntryOut:
    return LedgerEntryOut.model_validate(entry, from_attributes=True)


def _acting_name(requested: Optional[str], ctx: AuthContext) -> Optional[str]:
    return requested or ctx.name or None


def _supervisor_id(ctx: AuthContext) -> Optional[str]:
    return None if ctx.scheme == "open" else ctx.subject


# Batch routes come first so "batch" is never taken for a tool id.
@router.post("/tools/batch/checkout", response_model=BatchResultOut)
async def api_batch_checkout(
    payload: BatchCheckOutRequest,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    result = await engine.batch_check_out(
        payload.tool_ids,
        payload.staff_job_code,
        notes=payload.notes,
        admin_name=_acting_name(payload.admin_name, ctx),
        supervisor_id=_supervisor_id(ctx),
    )
    return BatchResultOut.model_validate(result, from_attributes=True)


@router.post("/tools/batch/checkin", response_model=BatchResultOut)
async def api_batch_checkin(
    payload: BatchCheckInRequest,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    result = await engine.batch_check_in(
        payload.tool_ids,
        notes=payload.notes,
        admin_name=_acting_name(payload.admin_name, ctx),
        supervisor_id=_supervisor_id(ctx),
    )
    return BatchResultOut.model_validate(result, from_attributes=True)


@router.post("/tools/{tool_id}/checkout", response_model=LedgerEntryOut)
async def api_checkout(
    tool_id: str,
    payload: CheckOutRequest,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    entry = await engine.perform_check_out(
        tool_id,
        payload.staff_job_code,
        notes=payload.notes,
        admin_name=_acting_name(payload.admin_name, ctx),
        supervisor_id=_supervisor_id(ctx),
    )
    return _entry_out(entry)


@router.post("/tools/{tool_id}/checkin", response_model=LedgerEntryOut)
async def api_checkin(
    tool_id: str,
    payload: Optional[CheckInRequest] = None,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    payload = payload or CheckInRequest()
    entry = await engine.perform_check_in(
        tool_id,
        notes=payload.notes,
        admin_name=_acting_name(payload.admin_name, ctx),
        supervisor_id=_supervisor_id(ctx),
    )
    return _entry_out(entry)


@router.get("/tools/{tool_id}/status", response_model=ToolStatusOut, dependencies=[Depends(require_worker)])
async def api_tool_status(tool_id: str, engine: TransactionEngine = Depends(get_engine)):
    info = await engine.get_tool_status_info(tool_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    return ToolStatusOut.model_validate(info, from_attributes=True)


@router.get("/tools/{tool_id}/history", response_model=List[LedgerEntryOut], dependencies=[Depends(require_worker)])
async def api_tool_history(
    tool_id: str,
    days_back: Optional[int] = Query(default=None, ge=0, le=3650),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: TransactionEngine = Depends(get_engine),
):
    entries = await engine.get_tool_history(tool_id, days_back=days_back, limit=limit)
    return [_entry_out(entry) for entry in entries]


@router.post("/scan", response_model=ScanOut, dependencies=[Depends(require_worker)])
async def api_scan(payload: ScanRequest, engine: TransactionEngine = Depends(get_engine)):
    result = await engine.resolve_scan(payload.payload)
    if result is None:
        raise HTTPException(status_code=422, detail="Scan payload is empty")
    return ScanOut(
        kind=result.target.kind,
        code=result.target.code,
        found=result.found,
        tool_status=ToolStatusOut.model_validate(result.tool_status, from_attributes=True) if result.tool_status else None,
        consumable=ConsumableOut.model_validate(result.consumable, from_attributes=True) if result.consumable else None,
    )
