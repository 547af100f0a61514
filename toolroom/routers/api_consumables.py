from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps.auth import AuthContext, require_supervisor, require_worker
from ..deps.engine import get_engine
from ..models.consumable import ConsumableTransaction
from ..schemas.consumable import BatchRestockRequest, ConsumableTransactionOut, RestockRequest, UsageRequest
from ..schemas.ledger import BatchResultOut, ConsumableOut
from ..services.transactions import TransactionEngine

router = APIRouter(prefix="/api/v1", tags=["consumables"])


def _record_out(record: ConsumableTransaction) -> ConsumableTransactionOut:
    return ConsumableTransactionOut.model_validate(record, from_attributes=True)


def _recorded_by(ctx: AuthContext) -> Optional[str]:
    return None if ctx.scheme == "open" else ctx.subject


@router.get("/consumables", response_model=List[ConsumableOut], dependencies=[Depends(require_worker)])
async def api_list_consumables(
    active_only: bool = True,
    engine: TransactionEngine = Depends(get_engine),
):
    consumables = await engine.list_consumables()
    if active_only:
        consumables = [item for item in consumables if item.is_active]
    return [ConsumableOut.model_validate(item, from_attributes=True) for item in consumables]


# Registered before "/consumables/{code}/..." so "batch" is never taken for a code.
@router.post("/consumables/batch/restock", response_model=BatchResultOut)
async def api_batch_restock(
    payload: BatchRestockRequest,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    result = await engine.consumables.batch_restock(
        [(item.code, item.quantity) for item in payload.items],
        payload.approved_by_job_code,
        notes=payload.notes,
        recorded_by=_recorded_by(ctx),
    )
    return BatchResultOut.model_validate(result, from_attributes=True)


@router.get("/consumables/{code}", response_model=ConsumableOut, dependencies=[Depends(require_worker)])
async def api_get_consumable(code: str, engine: TransactionEngine = Depends(get_engine)):
    consumable = await engine.find_consumable(code)
    if consumable is None:
        raise HTTPException(status_code=404, detail="Consumable not found")
    return ConsumableOut.model_validate(consumable, from_attributes=True)


@router.get(
    "/consumables/{code}/history",
    response_model=List[ConsumableTransactionOut],
    dependencies=[Depends(require_worker)],
)
async def api_consumable_history(
    code: str,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: TransactionEngine = Depends(get_engine),
):
    if await engine.find_consumable(code) is None:
        raise HTTPException(status_code=404, detail="Consumable not found")
    records = await engine.consumables.history_for_consumable(code, limit=limit or engine.config.HISTORY_LIMIT)
    return [_record_out(record) for record in records]


@router.post("/consumables/{code}/usage", response_model=ConsumableTransactionOut)
async def api_record_usage(
    code: str,
    payload: UsageRequest,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    record = await engine.consumables.record_usage(
        code,
        payload.quantity,
        payload.staff_job_code,
        assigned_to_job_code=payload.assigned_to_job_code,
        project_name=payload.project_name,
        notes=payload.notes,
        recorded_by=_recorded_by(ctx),
    )
    return _record_out(record)


@router.post("/consumables/{code}/restock", response_model=ConsumableTransactionOut)
async def api_record_restock(
    code: str,
    payload: RestockRequest,
    ctx: AuthContext = Depends(require_supervisor),
    engine: TransactionEngine = Depends(get_engine),
):
    record = await engine.consumables.record_restock(
        code,
        payload.quantity,
        payload.approved_by_job_code,
        notes=payload.notes,
        recorded_by=_recorded_by(ctx),
    )
    return _record_out(record)


@router.get(
    "/staff/{job_code}/consumables",
    response_model=List[ConsumableTransactionOut],
    dependencies=[Depends(require_worker)],
)
async def api_staff_consumable_usage(
    job_code: str,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: TransactionEngine = Depends(get_engine),
):
    if not await engine.id_cache.resolve_staff_id(job_code):
        raise HTTPException(status_code=404, detail="Staff member not found")
    records = await engine.consumables.history_for_staff(job_code, limit=limit or engine.config.HISTORY_LIMIT)
    return [_record_out(record) for record in records]
