from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.timeutil import ensure_aware
from ..deps.auth import require_supervisor
from ..deps.engine import get_engine
from ..schemas.report import StockReportOut, TransactionReportOut
from ..services.reporting import stock_report, summarize_ledger
from ..services.transactions import TransactionEngine

router = APIRouter(prefix="/api/v1/reports", tags=["reports"], dependencies=[Depends(require_supervisor)])


@router.get("/transactions", response_model=TransactionReportOut)
async def api_transaction_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    top: int = Query(default=5, ge=1, le=100),
    engine: TransactionEngine = Depends(get_engine),
):
    end = ensure_aware(end) if end else engine.clock()
    start = ensure_aware(start) if start else end - timedelta(days=30)
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    entries = await engine.history.query_range(start, end)
    return {"start": start, "end": end, **summarize_ledger(entries, top=top)}


@router.get("/consumables", response_model=StockReportOut)
async def api_stock_report(engine: TransactionEngine = Depends(get_engine)):
    return stock_report(await engine.list_consumables())
