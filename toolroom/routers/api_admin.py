from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..core.timeutil import ensure_aware
from ..deps.auth import AuthContext, require_admin
from ..deps.engine import get_engine
from ..schemas.report import IdCacheStatsOut, PurgeOut
from ..services.transactions import TransactionEngine

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])
logger = logging.getLogger(__name__)

# Default lookback of a purge when no ``since`` is given.
PURGE_DEFAULT_SPAN = timedelta(days=366)


@router.post("/id-cache/preload", response_model=IdCacheStatsOut, dependencies=[Depends(require_admin)])
async def api_preload_id_cache(engine: TransactionEngine = Depends(get_engine)):
    return await engine.id_cache.preload()


@router.post("/id-cache/invalidate", response_model=IdCacheStatsOut, dependencies=[Depends(require_admin)])
async def api_invalidate_id_cache(engine: TransactionEngine = Depends(get_engine)):
    engine.id_cache.invalidate()
    return engine.id_cache.size


@router.delete("/history", response_model=PurgeOut)
async def api_purge_history(
    before: datetime,
    since: Optional[datetime] = None,
    ctx: AuthContext = Depends(require_admin),
    engine: TransactionEngine = Depends(get_engine),
):
    before = ensure_aware(before)
    since = ensure_aware(since) if since else before - PURGE_DEFAULT_SPAN
    if since >= before:
        raise HTTPException(status_code=400, detail="since must be before the cutoff")
    deleted = await engine.history.purge_before(before, since)
    logger.warning("History purge by %s removed %s buckets", ctx.subject, deleted)
    return PurgeOut(since=since, before=before, deleted=deleted)
