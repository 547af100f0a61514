from __future__ import annotations

from fastapi import Request

from ..services.id_mapping import IdMappingCache
from ..services.transactions import TransactionEngine


def get_engine(request: Request) -> TransactionEngine:
    return request.app.state.engine


def get_id_cache(request: Request) -> IdMappingCache:
    return request.app.state.engine.id_cache
