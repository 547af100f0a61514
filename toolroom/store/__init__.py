from __future__ import annotations

from ..core.config import AppSettings, settings
from .base import (
    SERVER_TIMESTAMP,
    ArrayAppend,
    ArrayRemove,
    ArrayUnion,
    DocumentStore,
    Snapshot,
    Transaction,
)
from .memory import MemoryDocumentStore
from .sql import SqlDocumentStore


def build_store(config: AppSettings | None = None) -> DocumentStore:
    """Construct the configured document store backend."""

    config = config or settings
    if config.STORE_BACKEND == "memory":
        return MemoryDocumentStore()
    return SqlDocumentStore(url=config.DB_URL)


__all__ = [
    "SERVER_TIMESTAMP",
    "ArrayAppend",
    "ArrayRemove",
    "ArrayUnion",
    "DocumentStore",
    "MemoryDocumentStore",
    "Snapshot",
    "SqlDocumentStore",
    "Transaction",
    "build_store",
]
