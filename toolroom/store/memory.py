from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Any, Callable

from ..core.errors import DocumentNotFoundError
from .base import DocumentStore, Snapshot, Transaction, WriteConflict, apply_updates


class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryDocumentStore") -> None:
        super().__init__()
        self._store = store

    async def _load(self, collection: str, doc_id: str) -> Snapshot | None:
        # Yield so concurrent transactions interleave the way they would
        # against a remote store.
        await asyncio.sleep(0)
        return self._store._snapshot(collection, doc_id)


class MemoryDocumentStore(DocumentStore):
    """Process-local store used by tests and demos.

    Keeps counters of reads and queries so callers can assert how many
    round trips an operation would cost against a hosted backend.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(clock)
        self._docs: dict[tuple[str, str], tuple[int, dict[str, Any]]] = {}
        self.reads = 0
        self.queries = 0
        self.commits = 0

    def _snapshot(self, collection: str, doc_id: str) -> Snapshot | None:
        self.reads += 1
        stored = self._docs.get((collection, doc_id))
        if stored is None:
            return None
        version, data = stored
        return Snapshot(collection, doc_id, copy.deepcopy(data), version)

    def reset_counters(self) -> None:
        self.reads = 0
        self.queries = 0
        self.commits = 0

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Seed a document directly, bypassing transforms and counters."""
        version = self._docs.get((collection, doc_id), (0, {}))[0]
        self._docs[(collection, doc_id)] = (version + 1, copy.deepcopy(data))

    def peek(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        stored = self._docs.get((collection, doc_id))
        return copy.deepcopy(stored[1]) if stored else None

    async def get_document(self, collection: str, doc_id: str) -> Snapshot | None:
        await asyncio.sleep(0)
        return self._snapshot(collection, doc_id)

    async def query_equal(self, collection: str, field_name: str, value: Any, limit: int | None = None) -> list[Snapshot]:
        await asyncio.sleep(0)
        self.queries += 1
        matches: list[Snapshot] = []
        for (coll, doc_id), (version, data) in sorted(self._docs.items()):
            if coll != collection or data.get(field_name) != value:
                continue
            matches.append(Snapshot(coll, doc_id, copy.deepcopy(data), version))
            if limit is not None and len(matches) >= limit:
                break
        return matches

    async def list_documents(self, collection: str) -> list[Snapshot]:
        await asyncio.sleep(0)
        self.queries += 1
        return [
            Snapshot(coll, doc_id, copy.deepcopy(data), version)
            for (coll, doc_id), (version, data) in sorted(self._docs.items())
            if coll == collection
        ]

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await asyncio.sleep(0)
        self._docs.pop((collection, doc_id), None)

    def _begin(self) -> Transaction:
        return MemoryTransaction(self)

    async def _commit(self, tx: Transaction) -> None:
        # No awaits below: the check and the writes happen as one step.
        for key, expected in tx.reads.items():
            current = self._docs.get(key)
            current_version = current[0] if current else None
            if current_version != expected:
                raise WriteConflict(f"{key[0]}/{key[1]} changed (expected {expected}, found {current_version})")

        timestamp = self.server_timestamp()
        pending = dict(self._docs)
        for write in tx.writes:
            key = (write.collection, write.doc_id)
            existing = pending.get(key)
            if write.kind == "delete":
                pending.pop(key, None)
                continue
            if write.kind == "update" and existing is None:
                raise DocumentNotFoundError(write.collection, write.doc_id)
            base = existing[1] if existing and (write.kind == "update" or write.merge) else None
            version = existing[0] if existing else 0
            pending[key] = (version + 1, apply_updates(base, write.fields, timestamp))
        self._docs = pending
        self.commits += 1
