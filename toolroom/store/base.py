"""Document store contract shared by every backend.

The ledger only needs a small slice of what hosted document databases
offer: point reads, equality queries, merge writes, field transforms
(server timestamps and array edits) and optimistic multi-document
transactions. ``DocumentStore`` captures that slice; adapters implement the
loading and committing primitives and inherit the retry loop.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal, Mapping, TypeVar

from ..core.errors import StoreError, TransactionConflictError
from ..core.timeutil import now_local

logger = logging.getLogger("toolroom.store")

T = TypeVar("T")


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


@dataclass(frozen=True)
class ArrayUnion:
    """Add each value to an array field unless it is already present."""

    values: tuple[Any, ...]

    def __init__(self, values: list[Any] | tuple[Any, ...]) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ArrayRemove:
    """Remove every occurrence of each value from an array field."""

    values: tuple[Any, ...]

    def __init__(self, values: list[Any] | tuple[Any, ...]) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ArrayAppend:
    """Append values to an array field, duplicates included."""

    values: tuple[Any, ...]

    def __init__(self, values: list[Any] | tuple[Any, ...]) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Snapshot:
    collection: str
    id: str
    data: dict[str, Any]
    version: int = 0

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class WriteConflict(StoreError):
    """A document read by a transaction changed before it committed."""


def _resolve_field(current: Any, value: Any, timestamp: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return timestamp
    if isinstance(value, (ArrayUnion, ArrayRemove, ArrayAppend)):
        items = list(current) if isinstance(current, list) else []
        if isinstance(value, ArrayUnion):
            for candidate in value.values:
                if candidate not in items:
                    items.append(copy.deepcopy(candidate))
            return items
        if isinstance(value, ArrayRemove):
            return [item for item in items if item not in value.values]
        return items + [copy.deepcopy(candidate) for candidate in value.values]
    return copy.deepcopy(value)


def apply_updates(existing: Mapping[str, Any] | None, fields: Mapping[str, Any], timestamp: str) -> dict[str, Any]:
    """Return ``existing`` with ``fields`` merged in and transforms resolved."""

    result = copy.deepcopy(dict(existing or {}))
    for key, value in fields.items():
        result[key] = _resolve_field(result.get(key), value, timestamp)
    return result


@dataclass
class StagedWrite:
    kind: Literal["set", "update", "delete"]
    collection: str
    doc_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class Transaction(ABC):
    """Read set plus staged writes for one attempt of a transaction."""

    def __init__(self) -> None:
        self.reads: dict[tuple[str, str], int | None] = {}
        self.writes: list[StagedWrite] = []

    @abstractmethod
    async def _load(self, collection: str, doc_id: str) -> Snapshot | None:
        raise NotImplementedError

    async def get(self, collection: str, doc_id: str) -> Snapshot | None:
        if self.writes:
            raise StoreError("Transaction reads must happen before writes")
        snapshot = await self._load(collection, doc_id)
        self.reads[(collection, doc_id)] = snapshot.version if snapshot else None
        return snapshot

    def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        self.writes.append(StagedWrite("update", collection, doc_id, dict(fields)))

    def set(self, collection: str, doc_id: str, fields: Mapping[str, Any], *, merge: bool = False) -> None:
        self.writes.append(StagedWrite("set", collection, doc_id, dict(fields), merge=merge))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(StagedWrite("delete", collection, doc_id))


class DocumentStore(ABC):
    """Async document store with optimistic transactions."""

    merge_attempts = 10

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.clock = clock or now_local

    def server_timestamp(self) -> str:
        return self.clock().isoformat()

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Snapshot | None:
        raise NotImplementedError

    @abstractmethod
    async def query_equal(self, collection: str, field_name: str, value: Any, limit: int | None = None) -> list[Snapshot]:
        raise NotImplementedError

    @abstractmethod
    async def list_documents(self, collection: str) -> list[Snapshot]:
        raise NotImplementedError

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def _begin(self) -> Transaction:
        raise NotImplementedError

    @abstractmethod
    async def _commit(self, tx: Transaction) -> None:
        """Apply staged writes, raising ``WriteConflict`` if a read went stale."""
        raise NotImplementedError

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]], *, max_attempts: int = 5) -> T:
        """Run ``fn`` until it commits against an unchanged read set.

        ``fn`` is re-invoked from scratch after a conflict so preconditions
        it checks are evaluated against fresh data. Exceptions raised by
        ``fn`` abort the transaction without retry.
        """

        for attempt in range(1, max_attempts + 1):
            tx = self._begin()
            result = await fn(tx)
            try:
                await self._commit(tx)
            except WriteConflict as exc:
                logger.info(
                    "transaction.conflict",
                    extra={"extra_data": {"attempt": attempt, "max_attempts": max_attempts, "reason": str(exc)}},
                )
                continue
            return result
        raise TransactionConflictError(f"Transaction did not commit after {max_attempts} attempts")

    async def set_merge(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Create or update a document, leaving unspecified fields untouched.

        Runs as a single-document transaction so array transforms on a hot
        document (ledger buckets) never lose concurrent updates.
        """

        async def _merge(tx: Transaction) -> None:
            await tx.get(collection, doc_id)
            tx.set(collection, doc_id, fields, merge=True)

        await self.run_transaction(_merge, max_attempts=self.merge_attempts)

    async def close(self) -> None:
        return None
