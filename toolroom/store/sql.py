"""Document store backed by a single SQLAlchemy table of JSON documents."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from ..core.errors import DocumentNotFoundError, StoreError
from ..db.session import build_engine, build_sessionmaker, create_schema
from ..models.document import DocumentRecord
from .base import DocumentStore, Snapshot, StagedWrite, Transaction, WriteConflict, apply_updates


def _to_snapshot(row: DocumentRecord) -> Snapshot:
    return Snapshot(row.collection, row.doc_id, dict(row.data or {}), int(row.version))


def _json_filter(value: Any):
    """Pick the typed JSON accessor for an equality filter, or ``None``."""
    if isinstance(value, bool):
        return "as_boolean"
    if isinstance(value, int):
        return "as_integer"
    if isinstance(value, float):
        return "as_float"
    if isinstance(value, str):
        return "as_string"
    return None


class SqlTransaction(Transaction):
    def __init__(self, store: "SqlDocumentStore") -> None:
        super().__init__()
        self._store = store

    async def _load(self, collection: str, doc_id: str) -> Snapshot | None:
        return await self._store.get_document(collection, doc_id)


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        engine: AsyncEngine | None = None,
        *,
        url: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(clock)
        self.engine = engine or build_engine(url)
        self._sessionmaker = build_sessionmaker(self.engine)

    async def create_schema(self) -> None:
        await create_schema(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    async def get_document(self, collection: str, doc_id: str) -> Snapshot | None:
        try:
            async with self._sessionmaker() as session:
                row = await session.get(DocumentRecord, (collection, doc_id))
                return _to_snapshot(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {collection}/{doc_id}") from exc

    async def query_equal(self, collection: str, field_name: str, value: Any, limit: int | None = None) -> list[Snapshot]:
        accessor = _json_filter(value)
        stmt = select(DocumentRecord).where(DocumentRecord.collection == collection).order_by(DocumentRecord.doc_id)
        if accessor is not None:
            stmt = stmt.where(getattr(DocumentRecord.data[field_name], accessor)() == value)
            if limit is not None:
                stmt = stmt.limit(limit)
        try:
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to query {collection} on {field_name}") from exc

        snapshots = [_to_snapshot(row) for row in rows]
        if accessor is None:
            # JSON null and containers are compared in Python.
            snapshots = [snap for snap in snapshots if snap.data.get(field_name) == value]
            if limit is not None:
                snapshots = snapshots[:limit]
        return snapshots

    async def list_documents(self, collection: str) -> list[Snapshot]:
        stmt = select(DocumentRecord).where(DocumentRecord.collection == collection).order_by(DocumentRecord.doc_id)
        try:
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list {collection}") from exc
        return [_to_snapshot(row) for row in rows]

    async def delete_document(self, collection: str, doc_id: str) -> None:
        stmt = delete(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.doc_id == doc_id,
        )
        try:
            async with self._sessionmaker() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete {collection}/{doc_id}") from exc

    def _begin(self) -> Transaction:
        return SqlTransaction(self)

    async def _commit(self, tx: Transaction) -> None:
        timestamp = self.server_timestamp()
        try:
            async with self._sessionmaker() as session, session.begin():
                await self._verify_reads(session, tx)
                touched: set[tuple[str, str]] = set()
                for write in tx.writes:
                    await self._apply_write(session, tx, write, timestamp, touched)
        except IntegrityError as exc:
            raise WriteConflict("Concurrent insert of the same document") from exc
        except (WriteConflict, DocumentNotFoundError):
            raise
        except SQLAlchemyError as exc:
            raise StoreError("Failed to commit transaction") from exc

    async def _verify_reads(self, session: AsyncSession, tx: Transaction) -> None:
        written = {(write.collection, write.doc_id) for write in tx.writes}
        for (collection, doc_id), expected in tx.reads.items():
            if (collection, doc_id) in written:
                # Checked by the conditional UPDATE/INSERT instead.
                continue
            stmt = select(DocumentRecord.version).where(
                DocumentRecord.collection == collection,
                DocumentRecord.doc_id == doc_id,
            )
            current = (await session.execute(stmt)).scalar_one_or_none()
            if current != expected:
                raise WriteConflict(f"{collection}/{doc_id} changed")

    async def _apply_write(
        self,
        session: AsyncSession,
        tx: Transaction,
        write: StagedWrite,
        timestamp: str,
        touched: set[tuple[str, str]],
    ) -> None:
        key = (write.collection, write.doc_id)
        where = (
            DocumentRecord.collection == write.collection,
            DocumentRecord.doc_id == write.doc_id,
        )
        row = (await session.execute(select(DocumentRecord).where(*where).execution_options(populate_existing=True))).scalar_one_or_none()
        current_version = int(row.version) if row else None
        if key in tx.reads and key not in touched and tx.reads[key] != current_version:
            raise WriteConflict(f"{write.collection}/{write.doc_id} changed")

        if write.kind == "delete":
            if row is not None:
                await session.execute(delete(DocumentRecord).where(*where, DocumentRecord.version == current_version))
            touched.add(key)
            return

        if row is None:
            if write.kind == "update":
                raise DocumentNotFoundError(write.collection, write.doc_id)
            session.add(
                DocumentRecord(
                    collection=write.collection,
                    doc_id=write.doc_id,
                    data=apply_updates(None, write.fields, timestamp),
                    version=1,
                    updated_at=timestamp,
                )
            )
            await session.flush()
            touched.add(key)
            return

        base = row.data if (write.kind == "update" or write.merge) else None
        result = await session.execute(
            update(DocumentRecord)
            .where(*where, DocumentRecord.version == current_version)
            .values(
                data=apply_updates(base, write.fields, timestamp),
                version=current_version + 1,
                updated_at=timestamp,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WriteConflict(f"{write.collection}/{write.doc_id} changed")
        touched.add(key)
