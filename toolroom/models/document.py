from __future__ import annotations

from sqlalchemy import JSON, Column, Index, Integer, String, Text

from ..db.session import Base


class DocumentRecord(Base):
    """One document of the SQL-backed document store.

    Sub-collections are flattened into the collection path, e.g. the ledger
    bucket ``tool_history/10-2025/days/20`` is stored with collection
    ``tool_history/10-2025/days`` and id ``20``.
    """

    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_collection", "collection"),)

    collection = Column(String(512), primary_key=True)
    doc_id = Column(String(255), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(Text, nullable=False)
