from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from ..core.errors import LedgerError, LedgerWriteFailure, StoreError
from ..models.ledger import (
    LedgerEntry,
    date_string,
    day_key,
    global_bucket_collection,
    month_key,
    tool_bucket_collection,
)
from ..store.base import SERVER_TIMESTAMP, ArrayAppend, DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class LedgerWriteResult:
    entry: LedgerEntry
    failures: List[LedgerWriteFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class LedgerWriter:
    """Appends committed entries to the per-tool and global buckets.

    Runs after the tool/staff state change has committed. A failed append is
    logged and reported in the result, never raised: the tool document stays
    the source of truth and the history gap is visible in the logs.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def append(self, entry: LedgerEntry) -> LedgerWriteResult:
        result = LedgerWriteResult(entry=entry)
        if entry.timestamp is None:
            raise ValueError("Ledger entries need a timestamp before they are written")

        month = month_key(entry.timestamp)
        day = day_key(entry.timestamp)
        document = entry.to_document()

        buckets = [
            (
                tool_bucket_collection(entry.tool_id),
                month,
                {
                    "monthKey": month,
                    "toolId": entry.tool_id,
                    "toolUniqueId": entry.tool_unique_id,
                    "transactions": ArrayAppend([document]),
                    "updatedAt": SERVER_TIMESTAMP,
                },
            ),
            (
                global_bucket_collection(month),
                day,
                {
                    "monthKey": month,
                    "dayKey": day,
                    "date": date_string(entry.timestamp),
                    "transactions": ArrayAppend([document]),
                    "updatedAt": SERVER_TIMESTAMP,
                },
            ),
        ]

        for collection, doc_id, fields in buckets:
            bucket = f"{collection}/{doc_id}"
            try:
                await self.store.set_merge(collection, doc_id, fields)
            except (StoreError, LedgerError) as exc:
                failure = LedgerWriteFailure(bucket, exc)
                result.failures.append(failure)
                logger.error(
                    "ledger.append_failed",
                    extra={
                        "extra_data": {
                            "bucket": bucket,
                            "entry_id": entry.id,
                            "action": entry.action,
                            "tool_id": entry.tool_id,
                            "error": str(exc),
                        }
                    },
                )
        return result
