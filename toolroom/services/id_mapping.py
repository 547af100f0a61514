"""Translation between readable codes and internal document ids.

People and labels use tool unique ids (``T1234``) and staff job codes
(``W001``); documents are keyed by opaque ids. The cache keeps both
directions for tools and staff so a scan costs at most one query the first
time and none afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from ..core.codes import code_aliases
from ..core.errors import StoreError
from ..models.staff import STAFF_COLLECTION
from ..models.tool import TOOLS_COLLECTION
from ..store.base import DocumentStore

logger = logging.getLogger(__name__)


class IdMappingCache:
    """Shared by every request; last write wins and no locking is needed."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._tool_ids: Dict[str, str] = {}
        self._tool_codes: Dict[str, str] = {}
        self._staff_ids: Dict[str, str] = {}
        self._staff_codes: Dict[str, str] = {}

    @property
    def size(self) -> dict[str, int]:
        return {
            "tools": len(self._tool_ids),
            "staff": len(self._staff_ids),
        }

    def remember_tool(self, internal_id: str, unique_id: str) -> None:
        if internal_id and unique_id:
            self._tool_ids[unique_id] = internal_id
            self._tool_codes[internal_id] = unique_id

    def remember_staff(self, internal_id: str, job_code: str) -> None:
        if internal_id and job_code:
            self._staff_ids[job_code] = internal_id
            self._staff_codes[internal_id] = job_code

    async def _lookup(
        self,
        collection: str,
        field_name: str,
        code: str | None,
        cache: Dict[str, str],
    ) -> Optional[tuple[str, str]]:
        """Return ``(internal_id, stored_code)`` for the first alias that matches."""

        aliases = code_aliases(code)
        for alias in aliases:
            cached = cache.get(alias)
            if cached:
                return cached, alias

        for alias in aliases:
            try:
                matches = await self.store.query_equal(collection, field_name, alias, limit=2)
            except StoreError as exc:
                logger.warning("Lookup of %s %s=%s failed: %s", collection, field_name, alias, exc)
                return None
            if not matches:
                continue
            if len(matches) > 1:
                logger.warning(
                    "Multiple %s documents share %s=%s; using %s",
                    collection,
                    field_name,
                    alias,
                    matches[0].id,
                    extra={"extra_data": {"ids": [snap.id for snap in matches]}},
                )
            return matches[0].id, alias
        return None

    async def resolve_tool_id(self, unique_id: str | None) -> str | None:
        found = await self._lookup(TOOLS_COLLECTION, "uniqueId", unique_id, self._tool_ids)
        if found is None:
            return None
        internal_id, code = found
        self.remember_tool(internal_id, code)
        return internal_id

    async def resolve_staff_id(self, job_code: str | None) -> str | None:
        found = await self._lookup(STAFF_COLLECTION, "jobCode", job_code, self._staff_ids)
        if found is None:
            return None
        internal_id, code = found
        self.remember_staff(internal_id, code)
        return internal_id

    async def _reverse(self, collection: str, field_name: str, internal_id: str | None) -> str | None:
        if not internal_id:
            return None
        try:
            snapshot = await self.store.get_document(collection, internal_id)
        except StoreError as exc:
            logger.warning("Fetching %s/%s failed: %s", collection, internal_id, exc)
            return None
        if snapshot is None:
            return None
        value = snapshot.get(field_name)
        return value if isinstance(value, str) and value else None

    async def tool_unique_id_for(self, internal_id: str | None) -> str | None:
        if internal_id and internal_id in self._tool_codes:
            return self._tool_codes[internal_id]
        unique_id = await self._reverse(TOOLS_COLLECTION, "uniqueId", internal_id)
        if unique_id:
            self.remember_tool(internal_id, unique_id)
        return unique_id

    async def staff_job_code_for(self, internal_id: str | None) -> str | None:
        if internal_id and internal_id in self._staff_codes:
            return self._staff_codes[internal_id]
        job_code = await self._reverse(STAFF_COLLECTION, "jobCode", internal_id)
        if job_code:
            self.remember_staff(internal_id, job_code)
        return job_code

    async def preload(self) -> dict[str, int]:
        """Load every tool and staff mapping with one listing per collection."""

        try:
            tools, staff = await asyncio.gather(
                self.store.list_documents(TOOLS_COLLECTION),
                self.store.list_documents(STAFF_COLLECTION),
            )
        except StoreError as exc:
            logger.warning("Preloading id mappings failed: %s", exc)
            return self.size

        for snapshot in tools:
            unique_id = snapshot.get("uniqueId")
            if isinstance(unique_id, str):
                self.remember_tool(snapshot.id, unique_id)
        for snapshot in staff:
            job_code = snapshot.get("jobCode")
            if isinstance(job_code, str):
                self.remember_staff(snapshot.id, job_code)

        logger.info("id_cache.preloaded", extra={"extra_data": self.size})
        return self.size

    def invalidate(self) -> None:
        self._tool_ids.clear()
        self._tool_codes.clear()
        self._staff_ids.clear()
        self._staff_codes.clear()
