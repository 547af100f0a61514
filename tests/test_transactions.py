import asyncio
import logging

import pytest
import pytest_asyncio

from toolroom.core.errors import (
    AlreadyAvailableError,
    AlreadyCheckedOutError,
    NotFoundError,
    StoreError,
    TransactionConflictError,
)
from toolroom.services.id_mapping import IdMappingCache
from toolroom.services.transactions import TransactionEngine
from toolroom.store import MemoryDocumentStore, SqlDocumentStore


class FlakyHistoryStore(MemoryDocumentStore):
    """Accepts state changes but refuses every history bucket write."""

    async def set_merge(self, collection, doc_id, fields):
        if "history" in collection:
            raise StoreError("history backend unavailable")
        await super().set_merge(collection, doc_id, fields)


class ContendedStore(MemoryDocumentStore):
    """Bumps the tool document after every read so no commit can succeed."""

    def _snapshot(self, collection, doc_id):
        snapshot = super()._snapshot(collection, doc_id)
        if snapshot is not None and collection == "tools":
            self.put(collection, doc_id, snapshot.data)
        return snapshot


@pytest.fixture()
def engine(memory_store):
    return TransactionEngine(memory_store, IdMappingCache(memory_store))


def _tool(store, doc_id="tool-1"):
    return store.peek("tools", doc_id)


def _staff(store, doc_id="staff-1"):
    return store.peek("staff", doc_id)


def _global_entries(store, clock):
    month = clock().strftime("%m-%Y")
    day = clock().strftime("%d")
    bucket = store.peek(f"tool_history/{month}/days", day) or {}
    return bucket.get("transactions", [])


@pytest.mark.asyncio
async def test_checkout_then_second_checkout_and_checkin(engine, memory_store, clock):
    assert await engine.check_out("T1234", "W001", notes="Bay 3", admin_name="Dana") is True
    tool = _tool(memory_store)
    assert tool["status"] == "checked_out"
    assert tool["currentHolder"] == "staff-1"
    assert tool["lastAssignedToName"] == "Ava Reyes"
    assert tool["lastAssignedToJobCode"] == "W001"
    assert tool["lastAssignedByName"] == "Dana"
    assert tool["lastAssignedAt"] == clock().isoformat()
    assert _staff(memory_store)["assignedToolIds"] == ["T1234"]

    # A second worker cannot take a tool that is already out.
    assert await engine.check_out("T1234", "W002") is False
    assert _tool(memory_store)["currentHolder"] == "staff-1"
    assert _staff(memory_store, "staff-2")["assignedToolIds"] == []

    clock.advance(minutes=45)
    assert await engine.check_in("T1234") is True
    tool = _tool(memory_store)
    assert tool["status"] == "available"
    assert tool["currentHolder"] is None
    assert tool["lastCheckinByName"] == "Unknown"
    assert tool["lastCheckinAt"] == clock().isoformat()
    assert _staff(memory_store)["assignedToolIds"] == []

    entries = _global_entries(memory_store, clock)
    assert [entry["action"] for entry in entries] == ["checkout", "checkin"]


@pytest.mark.asyncio
async def test_checkout_entry_is_written_to_both_buckets(engine, memory_store, clock):
    entry = await engine.perform_check_out("T1234", "W001", notes="Bay 3", admin_name="Dana")

    assert entry.action == "checkout"
    assert entry.tool_id == "tool-1"
    assert entry.tool_unique_id == "T1234"
    assert entry.by_staff_uid == "staff-1"
    assert entry.assigned_to_staff_uid == "staff-1"
    assert entry.timestamp == clock()
    assert entry.metadata.staff_name == "Ava Reyes"
    assert entry.metadata.tool_brand == "Makita"
    assert entry.metadata.admin_name == "Dana"

    per_tool = memory_store.peek("tools/tool-1/history", "10-2025")
    assert per_tool["monthKey"] == "10-2025"
    assert per_tool["toolUniqueId"] == "T1234"
    assert [item["id"] for item in per_tool["transactions"]] == [entry.id]

    global_bucket = memory_store.peek("tool_history/10-2025/days", "20")
    assert global_bucket["date"] == "2025-10-20"
    assert global_bucket["dayKey"] == "20"
    assert global_bucket["transactions"][0]["metadata"]["staffJobCode"] == "W001"


@pytest.mark.asyncio
async def test_typed_errors_from_perform_methods(engine, memory_store):
    with pytest.raises(NotFoundError):
        await engine.perform_check_out("T9999", "W001")
    with pytest.raises(NotFoundError):
        await engine.perform_check_out("T1234", "W999")
    with pytest.raises(AlreadyAvailableError):
        await engine.perform_check_in("T1234")

    await engine.perform_check_out("T1234", "W001")
    with pytest.raises(AlreadyCheckedOutError):
        await engine.perform_check_out("T1234", "W002")

    # Nothing was written for the failed attempts.
    assert len(_global_entries(memory_store, memory_store.clock)) == 1


@pytest.mark.asyncio
async def test_missing_documents_leave_state_untouched(engine, memory_store):
    await engine.id_cache.preload()
    await memory_store.delete_document("staff", "staff-1")

    assert await engine.check_out("T1234", "W001") is False
    assert _tool(memory_store)["status"] == "available"


@pytest.mark.asyncio
async def test_round_trip_restores_tool_and_orders_history(engine, memory_store, clock):
    start = clock()
    before = _tool(memory_store)

    assert await engine.check_out("T1234", "W001")
    clock.advance(minutes=5)
    assert await engine.check_in("T1234")

    after = _tool(memory_store)
    assert after["status"] == before["status"] == "available"
    assert after["currentHolder"] is None

    entries = await engine.history.query_range(start, clock())
    assert [entry.action for entry in entries] == ["checkin", "checkout"]
    assert entries[0].by_staff_uid == "staff-1"
    assert entries[0].metadata.staff_job_code == "W001"


@pytest.mark.asyncio
async def test_state_invariant_holds_after_every_operation(engine, memory_store, clock):
    operations = [
        engine.check_out("T1234", "W001"),
        engine.check_out("T2000", "W001"),
        engine.check_out("T3000", "W002"),
        engine.check_in("T2000"),
        engine.check_out("T2000", "W002"),
        engine.check_in("T1234"),
        engine.check_in("T1234"),
    ]
    for operation in operations:
        await operation
        clock.advance(seconds=1)
        holders = {}
        for doc_id in ("tool-1", "tool-2", "tool-3"):
            tool = _tool(memory_store, doc_id)
            assert (tool["status"] == "checked_out") == (tool.get("currentHolder") is not None)
            if tool.get("currentHolder"):
                holders.setdefault(tool["currentHolder"], set()).add(tool["uniqueId"])
        for staff_id in ("staff-1", "staff-2"):
            assert set(_staff(memory_store, staff_id)["assignedToolIds"]) == holders.get(staff_id, set())


@pytest.mark.asyncio
async def test_checkin_with_deleted_holder_records_unknown(engine, memory_store):
    await engine.perform_check_out("T1234", "W001")
    engine.id_cache.invalidate()
    await memory_store.delete_document("staff", "staff-1")

    entry = await engine.perform_check_in("T1234")

    assert entry.by_staff_uid == "unknown"
    assert entry.assigned_to_staff_uid is None
    assert entry.metadata.staff_name == "Unknown"
    assert entry.metadata.staff_job_code == "unknown"
    assert _tool(memory_store)["status"] == "available"


@pytest.mark.asyncio
async def test_batch_checkout_reports_partial_failure(engine, memory_store):
    await engine.perform_check_out("T2000", "W002")

    result = await engine.batch_check_out(["T1234", "T2000", "T3000"], "W001", notes="Night shift")

    assert result.results == {"T1234": True, "T2000": False, "T3000": True}
    assert result.succeeded == 2
    assert result.failed == 1
    assert result.all_succeeded is False
    assert len(result.errors) == 1 and result.errors[0].startswith("T2000:")
    assert result.batch_id.startswith("BATCH_")

    batch_entries = [item for item in _global_entries(memory_store, memory_store.clock) if item.get("batchId")]
    assert {item["toolUniqueId"] for item in batch_entries} == {"T1234", "T3000"}
    assert {item["batchId"] for item in batch_entries} == {result.batch_id}
    assert all(item["isBatch"] for item in batch_entries)
    assert all(item["notes"] == "BATCH: Night shift" for item in batch_entries)
    assert _tool(memory_store, "tool-2")["currentHolder"] == "staff-2"


@pytest.mark.asyncio
async def test_batch_checkin_uses_default_notes_and_dedupes(engine, memory_store):
    await engine.batch_check_out(["T1234", "T2000"], "W001")

    result = await engine.batch_check_in(["T1234", "T2000", "T1234", " T2000 "])

    assert result.results == {"T1234": True, "T2000": True}
    assert result.all_succeeded is True
    checkins = [item for item in _global_entries(memory_store, memory_store.clock) if item["action"] == "checkin"]
    assert len(checkins) == 2
    assert all(item["notes"] == f"Batch checkin ({result.batch_id})" for item in checkins)
    assert _staff(memory_store)["assignedToolIds"] == []


@pytest.mark.asyncio
async def test_concurrent_checkouts_have_one_winner(engine, memory_store):
    await engine.id_cache.preload()

    outcomes = await asyncio.gather(
        engine.check_out("T1234", "W001"),
        engine.check_out("T1234", "W002"),
        engine.check_out("T1234", "S001"),
    )

    assert sorted(outcomes) == [False, False, True]
    tool = _tool(memory_store)
    holders = [staff_id for staff_id in ("staff-1", "staff-2", "staff-9") if _staff(memory_store, staff_id)["assignedToolIds"]]
    assert holders == [tool["currentHolder"]]
    assert len(_global_entries(memory_store, memory_store.clock)) == 1


@pytest_asyncio.fixture()
async def sql_store(tmp_path, clock):
    store = SqlDocumentStore(url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", clock=clock)
    await store.create_schema()
    for doc_id, code in (("tool-1", "T1234"), ("tool-2", "T2000"), ("tool-3", "T3000")):
        await store.set_merge("tools", doc_id, {"uniqueId": code, "name": "Tool", "status": "available"})
    for doc_id, job_code in (("staff-1", "W001"), ("staff-2", "W002")):
        await store.set_merge("staff", doc_id, {"jobCode": job_code, "fullName": job_code, "assignedToolIds": []})
    try:
        yield store
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_concurrent_checkouts_on_sql_store_keep_staff_in_sync(sql_store):
    engine = TransactionEngine(sql_store)
    await engine.id_cache.preload()

    outcomes = await asyncio.gather(
        engine.check_out("T1234", "W001"),
        engine.check_out("T1234", "W002"),
        engine.check_out("T2000", "W001"),
        engine.check_out("T3000", "W002"),
    )

    assert sorted(outcomes[:2]) == [False, True]
    assert outcomes[2:] == [True, True]

    holders = {}
    for tool in await sql_store.list_documents("tools"):
        assert tool.data["status"] == "checked_out"
        holders.setdefault(tool.data["currentHolder"], set()).add(tool.data["uniqueId"])
    for staff_id in ("staff-1", "staff-2"):
        staff = await sql_store.get_document("staff", staff_id)
        assert set(staff.data["assignedToolIds"]) == holders.get(staff_id, set())
        assert len(staff.data["assignedToolIds"]) == len(holders.get(staff_id, set()))


@pytest.mark.asyncio
async def test_history_write_failure_does_not_fail_operation(clock, caplog):
    store = FlakyHistoryStore(clock=clock)
    store.put("tools", "tool-1", {"uniqueId": "T1234", "name": "Drill", "status": "available"})
    store.put("staff", "staff-1", {"jobCode": "W001", "fullName": "Ava Reyes"})
    engine = TransactionEngine(store)
    caplog.set_level(logging.ERROR, logger="toolroom.services.ledger_writer")

    assert await engine.check_out("T1234", "W001") is True

    assert store.peek("tools", "tool-1")["status"] == "checked_out"
    assert store.peek("tool_history/10-2025/days", "20") is None
    assert caplog.text.count("ledger.append_failed") == 2


@pytest.mark.asyncio
async def test_conflicts_exhausted_surface_as_conflict_error(clock):
    store = ContendedStore(clock=clock)
    store.put("tools", "tool-1", {"uniqueId": "T1234", "status": "available"})
    store.put("staff", "staff-1", {"jobCode": "W001", "fullName": "Ava Reyes"})
    engine = TransactionEngine(store)

    with pytest.raises(TransactionConflictError):
        await engine.perform_check_out("T1234", "W001")
    assert await engine.check_out("T1234", "W001") is False
    assert store.peek("tools", "tool-1")["status"] == "available"


@pytest.mark.asyncio
async def test_tool_status_info_and_assigned_tools(engine, memory_store):
    info = await engine.get_tool_status_info("T1234")
    assert info.can_check_out is True
    assert info.can_check_in is False
    assert info.assigned_staff is None

    await engine.check_out("T1234", "W001")
    await engine.check_out("T3000", "W001")

    info = await engine.get_tool_status_info("t1234")
    assert info.can_check_in is True
    assert info.assigned_staff.full_name == "Ava Reyes"
    assert info.assigned_staff_job_code == "W001"
    assert info.tool.display_name == "Makita XFD131 Drill"

    tools = await engine.get_tools_assigned_to_staff("W001")
    assert [tool.unique_id for tool in tools] == ["T1234", "T3000"]
    assert await engine.get_tools_assigned_to_staff("W404") == []
    assert await engine.get_tool_status_info("T9999") is None


@pytest.mark.asyncio
async def test_assigned_tools_include_legacy_holder_paths(engine, memory_store):
    memory_store.put("tools", "tool-4", {"uniqueId": "T4000", "name": "Level", "status": "checked_out", "currentHolder": "staff/staff-1"})
    await engine.check_out("T1234", "W001")

    tools = await engine.get_tools_assigned_to_staff("W001")

    assert [tool.unique_id for tool in tools] == ["T1234", "T4000"]
    assert tools[1].current_holder == "staff-1"
    assert await engine.get_tools_assigned_to_staff("W002") == []


@pytest.mark.asyncio
async def test_resolve_scan_payloads(engine):
    tool_scan = await engine.resolve_scan("TOOL#T2000")
    assert tool_scan.target.kind == "tool"
    assert tool_scan.tool_status.tool.id == "tool-2"

    consumable_scan = await engine.resolve_scan("CONSUMABLE#c0001")
    assert consumable_scan.consumable.name == "Gloves"

    bare = await engine.resolve_scan("  T3000 ")
    assert bare.found and bare.tool_status.tool.unique_id == "T3000"

    unknown = await engine.resolve_scan("XYZ-1")
    assert unknown.target.kind == "unknown"
    assert unknown.found is False

    assert await engine.resolve_scan("   ") is None


@pytest.mark.asyncio
async def test_scan_kind_decides_which_collection_is_searched(engine, memory_store):
    memory_store.put("tools", "tool-8", {"uniqueId": "X100", "name": "Hoist"})
    memory_store.put("consumables", "cons-8", {"uniqueId": "Z200", "name": "Rags"})
    memory_store.put("consumables", "cons-9", {"uniqueId": "T9001", "name": "Tape Roll"})

    assert (await engine.resolve_scan("X100")).tool_status.tool.id == "tool-8"
    assert (await engine.resolve_scan("Z200")).consumable.id == "cons-8"

    # A leading T means a tool, so a consumable with that code is never tried.
    tool_kind = await engine.resolve_scan("T9001")
    assert tool_kind.target.kind == "tool"
    assert tool_kind.found is False
    assert tool_kind.consumable is None


@pytest.mark.asyncio
async def test_history_convenience_views(engine, memory_store, clock):
    await engine.check_out("T1234", "W001")
    clock.advance(hours=1)
    await engine.check_out("T2000", "W002")
    clock.advance(hours=1)
    await engine.check_in("T1234")

    tool_history = await engine.get_tool_history("T1234")
    assert [entry.action for entry in tool_history] == ["checkin", "checkout"]

    staff_history = await engine.get_staff_history("W002")
    assert [entry.tool_unique_id for entry in staff_history] == ["T2000"]

    assert len(await engine.get_today_transactions()) == 3
    assert len(await engine.get_recent_transactions(limit=2)) == 2
    assert await engine.get_tool_history("T9999") == []
    assert await engine.get_staff_history("W999") == []

    clock.advance(days=2)
    assert await engine.get_recent_transactions() == []
    assert len(await engine.get_staff_history("W001", days_back=3)) == 2
