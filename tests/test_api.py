import pytest
from fastapi.testclient import TestClient

from toolroom import create_app
from toolroom.core.config import settings
from toolroom.core.security import issue_tokens

ADMIN = {"X-API-Key": "test-key"}


@pytest.fixture()
def client(memory_store):
    app = create_app(memory_store)
    with TestClient(app) as test_client:
        yield test_client


def _bearer(role, name=None):
    pair = issue_tokens(f"{role}-device", role=role, name=name)
    return {"Authorization": f"Bearer {pair.access_token}"}


def test_checkout_and_checkin_round_trip(client, memory_store, clock):
    response = client.post(
        "/api/v1/tools/T1234/checkout",
        json={"staff_job_code": "W001", "notes": "Bay 3"},
        headers=_bearer("supervisor", name="Cleo Park"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["action"] == "checkout"
    assert body["metadata"]["admin_name"] == "Cleo Park"
    assert body["supervisor_id"] == "jwt:supervisor-device"
    assert memory_store.peek("tools", "tool-1")["currentHolder"] == "staff-1"

    status = client.get("/api/v1/tools/T1234/status", headers=_bearer("worker"))
    assert status.status_code == 200
    assert status.json()["can_check_in"] is True
    assert status.json()["assigned_staff_job_code"] == "W001"

    clock.advance(minutes=30)

    response = client.post("/api/v1/tools/T1234/checkin", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["action"] == "checkin"

    history = client.get("/api/v1/tools/T1234/history", headers=ADMIN)
    assert [item["action"] for item in history.json()] == ["checkin", "checkout"]


def test_errors_use_envelope(client):
    missing = client.post("/api/v1/tools/T9999/checkout", json={"staff_job_code": "W001"}, headers=ADMIN)
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"

    client.post("/api/v1/tools/T1234/checkout", json={"staff_job_code": "W001"}, headers=ADMIN)
    again = client.post("/api/v1/tools/T1234/checkout", json={"staff_job_code": "W002"}, headers=ADMIN)
    assert again.status_code == 409
    assert again.json()["code"] == "already_checked_out"

    available = client.post("/api/v1/tools/T2000/checkin", headers=ADMIN)
    assert available.status_code == 409
    assert available.json()["code"] == "already_available"

    invalid = client.post("/api/v1/tools/T2000/checkout", json={}, headers=ADMIN)
    assert invalid.status_code == 422
    assert invalid.json()["code"] == "validation_error"

    unknown_status = client.get("/api/v1/tools/T9999/status", headers=ADMIN)
    assert unknown_status.status_code == 404
    assert unknown_status.json()["code"] == "http_error"


def test_batch_endpoints_report_per_item_results(client):
    client.post("/api/v1/tools/T2000/checkout", json={"staff_job_code": "W002"}, headers=ADMIN)

    response = client.post(
        "/api/v1/tools/batch/checkout",
        json={"tool_ids": ["T1234", "T2000", "T3000"], "staff_job_code": "W001"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["results"] == {"T1234": True, "T2000": False, "T3000": True}
    assert body["succeeded"] == 2 and body["failed"] == 1
    assert body["all_succeeded"] is False

    assigned = client.get("/api/v1/staff/W001/tools", headers=ADMIN)
    assert [tool["unique_id"] for tool in assigned.json()] == ["T1234", "T3000"]

    checkin = client.post("/api/v1/tools/batch/checkin", json={"tool_ids": ["T1234", "T3000"]}, headers=ADMIN)
    assert checkin.json()["all_succeeded"] is True

    empty = client.post("/api/v1/tools/batch/checkin", json={"tool_ids": ["  "]}, headers=ADMIN)
    assert empty.status_code == 422


def test_role_gates(client):
    worker = _bearer("worker")

    denied = client.post("/api/v1/tools/T1234/checkout", json={"staff_job_code": "W001"}, headers=worker)
    assert denied.status_code == 403

    assert client.get("/api/v1/history/today", headers=worker).status_code == 200
    assert client.get("/api/v1/reports/consumables", headers=worker).status_code == 403
    assert client.get("/api/v1/reports/consumables", headers=_bearer("supervisor")).status_code == 200
    assert client.post("/api/v1/admin/id-cache/invalidate", headers=_bearer("supervisor")).status_code == 403

    assert client.get("/api/v1/history/today").status_code == 401
    assert client.get("/api/v1/history/today", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get("/api/v1/history/today", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_open_access_role_when_no_api_key(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "")

    assert client.get("/api/v1/tools/T1234/status").status_code == 200
    denied = client.post("/api/v1/tools/T1234/checkout", json={"staff_job_code": "W001"})
    assert denied.status_code == 403


def test_token_exchange_and_refresh(client):
    issued = client.post("/api/v1/auth/token", json={"apiKey": "test-key", "subject": "kiosk-1", "role": "worker"})
    assert issued.status_code == 200
    tokens = issued.json()
    assert tokens["role"] == "worker"

    status = client.get("/api/v1/tools/T1234/status", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert status.status_code == 200

    refreshed = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["role"] == "worker"

    rejected = client.post("/api/v1/auth/token", json={"apiKey": "nope"})
    assert rejected.status_code == 401

    # Refresh tokens cannot be used as access tokens.
    misuse = client.get("/api/v1/history/today", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert misuse.status_code == 401


def test_scan_and_history_queries(client):
    scan = client.post("/api/v1/scan", json={"payload": "TOOL#T1234"}, headers=ADMIN)
    assert scan.status_code == 200
    assert scan.json()["kind"] == "tool"
    assert scan.json()["tool_status"]["tool"]["display_name"] == "Makita XFD131 Drill"

    consumable = client.post("/api/v1/scan", json={"payload": "CONSUMABLE#C0001"}, headers=ADMIN)
    assert consumable.json()["consumable"]["stock_level"] == "low"

    client.post("/api/v1/tools/T1234/checkout", json={"staff_job_code": "W001"}, headers=ADMIN)
    client.post("/api/v1/tools/T2000/checkout", json={"staff_job_code": "W002"}, headers=ADMIN)

    by_staff = client.get("/api/v1/history", params={"staff": "W002"}, headers=ADMIN)
    assert [item["tool_unique_id"] for item in by_staff.json()] == ["T2000"]

    by_tool = client.get("/api/v1/history", params={"tool": "T1234", "action": "checkout"}, headers=ADMIN)
    assert len(by_tool.json()) == 1

    unknown_staff = client.get("/api/v1/history", params={"staff": "W404"}, headers=ADMIN)
    assert unknown_staff.json() == []

    staff_history = client.get("/api/v1/staff/W001/history", headers=ADMIN)
    assert [item["tool_unique_id"] for item in staff_history.json()] == ["T1234"]

    assert client.get("/api/v1/staff/W404/tools", headers=ADMIN).status_code == 404
    assert len(client.get("/api/v1/history/recent", headers=ADMIN).json()) == 2


def test_reports_and_admin_endpoints(client, memory_store):
    client.post("/api/v1/tools/T1234/checkout", json={"staff_job_code": "W001"}, headers=ADMIN)
    client.post("/api/v1/tools/T1234/checkin", headers=ADMIN)

    report = client.get("/api/v1/reports/transactions", headers=ADMIN)
    assert report.status_code == 200
    assert report.json()["counts"] == {"total": 2, "checkouts": 1, "checkins": 1}

    stock = client.get("/api/v1/reports/consumables", headers=ADMIN).json()
    assert stock["counts"] == {"low_stock": 2, "out_of_stock": 1, "overstocked": 1}

    preload = client.post("/api/v1/admin/id-cache/preload", headers=ADMIN)
    assert preload.json() == {"tools": 3, "staff": 3}
    invalidated = client.post("/api/v1/admin/id-cache/invalidate", headers=ADMIN)
    assert invalidated.json() == {"tools": 0, "staff": 0}

    purge = client.delete(
        "/api/v1/admin/history",
        params={"before": "2025-10-21T00:00:00-05:00", "since": "2025-10-19T00:00:00-05:00"},
        headers=ADMIN,
    )
    assert purge.status_code == 200
    assert purge.json()["deleted"] == 1
    assert memory_store.peek("tool_history/10-2025/days", "20") is None

    bad_purge = client.delete("/api/v1/admin/history", params={"before": "2025-10-01T00:00:00", "since": "2025-10-02T00:00:00"}, headers=ADMIN)
    assert bad_purge.status_code == 400


def test_store_failures_map_to_503(client, memory_store, monkeypatch):
    from toolroom.core.errors import StoreError

    async def broken(*args, **kwargs):
        raise StoreError("disk on fire")

    monkeypatch.setattr(memory_store, "get_document", broken)

    response = client.get("/api/v1/history/today", headers=ADMIN)
    assert response.status_code == 503
    assert response.json()["code"] == "store_unavailable"


def test_responses_carry_request_id_and_no_store(client):
    response = client.get("/api/v1/history/today", headers={**ADMIN, "X-Request-ID": "scan-77"})

    assert response.headers["X-Request-ID"] == "scan-77"
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert client.get("/api/v1/history/today", headers=ADMIN).headers["X-Request-ID"]


def test_oversized_history_ranges_are_rejected(client):
    history = client.get("/api/v1/history", params={"start": "1900-01-01T00:00:00"}, headers=ADMIN)
    assert history.status_code == 400
    assert history.json()["code"] == "range_too_large"
    assert history.json()["details"]["max_days"] == settings.HISTORY_MAX_RANGE_DAYS

    report = client.get(
        "/api/v1/reports/transactions",
        params={"start": "2020-01-01T00:00:00", "end": "2025-10-20T00:00:00"},
        headers=ADMIN,
    )
    assert report.status_code == 400
    assert report.json()["code"] == "range_too_large"


def test_consumable_usage_and_restock(client, memory_store):
    supervisor = _bearer("supervisor")

    used = client.post(
        "/api/v1/consumables/C0003/usage",
        json={"quantity": 20, "staff_job_code": "W001", "project_name": "Line 4"},
        headers=supervisor,
    )
    assert used.status_code == 200
    assert used.json()["action"] == "usage"
    assert used.json()["quantity_after"] == 100
    assert used.json()["recorded_by"] == "jwt:supervisor-device"

    short = client.post("/api/v1/consumables/C0001/usage", json={"quantity": 4, "staff_job_code": "W001"}, headers=supervisor)
    assert short.status_code == 409
    assert short.json()["code"] == "insufficient_quantity"
    assert memory_store.peek("consumables", "cons-1")["currentQuantity"] == 3

    denied = client.post("/api/v1/consumables/C0003/usage", json={"quantity": 1, "staff_job_code": "W001"}, headers=_bearer("worker"))
    assert denied.status_code == 403

    restocked = client.post("/api/v1/consumables/C0002/restock", json={"quantity": 6, "approved_by_job_code": "S001"}, headers=ADMIN)
    assert restocked.status_code == 200
    assert restocked.json()["approved_by"] == "staff-9"

    batch = client.post(
        "/api/v1/consumables/batch/restock",
        json={"items": [{"code": "C0001", "quantity": 10}, {"code": "C9999", "quantity": 1}]},
        headers=supervisor,
    )
    assert batch.status_code == 200
    assert batch.json()["results"] == {"C0001": True, "C9999": False}

    worker = _bearer("worker")
    assert client.get("/api/v1/consumables/c0001", headers=worker).json()["current_quantity"] == 13
    assert client.get("/api/v1/consumables/C9999", headers=worker).status_code == 404
    assert len(client.get("/api/v1/consumables", headers=worker).json()) == 3
    history = client.get("/api/v1/consumables/C0003/history", headers=worker).json()
    assert [item["quantity_change"] for item in history] == [-20]
    usage = client.get("/api/v1/staff/W001/consumables", headers=worker).json()
    assert [item["consumable_unique_id"] for item in usage] == ["C0003"]
    assert client.get("/api/v1/staff/W404/consumables", headers=worker).status_code == 404
