import asyncio
import os
import sys
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from frontdesk.dependencies.services import get_backend_client_cached, get_dashboard_cached
from frontdesk.main import app
from frontdesk.services.mock_store import get_mock_store, reset_mock_store


@pytest.fixture(autouse=True)
def _reset_state() -> None:
    reset_mock_store()
    get_dashboard_cached.cache_clear()
    get_backend_client_cached.cache_clear()
    yield
    reset_mock_store()
    get_dashboard_cached.cache_clear()
    get_backend_client_cached.cache_clear()


def test_all_appointments_view_returns_first_page() -> None:
    client = TestClient(app)

    response = client.get("/tools/views/all-appointments")

    assert response.status_code == 200
    payload = response.json()
    assert payload["view_id"] == "all-appointments"
    assert payload["page"] == 0
    assert payload["size"] == 9
    assert payload["total_elements"] == 7
    assert len(payload["items"]) == 7


def test_page_change_sets_cursor() -> None:
    client = TestClient(app)

    response = client.post("/tools/views/all-appointments/page", json={"page": 1, "size": 5})

    assert response.status_code == 200
    payload = response.json()
    assert payload["page"] == 1
    assert payload["size"] == 5
    assert payload["total_pages"] == 2
    assert len(payload["items"]) == 2


def test_statistics_endpoint_reports_counters() -> None:
    client = TestClient(app)

    response = client.get("/tools/views/statistics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_customers"] == 6
    assert payload["total_today_appointments"] == 5
    assert payload["total_pending_payments"] == 2
    assert payload["total_daily_income"] == 1500.0


def test_available_slots_endpoint() -> None:
    client = TestClient(app)
    today = get_mock_store().appointments.today().isoformat()

    response = client.post(
        "/tools/slots/available",
        json={"date": today, "resource_id": "201", "duration_minutes": 60},
    )

    assert response.status_code == 200
    labels = [slot["label"] for slot in response.json()["slots"]]
    assert "9:00 AM" in labels
    assert "9:30 AM" not in labels
    assert "10:00 AM" not in labels
    assert "4:00 PM" in labels


def test_available_slots_rejects_non_positive_duration() -> None:
    client = TestClient(app)

    response = client.post(
        "/tools/slots/available",
        json={"date": "2025-09-22", "resource_id": "201", "duration_minutes": 0},
    )

    assert response.status_code == 422


def test_cancel_then_read_back() -> None:
    client = TestClient(app)

    response = client.post("/tools/appointments/1/cancel", json={"reason": "Customer called"})
    assert response.status_code == 200
    assert response.json()["action"] == "cancel"

    detail = client.get("/tools/appointments/1")
    assert detail.status_code == 200
    assert detail.json()["status"] == "cancelled"

    again = client.post("/tools/appointments/1/cancel", json={})
    assert again.status_code == 409


def test_unknown_appointment_is_not_found() -> None:
    client = TestClient(app)

    response = client.get("/tools/appointments/999")

    assert response.status_code == 404


def test_precheck_endpoint() -> None:
    client = TestClient(app)
    client.get("/tools/views/all-appointments")

    response = client.get("/tools/appointments/7/precheck/cancel")

    assert response.status_code == 200
    assert response.json() == {
        "allowed": False,
        "code": "INVALID_STATUS",
        "reason": "Cannot cancel an appointment that is cancelled",
    }


def test_search_uses_ledger() -> None:
    client = TestClient(app)
    client.get("/tools/views/all-appointments")

    response = client.get("/tools/views/search", params={"q": "kasun"})

    assert response.status_code == 200
    assert {item["customer_name"] for item in response.json()} == {"Kasun Silva"}
    assert len(response.json()) == 2


def test_channel_status_and_health() -> None:
    client = TestClient(app)

    status = client.get("/tools/channel/status")
    health = client.get("/health")

    assert status.status_code == 200
    assert status.json()["state"] == "disconnected"
    assert health.json() == {"ok": True, "mock_data": True, "channel": "closed"}


def test_concurrent_statistics_requests_all_get_counters() -> None:
    async def scenario():
        dashboard = get_dashboard_cached()
        return await asyncio.gather(dashboard.get_statistics(), dashboard.get_statistics())

    results = asyncio.run(scenario())

    assert all(result is not None for result in results)
    assert [result.total_customers for result in results] == [6, 6]


def test_book_appointment_endpoint() -> None:
    client = TestClient(app)
    tomorrow = get_mock_store().appointments.today() + timedelta(days=1)
    body = {
        "customer_name": "Amaya Perera",
        "customer_phone": "0700000000",
        "start": f"{tomorrow.isoformat()}T09:00:00+05:30",
        "resource_id": "201",
        "services": [{"id": 11, "name": "Haircut", "durationMinutes": 30, "price": 1500.0}],
    }

    hint = client.post("/tools/appointments/book/precheck", json=body)
    response = client.post("/tools/appointments/book", json=body)

    assert hint.json()["allowed"] is True
    assert response.status_code == 200
    created = response.json()["appointment_id"]
    detail = client.get(f"/tools/appointments/{created}")
    assert detail.json()["customer_name"] == "Amaya Perera"

    clash = client.post("/tools/appointments/book", json=body)
    assert clash.status_code == 422
