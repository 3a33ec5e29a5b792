"""Integration tests for API endpoints"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from openfinance_gateway.domain.exceptions import BackendAPIError
from openfinance_gateway.domain.models import LinkedItem
from openfinance_gateway.infrastructure.clients.backend import ConnectTokenResponse, SyncResponse
from openfinance_gateway.services.quota_manager import QuotaManager


def start_session(client: TestClient, user_id: str = "user-1", plan: str = "pro") -> dict:
    response = client.post("/v1/connections/sessions", json={"user_id": user_id, "plan": plan})
    assert response.status_code == 201
    return response.json()


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "openfinance_quota_rejections" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"
    assert client.get("/health").headers["X-Request-ID"]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_start_session_ready(client: TestClient):
    """Test POST /v1/connections/sessions mints a connect token"""
    data = start_session(client)

    assert data["phase"] == "ready"
    assert data["connect_token"] == "connect-token-123"
    assert data["session_id"]
    assert data["linked_items"] == []


def test_start_session_with_existing_items(client: TestClient, backend: AsyncMock):
    backend.create_token.return_value = ConnectTokenResponse(
        access_token="t", existing_items=[LinkedItem(id="item-X", connector_name="Itaú")]
    )

    data = start_session(client)

    assert data["phase"] == "manage"
    assert data["linked_items"][0]["id"] == "item-X"
    assert data["linked_items"][0]["connector_name"] == "Itaú"


def test_start_session_token_failure(client: TestClient, backend: AsyncMock):
    backend.create_token.side_effect = BackendAPIError("down")

    data = start_session(client)

    assert data["phase"] == "error"
    assert data["error"]["category"] == "retryable"


def test_full_connection_flow(client: TestClient, backend: AsyncMock, sync_entries: list):
    """Test open -> success syncs accounts and spends one credit"""
    backend.sync_item.return_value = SyncResponse(accounts=sync_entries)
    backend.list_items.return_value = [LinkedItem(id="item-1", connector_name="Nubank")]
    session_id = start_session(client)["session_id"]

    opened = client.post(f"/v1/connections/sessions/{session_id}/open")
    assert opened.status_code == 200
    assert opened.json()["phase"] == "widget-open"

    response = client.post(
        f"/v1/connections/sessions/{session_id}/success", json={"item": {"id": "item-1"}}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["phase"] == "success"
    assert data["item_id"] == "item-1"
    assert data["summary"] == {"checking": 1, "savings": 0, "credit": 1}
    assert [account["id"] for account in data["accounts"]] == ["acc-checking", "acc-credit"]
    credit = data["accounts"][1]
    assert credit["name"] == "Mastercard Ultravioleta"
    assert credit["closing_day"] == 25
    assert credit["due_day"] == 5
    assert [bill["id"] for bill in credit["bills"]] == ["b1", "b2"]

    quota = client.get("/v1/quota", params={"user_id": "user-1", "plan": "pro"}).json()
    assert quota["used_today"] == 1
    assert quota["remaining"] == 2

    # Replayed callback is ignored
    client.post(f"/v1/connections/sessions/{session_id}/success", json={"item": {"id": "item-1"}})
    assert backend.sync_item.await_count == 1


def test_open_when_quota_exhausted(client: TestClient, session_factory):
    # Same defaults the API uses: 3 per day, São Paulo time
    manager = QuotaManager(session_factory)
    for _ in range(manager.max_per_day):
        manager.consume_credit("user-1")
    session_id = start_session(client)["session_id"]

    data = client.post(f"/v1/connections/sessions/{session_id}/open").json()

    assert data["phase"] == "error"
    assert data["error"]["code"] == "DAILY_LIMIT_REACHED"
    assert data["error"]["can_retry"] is False


def test_open_with_starter_plan(client: TestClient):
    session_id = start_session(client, plan="starter")["session_id"]

    data = client.post(f"/v1/connections/sessions/{session_id}/open").json()

    assert data["error"]["code"] == "PLAN_NOT_ELIGIBLE"


def test_open_twice_conflicts(client: TestClient):
    session_id = start_session(client)["session_id"]
    client.post(f"/v1/connections/sessions/{session_id}/open")

    response = client.post(f"/v1/connections/sessions/{session_id}/open")

    assert response.status_code == 409


def test_widget_duplicate_error_opens_manage(client: TestClient, backend: AsyncMock):
    backend.list_items.side_effect = BackendAPIError("boom", status_code=500)
    session_id = start_session(client)["session_id"]
    client.post(f"/v1/connections/sessions/{session_id}/open")

    response = client.post(
        f"/v1/connections/sessions/{session_id}/error",
        json={"code": "ITEM_USER_ALREADY_EXISTS", "data": {"item": {"id": "item-Y"}}},
    )

    data = response.json()
    assert data["phase"] == "manage"
    assert data["linked_items"] == [
        {"id": "item-Y", "connector_name": None, "connector_image_url": None, "status": None, "orphan": True}
    ]


def test_widget_fatal_error_then_retry(client: TestClient):
    session_id = start_session(client)["session_id"]
    client.post(f"/v1/connections/sessions/{session_id}/open")

    failed = client.post(f"/v1/connections/sessions/{session_id}/error", json={"code": "LOGIN_TIMEOUT"}).json()
    assert failed["phase"] == "error"
    assert failed["error"]["category"] == "fatal"

    retried = client.post(f"/v1/connections/sessions/{session_id}/retry").json()
    assert retried["phase"] == "ready"
    assert retried["error"] is None


def test_unknown_session(client: TestClient):
    assert client.get("/v1/connections/sessions/nope").status_code == 404
    assert client.post("/v1/connections/sessions/nope/open").status_code == 404


def test_session_delete_keeps_manage_view(client: TestClient, backend: AsyncMock):
    backend.create_token.return_value = ConnectTokenResponse(
        access_token="t1", existing_items=[LinkedItem(id="item-X"), LinkedItem(id="item-Z")]
    )
    session_id = start_session(client)["session_id"]

    response = client.delete(f"/v1/connections/sessions/{session_id}/items/item-X")

    assert response.status_code == 200
    data = response.json()
    assert data["phase"] == "manage"
    assert [item["id"] for item in data["linked_items"]] == ["item-Z"]
    backend.delete_item.assert_awaited_once_with("item-X", "user-1")


def test_session_delete_last_item_restarts_flow(client: TestClient, backend: AsyncMock):
    backend.create_token.side_effect = [
        ConnectTokenResponse(access_token="t1", existing_items=[LinkedItem(id="item-X")]),
        ConnectTokenResponse(access_token="t2"),
    ]
    session_id = start_session(client)["session_id"]

    data = client.delete(f"/v1/connections/sessions/{session_id}/items/item-X").json()

    assert data["phase"] == "ready"
    assert data["connect_token"] == "t2"
    assert data["linked_items"] == []
    assert client.get(f"/v1/connections/sessions/{session_id}").json()["phase"] == "ready"


def test_session_delete_orphan_from_duplicate_error(client: TestClient, backend: AsyncMock):
    backend.list_items.side_effect = BackendAPIError("boom", status_code=500)
    session_id = start_session(client)["session_id"]
    client.post(f"/v1/connections/sessions/{session_id}/open")
    client.post(
        f"/v1/connections/sessions/{session_id}/error",
        json={"code": "ITEM_USER_ALREADY_EXISTS", "data": {"item": {"id": "item-Y"}}},
    )

    data = client.delete(f"/v1/connections/sessions/{session_id}/items/item-Y").json()

    backend.delete_item.assert_awaited_once_with("item-Y", "user-1")
    assert data["phase"] == "ready"
    assert data["linked_items"] == []


def test_session_delete_backend_error(client: TestClient, backend: AsyncMock):
    backend.create_token.return_value = ConnectTokenResponse(
        access_token="t1", existing_items=[LinkedItem(id="item-X")]
    )
    backend.delete_item.side_effect = BackendAPIError("not found", status_code=404)
    session_id = start_session(client)["session_id"]

    response = client.delete(f"/v1/connections/sessions/{session_id}/items/item-X")

    assert response.status_code == 502
    session = client.get(f"/v1/connections/sessions/{session_id}").json()
    assert [item["id"] for item in session["linked_items"]] == ["item-X"]


def test_session_delete_unknown_session(client: TestClient):
    assert client.delete("/v1/connections/sessions/nope/items/item-X").status_code == 404


def test_close_session(client: TestClient):
    session_id = start_session(client)["session_id"]

    assert client.delete(f"/v1/connections/sessions/{session_id}").status_code == 204
    assert client.get(f"/v1/connections/sessions/{session_id}").status_code == 404


def test_start_session_validation(client: TestClient):
    response = client.post("/v1/connections/sessions", json={"user_id": ""})
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def test_list_items(client: TestClient, backend: AsyncMock):
    backend.list_items.return_value = [LinkedItem(id="item-1", connector_name="Nubank", status="UPDATED")]

    data = client.get("/v1/connections/items", params={"user_id": "user-1"}).json()

    assert data["authoritative"] is True
    assert data["items"][0]["connector_name"] == "Nubank"


def test_list_items_forbidden_uses_mirror(client: TestClient, backend: AsyncMock):
    backend.list_items.side_effect = BackendAPIError("forbidden", status_code=403)
    backend.list_db_items.return_value = [LinkedItem(id="item-9", connector_name="Itaú")]

    response = client.get("/v1/connections/items", params={"user_id": "user-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["authoritative"] is False
    assert [item["id"] for item in data["items"]] == ["item-9"]


@pytest.mark.parametrize("status_code,expected", [(500, 502), (None, 503)])
def test_list_items_backend_failure(client: TestClient, backend: AsyncMock, status_code, expected):
    backend.list_items.side_effect = BackendAPIError("boom", status_code=status_code)
    backend.list_db_items.side_effect = BackendAPIError("also down")

    response = client.get("/v1/connections/items", params={"user_id": "user-1"})

    assert response.status_code == expected


def test_delete_last_item(client: TestClient, backend: AsyncMock):
    backend.list_items.return_value = [LinkedItem(id="item-1")]

    response = client.delete("/v1/connections/items/item-1", params={"user_id": "user-1"})

    assert response.status_code == 200
    assert response.json() == {"item_id": "item-1", "deleted": True, "remaining": 0, "connect_new": True}
    backend.delete_item.assert_awaited_once_with("item-1", "user-1")


def test_delete_item_when_listing_fails(client: TestClient, backend: AsyncMock):
    """Test an unloaded list never tells the UI to start over"""
    backend.list_items.side_effect = BackendAPIError("connection refused")
    backend.list_db_items.side_effect = BackendAPIError("connection refused")

    response = client.delete("/v1/connections/items/item-A", params={"user_id": "u1"})

    assert response.status_code == 200
    assert response.json() == {"item_id": "item-A", "deleted": True, "remaining": None, "connect_new": False}
    backend.delete_item.assert_awaited_once_with("item-A", "u1")


def test_delete_one_of_several_items(client: TestClient, backend: AsyncMock):
    backend.list_items.return_value = [LinkedItem(id="item-1"), LinkedItem(id="item-2")]

    data = client.delete("/v1/connections/items/item-1", params={"user_id": "user-1"}).json()

    assert data["remaining"] == 1
    assert data["connect_new"] is False


def test_delete_item_backend_error(client: TestClient, backend: AsyncMock):
    backend.delete_item.side_effect = BackendAPIError("not found", status_code=404)

    response = client.delete("/v1/connections/items/item-1", params={"user_id": "user-1"})

    assert response.status_code == 502


def test_refresh_item(client: TestClient, backend: AsyncMock):
    response = client.post("/v1/connections/items/item-1/refresh", json={"user_id": "user-1", "plan": "pro"})

    assert response.status_code == 202
    assert response.json() == {"item_id": "item-1", "status": "queued"}
    backend.trigger_sync.assert_awaited_once_with("item-1", "user-1")
    quota = client.get("/v1/quota", params={"user_id": "user-1", "plan": "pro"}).json()
    assert quota["used_today"] == 1


def test_refresh_item_quota_exhausted(client: TestClient, backend: AsyncMock):
    response = client.post("/v1/connections/items/item-1/refresh", json={"user_id": "user-1", "plan": "starter"})

    assert response.status_code == 429
    backend.trigger_sync.assert_not_awaited()


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


def test_quota_loading_without_user(client: TestClient):
    data = client.get("/v1/quota").json()
    assert data["state"] == "loading"
    assert data["user_id"] is None


def test_quota_states(client: TestClient):
    available = client.get("/v1/quota", params={"user_id": "user-1", "plan": "pro"}).json()
    assert available["state"] == "available"
    assert available["remaining"] == 3
    assert available["resets_at"]

    starter = client.get("/v1/quota", params={"user_id": "user-1", "plan": "starter"}).json()
    assert starter["state"] == "exhausted"
