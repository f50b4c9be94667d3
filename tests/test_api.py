"""
Tests for the HTTP transport.

The flows are covered in test_orchestrator; these only check the wiring:
headers become a RequestContext and ApiResponse status codes reach the
client.
"""

import asyncio

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from expense_tracker.api import create_app
from expense_tracker.api.app import stream_events
from expense_tracker.config import AppSettings
from expense_tracker.models.events import ChangeEventBuilder
from expense_tracker.notifications import NotificationChannel
from expense_tracker.orchestrator import BudgetFlow, ExpenseFlow
from expense_tracker.services.storage import InMemoryBudgetStorage, InMemoryExpenseStorage


ALICE = {"X-User-Id": "uid-alice", "X-User-Name": "Alice"}
BOB = {"X-User-Id": "uid-bob", "X-User-Name": "Bob"}

COFFEE = {
    "name": "Coffee",
    "amount": 50,
    "category": "Food",
    "description": "",
    "date": "2024-01-01",
}


@pytest.fixture
def client(app_settings):
    expense_storage = InMemoryExpenseStorage()
    channel = NotificationChannel()
    app = create_app(
        ExpenseFlow(expense_storage, channel=channel, settings=app_settings),
        BudgetFlow(InMemoryBudgetStorage(), expense_storage, channel=channel, settings=app_settings),
        channel,
    )
    # One portal for HTTP and websocket traffic, so both share an event loop
    with TestClient(app) as test_client:
        yield test_client


def _create(client, headers=ALICE, **overrides):
    response = client.post("/expenses", json={**COFFEE, **overrides}, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]["id"]


class TestExpenseRoutes:

    def test_missing_identity(self, client):
        response = client.get("/expenses")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing uid"

    def test_create_and_list(self, client):
        _create(client)

        response = client.get("/expenses", headers=ALICE)

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "success"
        assert body["message"] == "1 item"
        assert body["data"][0]["name"] == "Coffee"

    def test_validation_error(self, client):
        response = client.post("/expenses", json={"name": "Coffee"}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["status"] == "error"
        assert "Amount is required" in response.json()["message"]

    def test_update_and_history(self, client):
        expense_id = _create(client)

        updated = client.put(f"/expenses/{expense_id}", json={**COFFEE, "amount": 75}, headers=ALICE)
        history = client.get(f"/expenses/{expense_id}/history", headers=ALICE)

        assert updated.json()["data"]["changes"] == ["Amount: 50 → 75"]
        assert history.json()["data"][0]["editor_name"] == "Alice"
        assert client.get("/history", headers=ALICE).json()["data"][0]["id"] == expense_id

    def test_other_user_is_forbidden(self, client):
        expense_id = _create(client)

        assert client.put(f"/expenses/{expense_id}", json=COFFEE, headers=BOB).status_code == 403
        assert client.delete(f"/expenses/{expense_id}", headers=BOB).status_code == 403
        assert client.get(f"/expenses/{expense_id}", headers=BOB).status_code == 403

    def test_delete(self, client):
        expense_id = _create(client)

        assert client.delete(f"/expenses/{expense_id}", headers=ALICE).status_code == 200
        assert client.get(f"/expenses/{expense_id}", headers=ALICE).status_code == 404


class TestBudgetRoutes:

    def test_set_get_and_reset(self, client):
        assert client.put("/budget", json={"amount": 1000}, headers=ALICE).status_code == 200
        _create(client, amount=850)

        status = client.get("/budget", headers=ALICE).json()["data"]["status"]
        assert status["tier"] == "warning"
        assert status["percentage"] == 85

        assert client.delete("/budget", headers=ALICE).json()["message"] == "Budget reset"
        assert client.get("/budget", headers=ALICE).json()["data"]["status"]["tier"] == "unset"

    def test_reset_flag(self, client):
        client.put("/budget", json={"amount": 1000}, headers=ALICE)

        response = client.put("/budget", json={"reset": True}, headers=ALICE)

        assert response.json()["message"] == "Budget reset"

    def test_invalid_amount(self, client):
        response = client.put("/budget", json={"amount": "lots"}, headers=ALICE)
        assert response.status_code == 400

    def test_budget_without_status(self, client):
        client.put("/budget", json={"amount": 1000}, headers=ALICE)

        data = client.get("/budget", params={"include_status": "false"}, headers=ALICE).json()["data"]

        assert data["amount"] == "1000"
        assert "status" not in data

    def test_dashboard(self, client):
        client.put("/budget", json={"amount": 100}, headers=ALICE)
        _create(client, amount=150)

        data = client.get("/dashboard", headers=ALICE).json()["data"]

        assert data["by_category"]["Over Budget"] == "50"
        assert data["status_message"] == "Budget exceeded! You spent 50.00 over the limit."


class TestLiveUpdates:

    def test_owner_receives_events(self, client):
        with client.websocket_connect("/ws?uid=uid-alice") as websocket:
            expense_id = _create(client)

            message = websocket.receive_json()

        assert message["event"] == "expenses-changed"
        assert message["action"] == "created"
        assert message["uid"] == "uid-alice"
        assert message["id"] == expense_id

    def test_only_own_events_are_pushed(self, client):
        with client.websocket_connect("/ws?uid=uid-alice") as websocket:
            _create(client, headers=BOB)
            client.put("/budget", json={"amount": 10}, headers=ALICE)

            message = websocket.receive_json()

        # Bob's expense never arrives; the first message is Alice's budget
        assert message["event"] == "budget-changed"
        assert message["amount"] == "10"


class StalledSocket:
    """Every send fails; the client never sends or disconnects."""

    async def send_json(self, data):
        raise RuntimeError("socket closed")

    async def receive_text(self):
        await asyncio.Event().wait()


class LeavingSocket:
    """Takes what is sent, then the client disconnects."""

    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    async def receive_text(self):
        await asyncio.sleep(0)
        raise WebSocketDisconnect(code=1000)


class TestStreamEvents:

    @pytest.mark.asyncio
    async def test_failed_send_ends_the_stream(self):
        channel = NotificationChannel()
        subscription = channel.subscribe("uid-alice")
        channel.publish(ChangeEventBuilder.expense_deleted("uid-alice", "exp-1"))

        await asyncio.wait_for(stream_events(StalledSocket(), subscription), timeout=1)

        assert subscription.closed

    @pytest.mark.asyncio
    async def test_disconnect_ends_the_stream(self):
        channel = NotificationChannel()
        subscription = channel.subscribe("uid-alice")
        channel.publish(ChangeEventBuilder.expense_deleted("uid-alice", "exp-1"))
        socket = LeavingSocket()

        await asyncio.wait_for(stream_events(socket, subscription), timeout=1)

        assert subscription.closed
        assert socket.sent == [
            {"event": "expenses-changed", "action": "deleted", "uid": "uid-alice", "id": "exp-1"}
        ]


class TestAppSettings:

    def _build(self, settings):
        expense_storage = InMemoryExpenseStorage()
        channel = NotificationChannel()
        return create_app(
            ExpenseFlow(expense_storage, channel=channel, settings=settings),
            BudgetFlow(InMemoryBudgetStorage(), expense_storage, channel=channel, settings=settings),
            channel,
            settings=settings,
        )

    def test_debug_mode_is_passed_to_fastapi(self):
        assert self._build(AppSettings(debug_mode=True)).debug is True

    def test_debug_off_by_default(self):
        assert self._build(AppSettings(debug_mode=False)).debug is False
