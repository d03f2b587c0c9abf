# REST adapter: chat turns, actions, orders, sessions

import pytest
from fastapi.testclient import TestClient

from main import Runtime, app, get_runtime

from conftest import RESTAURANT, TABLE


@pytest.fixture
def runtime(services):
    return Runtime(services)


@pytest.fixture
def client(runtime):
    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()


def chat(client, text, session_id="web-1"):
    body = {"session_id": session_id, "restaurant_id": RESTAURANT, "table_number": TABLE, "user_message": text}
    return client.post("/chat", json=body)


def new_order(client, *items):
    body = {"restaurant_id": RESTAURANT, "table_number": TABLE,
            "items": [{"menu_item_id": i, "quantity": q} for i, q in items]}
    return client.post("/orders", json=body)


class TestChat:
    def test_chat_proposes_and_state_shows_it(self, client):
        res = chat(client, "give me 2 caesar salads")
        assert res.status_code == 200
        data = res.json()
        assert data["pending_action_id"]
        assert data["detection"]["kind"] == "ADD_TO_ORDER"

        state = client.get("/state", params={"session_id": "web-1"}).json()
        assert state["pending_action"]["id"] == data["pending_action_id"]
        assert state["pending_action"]["status"] == "PROPOSED"

    def test_chat_yes_places_order(self, client):
        chat(client, "give me 2 caesar salads")
        res = chat(client, "yes")
        assert "$25.98" in res.json()["response"]

        session = client.get(f"/sessions/{RESTAURANT}/{TABLE}").json()
        assert session["session"]["total_orders"] == 1
        assert session["orders"][0]["total"] == "25.98"

    def test_empty_restaurant_is_422(self, client):
        res = client.post("/chat", json={"session_id": "x", "restaurant_id": "", "user_message": "hi"})
        assert res.status_code == 422


class TestActions:
    def test_confirm_over_http(self, client):
        action_id = chat(client, "give me 2 caesar salads").json()["pending_action_id"]
        res = client.post(f"/actions/{action_id}/confirm")
        assert res.status_code == 200
        assert res.json()["status"] == "executed"
        assert res.json()["order"]["status"] == "PENDING"

        again = client.post(f"/actions/{action_id}/confirm")
        assert again.status_code == 409
        assert again.json()["status"] == "invalid_state"

    def test_unknown_action_is_404(self, client):
        assert client.post("/actions/act_nope/confirm").status_code == 404

    def test_decline_returns_advice(self, client):
        action_id = chat(client, "give me a margherita pizza").json()["pending_action_id"]
        res = client.post(f"/actions/{action_id}/decline")
        assert res.status_code == 200
        advice = res.json()["advice"]
        assert advice["alternatives"][0]["payload"]["kind"] == "REQUEST_RECOMMENDATION"


class TestOrders:
    def test_create_and_move_status(self, client):
        order = new_order(client, ("c1", 2), ("d1", 1)).json()
        assert order["total"] == "30.48"

        res = client.patch(f"/orders/{order['id']}/status", json={"status": "PREPARING"})
        assert res.status_code == 200
        assert res.json()["status"] == "PREPARING"

        back = client.patch(f"/orders/{order['id']}/status", json={"status": "PENDING"})
        assert back.status_code == 409
        assert back.json()["current"] == "PREPARING"
        assert back.json()["attempted"] == "PENDING"

    def test_unknown_item_is_422(self, client):
        assert new_order(client, ("nope", 1)).status_code == 422

    def test_missing_order_is_404(self, client):
        assert client.patch("/orders/missing/status", json={"status": "READY"}).status_code == 404


class TestSessions:
    def test_no_session_yet(self, client):
        assert client.get(f"/sessions/{RESTAURANT}/{TABLE}").status_code == 404

    def test_close_session(self, client):
        sid = new_order(client, ("t1", 1)).json()["session_id"]
        res = client.post(f"/sessions/{sid}/close")
        assert res.status_code == 200
        assert res.json()["status"] == "CLOSED"
        assert client.get(f"/sessions/{RESTAURANT}/{TABLE}").status_code == 404
        assert client.post("/sessions/missing/close").status_code == 404


def test_health(client):
    assert client.get("/healthz").json() == {"ok": True}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json()["ready"] is True
