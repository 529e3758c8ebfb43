import pytest
from fastapi.testclient import TestClient

from fakes import FakeBrowser, FakeDriver
from fulfillment import main
from fulfillment.engine import FulfillmentEngine
from fulfillment.session import SessionSetup


@pytest.fixture
def client(config, monkeypatch):
    browser = FakeBrowser(FakeDriver({}))
    monkeypatch.setattr(main, "engine", FulfillmentEngine(config=config, browser_factory=lambda: browser))
    monkeypatch.setattr(main, "session_setup", SessionSetup(config=config, browser_factory=lambda: browser))
    return TestClient(main.app)


ORDER = {
    "userId": "u-1",
    "items": [{
        "productId": "p1",
        "name": "Lip Oil",
        "brand": "Dior",
        "url": "https://www.sephora.com/p/lip-oil",
        "quantity": 1,
        "price": 40,
    }],
    "shippingAddress": {
        "fullName": "Jane Doe",
        "line1": "1 Main St",
        "city": "Austin",
        "state": "TX",
        "zip": "78701",
    },
}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["session_present"] is False


def test_order_with_no_retailer_items(client):
    response = client.post("/api/orders", json=ORDER)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["errorKind"] == "no_eligible_items"
    assert body["error"] == "No ulta.com products in cart"
    assert body["totalCost"] == 0.0
    assert body["logs"]


def test_order_validation_error(client):
    bad = {**ORDER, "items": [{**ORDER["items"][0], "quantity": 0}]}

    assert client.post("/api/orders", json=bad).status_code == 422


def test_session_status_without_setup(client):
    response = client.get("/api/orders/session-status")

    assert response.status_code == 200
    assert response.json() == {"valid": False, "message": "Session expired or not set up"}


def test_status_and_history(client):
    client.post("/api/orders", json=ORDER)

    status = client.get("/status").json()
    assert status["retailer_domain"] == "ulta.com"
    assert status["active_orders"] == 0
    assert status["last_result"]["user_id"] == "u-1"

    history = client.get("/history", params={"limit": 5}).json()
    assert isinstance(history, list)
    assert len(history) <= 5
