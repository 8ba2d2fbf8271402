"""HTTP tests for the store routes."""

import io
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from agents.airwallex_bridge import AirwallexBridge, AirwallexConfig
from agents.order_coordinator import OrderIdempotencyCoordinator
from api.server import app, configure_logging, get_coordinator, get_gateway
from storage.order_store import InMemoryOrderStore


def airwallex_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/authentication/login"):
        return httpx.Response(201, json={"token": "tok", "expires_at": "2099-01-01T00:00:00+0000"})
    if path.endswith("/pa/payment_intents/create"):
        return httpx.Response(201, json={
            "id": "int_1",
            "client_secret": "cs_1",
            "amount": 77.49,
            "currency": "USD",
            "status": "REQUIRES_PAYMENT_METHOD",
            "merchant_order_id": "31N-1001",
        })
    if path.endswith("/pa/payment_intents/int_declined/confirm"):
        return httpx.Response(400, json={"code": "card_declined"})
    if path.endswith("/confirm"):
        return httpx.Response(200, json={
            "id": "int_1",
            "status": "SUCCEEDED",
            "next_action": None,
            "latest_payment_attempt": {"status": "CAPTURE_REQUESTED"},
        })
    return httpx.Response(200, json={"id": "int_1", "status": "SUCCEEDED", "currency": "USD"})


@pytest.fixture
def gateway():
    return AirwallexBridge(
        config=AirwallexConfig(client_id="client-1", api_key="key-1"),
        transport=httpx.MockTransport(airwallex_handler),
    )


@pytest.fixture
def unconfigured_gateway():
    return AirwallexBridge(config=AirwallexConfig(client_id="", api_key=""))


@pytest.fixture
def client(coordinator, gateway):
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# ORDERS
# =============================================================================

def test_create_order_returns_201(client, order_payload):
    response = client.post("/store/orders/create", json=order_payload)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["duplicate"] is False
    assert body["order"]["display_id"] == "31N-1001"
    assert body["order"]["id"].startswith("order_")


def test_resubmitted_order_returns_200_duplicate(client, order_payload):
    first = client.post("/store/orders/create", json=order_payload).json()
    response = client.post("/store/orders/create", json=order_payload)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "order": first["order"],
        "duplicate": True,
    }


def test_in_flight_order_returns_409(client, coordinator, order_payload):
    coordinator.locks.try_acquire("31N-1001", "other-request")

    response = client.post("/store/orders/create", json=order_payload)

    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": "Order is being processed",
        "duplicate": True,
    }


def test_order_without_shipping_address_returns_400(client, order_payload):
    response = client.post(
        "/store/orders/create",
        json={**order_payload, "shipping_address": None},
    )

    assert response.status_code == 400
    assert "shipping_address" in response.json()["error"]


def test_order_with_zero_quantity_returns_400(client, order_payload):
    items = [{"title": "Board", "quantity": 0, "unit_price": "10.00"}]

    response = client.post("/store/orders/create", json={**order_payload, "items": items})

    assert response.status_code == 400
    assert "quantity" in response.json()["error"]


def test_order_without_regions_returns_500(gateway, order_payload):
    coordinator = OrderIdempotencyCoordinator(store=InMemoryOrderStore())
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        response = TestClient(app).post("/store/orders/create", json=order_payload)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "region" in response.json()["error"]


def test_correlation_id_is_echoed(client, order_payload):
    response = client.post(
        "/store/orders/create",
        json=order_payload,
        headers={"X-Correlation-ID": "corr-abc"},
    )

    assert response.headers["X-Correlation-ID"] == "corr-abc"
    assert "X-Response-Time-Ms" in response.headers


# =============================================================================
# PAYMENT INTENTS
# =============================================================================

def test_create_payment_intent(client):
    response = client.post(
        "/store/airwallex/payment-intent",
        json={"amount": 77.49, "currency": "usd", "merchant_order_id": "31N-1001"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "int_1"
    assert body["client_secret"] == "cs_1"
    assert body["status"] == "REQUIRES_PAYMENT_METHOD"
    assert body["merchant_order_id"] == "31N-1001"


def test_create_payment_intent_requires_amount_and_currency(client):
    response = client.post("/store/airwallex/payment-intent", json={"currency": "usd"})

    assert response.status_code == 400
    assert "amount" in response.json()["error"]


def test_create_payment_intent_unconfigured_returns_500(client, unconfigured_gateway):
    app.dependency_overrides[get_gateway] = lambda: unconfigured_gateway

    response = client.post(
        "/store/airwallex/payment-intent",
        json={"amount": 10, "currency": "usd"},
    )

    assert response.status_code == 500
    assert "not configured" in response.json()["error"]


def test_get_payment_intent_requires_id(client):
    response = client.get("/store/airwallex/payment-intent")

    assert response.status_code == 400
    assert response.json() == {"error": "Payment intent ID is required"}


def test_get_payment_intent(client):
    response = client.get("/store/airwallex/payment-intent", params={"id": "int_1"})

    assert response.status_code == 200
    assert response.json()["status"] == "SUCCEEDED"


def test_confirm_payment(client):
    response = client.post(
        "/store/airwallex/confirm",
        json={"payment_intent_id": "int_1", "payment_method_id": "mtd_1"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "id": "int_1",
        "status": "SUCCEEDED",
        "next_action": None,
        "latest_payment_attempt": {"status": "CAPTURE_REQUESTED"},
    }


def test_confirm_requires_payment_intent_id(client):
    response = client.post("/store/airwallex/confirm", json={"payment_method_id": "mtd_1"})

    assert response.status_code == 400


def test_confirm_passes_gateway_status_through(client):
    response = client.post(
        "/store/airwallex/confirm",
        json={"payment_intent_id": "int_declined", "payment_method_id": "mtd_1"},
    )

    assert response.status_code == 400
    assert "card_declined" in response.json()["error"]


# =============================================================================
# HEALTH
# =============================================================================

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["order_store"] == "memory"
    assert body["orders_in_flight"] == 0
    assert body["payment_gateway"] == "demo"
    assert body["payment_gateway_configured"] is True


# =============================================================================
# LOGGING
# =============================================================================

@pytest.fixture
def json_log_output():
    buffer = io.StringIO()
    configure_logging(debug=False, file=buffer)
    yield buffer
    configure_logging()


@pytest.mark.asyncio
async def test_core_modules_log_json_in_production(json_log_output, coordinator, make_request):
    await coordinator.submit(make_request(), correlation_id="corr-json")

    events = [json.loads(line) for line in json_log_output.getvalue().splitlines() if line]
    created = [e for e in events if e["event"] == "order_created"]

    assert len(created) == 1
    assert created[0]["component"] == "order_coordinator"
    assert created[0]["correlation_id"] == "corr-json"
    assert created[0]["level"] == "info"
    # Debug events from the order store are filtered out
    assert all(e["level"] != "debug" for e in events)
    assert not any(e["event"] == "order_inserted" for e in events)
