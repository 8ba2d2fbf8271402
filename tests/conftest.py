"""Shared fixtures for the checkout backend tests."""

import asyncio

import pytest

from agents.order_coordinator import InFlightLockTable, OrderIdempotencyCoordinator
from schemas.order_definitions import MerchantOrderRequest, Region
from storage.audit_log import InMemoryAuditLog
from storage.order_store import InMemoryOrderStore


class SlowOrderStore(InMemoryOrderStore):
    """In-memory store that yields to the event loop on every order call."""

    def __init__(self, *args, delay: float = 0.01, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay

    async def list_orders(self, *args, **kwargs):
        await asyncio.sleep(self.delay)
        return await super().list_orders(*args, **kwargs)

    async def create_order(self, fields):
        await asyncio.sleep(self.delay)
        return await super().create_order(fields)


@pytest.fixture
def regions():
    return [
        Region(id="reg_eu", name="EU", currency_code="eur", countries=["de", "fr"]),
        Region(id="reg_us", name="US", currency_code="usd", countries=["us"]),
    ]


@pytest.fixture
def store(regions):
    return InMemoryOrderStore(regions=regions)


@pytest.fixture
def slow_store(regions):
    return SlowOrderStore(regions=regions)


@pytest.fixture
def audit_log():
    return InMemoryAuditLog()


@pytest.fixture
def coordinator(store, audit_log):
    return OrderIdempotencyCoordinator(
        store=store,
        locks=InFlightLockTable(),
        audit_log=audit_log,
    )


@pytest.fixture
def order_payload():
    """Body as the storefront posts it."""
    return {
        "merchant_order_id": "31N-1001",
        "email": "ada@example.com",
        "currency_code": "USD",
        "items": [
            {"title": "Walnut Serving Board", "quantity": 2, "unit_price": "19.995", "variant_sku": "WSB-01"},
            {"title": "Linen Napkins", "quantity": 1, "unit_price": "12.50"},
        ],
        "shipping_address": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "address_1": "12 St James's Square",
            "city": "London",
            "postal_code": "SW1Y 4JH",
            "country_code": "US",
        },
        "shipping_method": "Standard International",
        "shipping_total": "25.00",
        "total": "77.49",
        "payment_intent_id": "int_hkdm7x2",
    }


@pytest.fixture
def make_request(order_payload):
    def _make(**overrides) -> MerchantOrderRequest:
        return MerchantOrderRequest.model_validate({**order_payload, **overrides})
    return _make
