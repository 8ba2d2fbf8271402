"""In-memory order store and audit log behaviour."""

import pytest

from schemas.order_definitions import AuditEventType, AuditLogEntry, OrderStatus
from storage.audit_log import InMemoryAuditLog
from storage.order_store import InMemoryOrderStore, OrderNotFound


def order_fields(merchant_order_id: str, **extra):
    return {
        "display_id": merchant_order_id,
        "email": "ada@example.com",
        "currency_code": "usd",
        "metadata": {"merchant_order_id": merchant_order_id},
        **extra,
    }


@pytest.mark.asyncio
async def test_list_orders_newest_first():
    store = InMemoryOrderStore()
    for n in range(5):
        await store.create_order(order_fields(f"31N-{n}"))

    page, count = await store.list_orders(take=3)

    assert count == 5
    assert [o.display_id for o in page] == ["31N-4", "31N-3", "31N-2"]


@pytest.mark.asyncio
async def test_list_orders_paginates_ascending():
    store = InMemoryOrderStore()
    for n in range(5):
        await store.create_order(order_fields(f"31N-{n}"))

    page, _ = await store.list_orders(skip=2, take=2, descending=False)

    assert [o.display_id for o in page] == ["31N-2", "31N-3"]


@pytest.mark.asyncio
async def test_list_orders_filters():
    store = InMemoryOrderStore()
    await store.create_order(order_fields("31N-1", status=OrderStatus.COMPLETED))
    await store.create_order(order_fields("31N-2", status=OrderStatus.CANCELED))

    by_metadata, _ = await store.list_orders(filters={"metadata": {"merchant_order_id": "31N-2"}})
    by_status, _ = await store.list_orders(filters={"status": [OrderStatus.COMPLETED]})

    assert [o.display_id for o in by_metadata] == ["31N-2"]
    assert [o.display_id for o in by_status] == ["31N-1"]


@pytest.mark.asyncio
async def test_update_order_merges_metadata():
    store = InMemoryOrderStore()
    order = await store.create_order(order_fields("31N-1"))

    updated = await store.update_order(order.id, {"metadata": {"note": "gift"}})

    assert updated.metadata == {"merchant_order_id": "31N-1", "note": "gift"}
    assert updated.updated_at >= order.updated_at


@pytest.mark.asyncio
async def test_missing_order_raises():
    store = InMemoryOrderStore()

    with pytest.raises(OrderNotFound):
        await store.retrieve_order("order_missing")
    with pytest.raises(OrderNotFound):
        await store.update_order("order_missing", {"status": OrderStatus.CANCELED})


@pytest.mark.asyncio
async def test_payment_requires_existing_collection():
    store = InMemoryOrderStore()

    with pytest.raises(LookupError):
        await store.create_payment({
            "payment_collection_id": "paycol_missing",
            "provider_id": "pp_airwallex",
            "amount": 100,
            "currency_code": "usd",
        })


@pytest.mark.asyncio
async def test_audit_log_indexes_entries():
    audit = InMemoryAuditLog()
    await audit.append(AuditLogEntry(
        correlation_id="corr-1", event_type=AuditEventType.ORDER_CREATED,
        entity_type="order", entity_id="order_1",
    ))
    await audit.append(AuditLogEntry(
        correlation_id="corr-1", event_type=AuditEventType.PAYMENT_LINKED,
        entity_type="payment_collection", entity_id="paycol_1",
    ))

    assert len(await audit.get_by_correlation_id("corr-1")) == 2
    assert len(await audit.get_by_entity("order_1")) == 1
    assert len(await audit.get_by_type(AuditEventType.PAYMENT_LINKED)) == 1
    assert await audit.get_by_correlation_id("corr-unknown") == []
