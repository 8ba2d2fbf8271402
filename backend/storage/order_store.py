"""
Order Store
===========
Persistence interface the checkout core talks to, plus the in-memory
implementation used for development, demos and tests.

The interface mirrors the order-management backend's module services:
- list / create / update / retrieve orders
- list / create regions (one canonical shape: a plain list)
- create payment collections and captured payments

See database.py for the PostgreSQL implementation.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog

from schemas.order_definitions import (
    Order,
    Payment,
    PaymentCollection,
    Region,
)

logger = structlog.get_logger(component="order_store")


class OrderNotFound(LookupError):
    """Raised when an order id does not exist in the store."""


# =============================================================================
# INTERFACE
# =============================================================================

class IOrderStore(ABC):
    """Order store interface (async-ready for Postgres or an external API)"""

    backend: str = "abstract"

    @abstractmethod
    async def list_orders(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        take: int = 50,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> Tuple[List[Order], int]:
        """Return one page of orders and the total count matching `filters`."""
        pass

    @abstractmethod
    async def retrieve_order(self, order_id: str) -> Order:
        pass

    @abstractmethod
    async def create_order(self, fields: Dict[str, Any]) -> Order:
        pass

    @abstractmethod
    async def update_order(self, order_id: str, fields: Dict[str, Any]) -> Order:
        pass

    @abstractmethod
    async def list_regions(self) -> List[Region]:
        pass

    @abstractmethod
    async def create_regions(self, regions: List[Dict[str, Any]]) -> List[Region]:
        pass

    @abstractmethod
    async def create_payment_collection(self, fields: Dict[str, Any]) -> PaymentCollection:
        pass

    @abstractmethod
    async def create_payment(self, fields: Dict[str, Any]) -> Payment:
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryOrderStore(IOrderStore):
    """Coroutine-safe in-memory order store"""

    backend = "memory"

    def __init__(self, regions: Optional[List[Region]] = None):
        # Insertion order doubles as the creation-time tiebreaker
        self._orders: Dict[str, Order] = {}
        self._regions: List[Region] = list(regions or [])
        self._payment_collections: Dict[str, PaymentCollection] = {}
        self._payments: Dict[str, Payment] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _matches(order: Order, filters: Dict[str, Any]) -> bool:
        for key, expected in filters.items():
            if key == "metadata":
                if any(order.metadata.get(k) != v for k, v in expected.items()):
                    return False
            elif isinstance(expected, (list, tuple, set)):
                if getattr(order, key, None) not in expected:
                    return False
            elif getattr(order, key, None) != expected:
                return False
        return True

    async def list_orders(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        take: int = 50,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> Tuple[List[Order], int]:
        async with self._lock:
            indexed = list(enumerate(self._orders.values()))
            matched = [
                (position, order) for position, order in indexed
                if self._matches(order, filters or {})
            ]
            matched.sort(
                key=lambda pair: (getattr(pair[1], order_by), pair[0]),
                reverse=descending,
            )
            page = [order for _, order in matched[skip:skip + take]]
            return page, len(matched)

    async def retrieve_order(self, order_id: str) -> Order:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(f"Order not found: {order_id}")
            return order

    async def create_order(self, fields: Dict[str, Any]) -> Order:
        order = Order(**fields)
        async with self._lock:
            self._orders[order.id] = order
        logger.debug("order_inserted", order_id=order.id, display_id=order.display_id)
        return order

    async def update_order(self, order_id: str, fields: Dict[str, Any]) -> Order:
        async with self._lock:
            existing = self._orders.get(order_id)
            if existing is None:
                raise OrderNotFound(f"Order not found: {order_id}")
            update = dict(fields)
            if "metadata" in update:
                update["metadata"] = {**existing.metadata, **update["metadata"]}
            update["updated_at"] = datetime.utcnow()
            updated = Order.model_validate({**existing.model_dump(), **update})
            self._orders[order_id] = updated
            return updated

    async def list_regions(self) -> List[Region]:
        async with self._lock:
            return list(self._regions)

    async def create_regions(self, regions: List[Dict[str, Any]]) -> List[Region]:
        created = [Region(**data) for data in regions]
        async with self._lock:
            self._regions.extend(created)
        return created

    async def create_payment_collection(self, fields: Dict[str, Any]) -> PaymentCollection:
        collection = PaymentCollection(**fields)
        async with self._lock:
            self._payment_collections[collection.id] = collection
        return collection

    async def create_payment(self, fields: Dict[str, Any]) -> Payment:
        payment = Payment(**fields)
        async with self._lock:
            if payment.payment_collection_id not in self._payment_collections:
                raise LookupError(
                    f"Payment collection not found: {payment.payment_collection_id}"
                )
            self._payments[payment.id] = payment
        return payment

    # Inspection helpers (used by the health endpoint and tests)

    @property
    def order_count(self) -> int:
        return len(self._orders)

    def payments_for_collection(self, collection_id: str) -> List[Payment]:
        return [
            p for p in self._payments.values()
            if p.payment_collection_id == collection_id
        ]
