"""
Order Idempotency Coordinator
=============================
Turns a paid storefront checkout into exactly one order.

Protocol for one merchant order id:
1. Validate the request (no side effects before this passes)
2. Claim the id in the in-flight lock table (fails fast on concurrent retries)
3. Re-check recent persisted orders for the id (durable idempotency)
4. Resolve the region from the shipping country
5. Normalize line items and amounts to minor units
6. Create the order
7. Link the externally captured payment (best effort)
8. Release the claim

Limitations:
- The lock table is process-local. Two server instances can still race
  between step 3 and step 6 and create duplicate orders.
- Step 3 scans a bounded window of the most recent orders. Ids older than
  the window are not detected.

pip install pydantic structlog
"""

import os
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from pydantic import BaseModel, Field

from schemas.order_definitions import (
    Address,
    AuditEventType,
    AuditLogEntry,
    LineItemInput,
    MerchantOrderRequest,
    Order,
    OrderAddress,
    OrderResult,
    OrderStatus,
    PaymentCollectionStatus,
    Region,
)
from storage.audit_log import IAuditLog, InMemoryAuditLog
from storage.order_store import IOrderStore

logger = structlog.get_logger(component="order_coordinator")


# =============================================================================
# CONFIGURATION
# =============================================================================

class CoordinatorSettings:
    # Most recent orders scanned for an existing merchant order id
    IDEMPOTENCY_SCAN_WINDOW: int = int(os.getenv("IDEMPOTENCY_SCAN_WINDOW", "100"))

    DISPLAY_ID_PREFIX: str = os.getenv("DISPLAY_ID_PREFIX", "31N-")

    PAYMENT_PROVIDER: str = "airwallex"
    PAYMENT_PROVIDER_ID: str = os.getenv("PAYMENT_PROVIDER_ID", "pp_airwallex")

    MINOR_UNITS_PER_MAJOR: int = 100


settings = CoordinatorSettings()


# =============================================================================
# ERRORS
# =============================================================================

class OrderError(Exception):
    """Base class for order submission failures. Carries an HTTP status."""

    status_code: int = 500

    def __init__(self, message: str, merchant_order_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.merchant_order_id = merchant_order_id


class InvalidRequest(OrderError):
    """Request failed validation; nothing was locked or written."""
    status_code = 400


class DuplicateInFlight(OrderError):
    """
    Another submission for the same merchant order id is running in this
    process. Callers should treat it as already submitted.
    """
    status_code = 409


class NoRegionAvailable(OrderError):
    """The order store has no regions configured."""
    status_code = 500


class StoreError(OrderError):
    """The order store failed while the order was being created."""
    status_code = 500


class PaymentLinkError(OrderError):
    """
    Linking the captured payment to a created order failed.
    Recorded in the audit trail, never raised out of submit().
    """
    status_code = 500


# =============================================================================
# AMOUNTS, REGIONS, LINE ITEMS
# =============================================================================

def to_minor_units(amount: Any) -> int:
    """
    Convert a major-unit amount to integer minor units, rounding half up.

    >>> to_minor_units(Decimal("19.995"))
    2000
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    scaled = amount * settings.MINOR_UNITS_PER_MAJOR
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_region(regions: List[Region], country_code: str) -> Region:
    """
    Pick the region whose countries include `country_code` (case-insensitive),
    falling back to the first region.
    """
    if not regions:
        raise NoRegionAvailable("No region is configured in the order store")

    wanted = country_code.strip().lower()
    for region in regions:
        if wanted in (c.lower() for c in region.countries):
            return region
    return regions[0]


def normalize_address(address: Address) -> OrderAddress:
    """Stored addresses use empty strings for every missing optional field."""
    values = address.model_dump()
    return OrderAddress(**{k: ("" if v is None else v) for k, v in values.items()})


def normalize_line_items(items: List[LineItemInput]) -> List[Dict[str, Any]]:
    return [
        {
            "title": item.title,
            "quantity": item.quantity,
            "unit_price": to_minor_units(item.unit_price),
            "fulfilled_quantity": 0,
            "delivered_quantity": 0,
            "shipped_quantity": 0,
            "return_requested_quantity": 0,
            "return_received_quantity": 0,
            "return_dismissed_quantity": 0,
            "written_off_quantity": 0,
            "metadata": {"sku": item.sku or "", "position": position},
        }
        for position, item in enumerate(items)
    ]


def generate_display_id(clock: Callable[[], float] = time.time) -> str:
    """Fallback display id: prefix + millisecond timestamp."""
    return f"{settings.DISPLAY_ID_PREFIX}{int(clock() * 1000)}"


# =============================================================================
# IN-FLIGHT LOCK TABLE
# =============================================================================

class InFlightMarker(BaseModel):
    key: str
    holder_id: str
    acquired_at: datetime = Field(default_factory=datetime.utcnow)


class InFlightLockTable:
    """
    Process-local table of merchant order ids currently being submitted.

    Check-and-insert happens under a threading.Lock with no await inside,
    so no coroutine or thread can slip in between the two.
    """

    def __init__(self):
        self._held: Dict[str, InFlightMarker] = {}
        self._mutex = threading.Lock()

    def try_acquire(self, key: str, holder_id: str) -> bool:
        with self._mutex:
            if key in self._held:
                return False
            self._held[key] = InFlightMarker(key=key, holder_id=holder_id)
            return True

    def release(self, key: str, holder_id: str) -> bool:
        """Safe release - only the holder can remove its marker."""
        with self._mutex:
            marker = self._held.get(key)
            if marker is None or marker.holder_id != holder_id:
                return False
            del self._held[key]
            return True

    def is_held(self, key: str) -> bool:
        with self._mutex:
            return key in self._held

    @contextmanager
    def hold(self, key: str) -> Iterator[str]:
        """Claim `key` for the duration of the block or raise DuplicateInFlight."""
        holder_id = str(uuid.uuid4())
        if not self.try_acquire(key, holder_id):
            raise DuplicateInFlight(
                "Order is being processed",
                merchant_order_id=key,
            )
        try:
            yield holder_id
        finally:
            self.release(key, holder_id)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._held)

    def __contains__(self, key: str) -> bool:
        return self.is_held(key)


# =============================================================================
# COORDINATOR
# =============================================================================

class OrderIdempotencyCoordinator:
    """
    Creates orders for paid checkouts, at most once per merchant order id.

    Example:
        coordinator = OrderIdempotencyCoordinator(store=InMemoryOrderStore(regions))
        result = await coordinator.submit(request)
        # result.duplicate is True when the order already existed
    """

    def __init__(
        self,
        store: IOrderStore,
        locks: Optional[InFlightLockTable] = None,
        audit_log: Optional[IAuditLog] = None,
        scan_window: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.locks = InFlightLockTable() if locks is None else locks
        self.audit = InMemoryAuditLog() if audit_log is None else audit_log
        self.scan_window = (
            settings.IDEMPOTENCY_SCAN_WINDOW if scan_window is None else scan_window
        )
        self._clock = clock

    def _get_logger(self, correlation_id: str, merchant_order_id: Optional[str]):
        return logger.bind(
            correlation_id=correlation_id,
            merchant_order_id=merchant_order_id,
        )

    async def _emit_audit(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        correlation_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.audit.append(AuditLogEntry(
            correlation_id=correlation_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        ))

    async def _emit_audit_after_commit(
        self,
        event_type: AuditEventType,
        *args,
        log,
        **kwargs,
    ) -> None:
        """Audit write for an order that already exists: failures are logged, never raised."""
        try:
            await self._emit_audit(event_type, *args, **kwargs)
        except Exception as e:
            log.error(
                "audit_write_failed",
                event_type=event_type.value,
                error=str(e),
                error_type=type(e).__name__,
            )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def submit(
        self,
        request: MerchantOrderRequest,
        correlation_id: Optional[str] = None,
    ) -> OrderResult:
        """
        Create the order for `request`, or return the one that already exists.

        Raises:
            InvalidRequest: email, line items or shipping address missing
            DuplicateInFlight: same merchant order id is mid-submission
            NoRegionAvailable: the store has no regions
            StoreError: the store failed while looking up or creating
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        merchant_order_id = request.merchant_order_id or None
        log = self._get_logger(correlation_id, merchant_order_id)

        self._validate(request)

        display_id = merchant_order_id or generate_display_id(self._clock)
        lock_key = merchant_order_id or display_id

        try:
            with self.locks.hold(lock_key):
                return await self._submit_locked(
                    request, merchant_order_id, display_id, correlation_id, log
                )
        except DuplicateInFlight:
            log.info("order_in_flight")
            await self._emit_audit(
                AuditEventType.ORDER_IN_FLIGHT, "merchant_order", lock_key, correlation_id
            )
            raise

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _validate(self, request: MerchantOrderRequest) -> None:
        if not request.email or not request.email.strip():
            raise InvalidRequest("Missing required field: email", request.merchant_order_id)
        if not request.line_items:
            raise InvalidRequest("Order must contain at least one line item", request.merchant_order_id)
        if request.shipping_address is None:
            raise InvalidRequest("Missing required field: shipping_address", request.merchant_order_id)

    async def _submit_locked(
        self,
        request: MerchantOrderRequest,
        merchant_order_id: Optional[str],
        display_id: str,
        correlation_id: str,
        log,
    ) -> OrderResult:
        if merchant_order_id:
            existing = await self._find_existing(merchant_order_id)
            if existing is not None:
                log.info("order_duplicate_detected", order_id=existing.id)
                await self._emit_audit_after_commit(
                    AuditEventType.ORDER_DUPLICATE, "order", existing.id, correlation_id,
                    metadata={"merchant_order_id": merchant_order_id},
                    log=log,
                )
                return OrderResult(
                    order_id=existing.id,
                    display_id=existing.display_id,
                    duplicate=True,
                )

        region = await self._resolve_region(request.shipping_address.country_code)
        fields = self._build_order_fields(request, merchant_order_id or display_id, display_id, region)

        try:
            order = await self.store.create_order(fields)
        except Exception as e:
            log.error("order_create_failed", error=str(e), error_type=type(e).__name__)
            await self._emit_audit(
                AuditEventType.ORDER_FAILED, "merchant_order", merchant_order_id or display_id,
                correlation_id, metadata={"error": str(e)},
            )
            raise StoreError(f"Failed to create order: {e}", merchant_order_id) from e

        log.info(
            "order_created",
            order_id=order.id,
            display_id=order.display_id,
            region_id=region.id,
            total=order.summary.get("total"),
        )
        await self._emit_audit_after_commit(
            AuditEventType.ORDER_CREATED, "order", order.id, correlation_id,
            metadata={"display_id": order.display_id, "region_id": region.id},
            log=log,
        )

        await self._link_payment(order, request, region, correlation_id, log)

        return OrderResult(order_id=order.id, display_id=order.display_id, duplicate=False)

    async def _find_existing(self, merchant_order_id: str) -> Optional[Order]:
        try:
            recent, _ = await self.store.list_orders(
                filters={}, skip=0, take=self.scan_window,
                order_by="created_at", descending=True,
            )
        except Exception as e:
            raise StoreError(f"Failed to query recent orders: {e}", merchant_order_id) from e

        for order in recent:
            if order.metadata.get("merchant_order_id") == merchant_order_id:
                return order
        return None

    async def _resolve_region(self, country_code: str) -> Region:
        try:
            regions = await self.store.list_regions()
        except Exception as e:
            raise StoreError(f"Failed to list regions: {e}") from e
        return resolve_region(regions, country_code)

    def _build_order_fields(
        self,
        request: MerchantOrderRequest,
        merchant_order_id: str,
        display_id: str,
        region: Region,
    ) -> Dict[str, Any]:
        shipping_address = normalize_address(request.shipping_address)
        billing_address = (
            normalize_address(request.billing_address)
            if request.billing_address is not None
            else shipping_address
        )
        shipping_amount = to_minor_units(request.shipping_total)

        return {
            "display_id": display_id,
            "status": OrderStatus.COMPLETED,
            "email": request.email.strip(),
            "currency_code": request.currency_code.lower(),
            "region_id": region.id,
            "items": normalize_line_items(request.line_items),
            "shipping_address": shipping_address.model_dump(),
            "billing_address": billing_address.model_dump(),
            "shipping_methods": [
                {"name": request.shipping_method_name, "amount": shipping_amount}
            ],
            "summary": {
                "subtotal": to_minor_units(request.resolved_subtotal()),
                "shipping_total": shipping_amount,
                "tax_total": to_minor_units(request.tax_total),
                "total": to_minor_units(request.resolved_total()),
            },
            "metadata": {
                "merchant_order_id": merchant_order_id,
                "payment_intent_id": request.payment_intent_id or "",
                "display_id": display_id,
                "payment_provider": settings.PAYMENT_PROVIDER,
                "payment_status": "paid",
            },
        }

    async def _link_payment(
        self,
        order: Order,
        request: MerchantOrderRequest,
        region: Region,
        correlation_id: str,
        log,
    ) -> None:
        """Record the already-captured payment against the order. Never raises."""
        amount = order.summary.get("total", to_minor_units(request.resolved_total()))
        try:
            collection = await self.store.create_payment_collection({
                "currency_code": order.currency_code,
                "amount": amount,
                "region_id": region.id,
                "status": PaymentCollectionStatus.COMPLETED,
                "metadata": {
                    "order_id": order.id,
                    "payment_intent_id": request.payment_intent_id or "",
                },
            })
            payment = await self.store.create_payment({
                "payment_collection_id": collection.id,
                "provider_id": settings.PAYMENT_PROVIDER_ID,
                "amount": amount,
                "currency_code": order.currency_code,
                "data": {
                    "payment_intent_id": request.payment_intent_id or "",
                    "merchant_order_id": order.metadata.get("merchant_order_id"),
                },
                "captured_at": datetime.utcnow(),
            })
            await self.store.update_order(
                order.id,
                {"payment_collection_ids": [*order.payment_collection_ids, collection.id]},
            )
        except Exception as e:
            link_error = PaymentLinkError(
                f"Failed to link payment to order {order.id}: {e}",
                order.metadata.get("merchant_order_id"),
            )
            log.error(
                "payment_link_failed",
                order_id=order.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._emit_audit_after_commit(
                AuditEventType.PAYMENT_LINK_FAILED, "order", order.id, correlation_id,
                metadata={"error": link_error.message},
                log=log,
            )
            return

        log.info("payment_linked", order_id=order.id, payment_collection_id=collection.id,
                 payment_id=payment.id, amount=amount)
        await self._emit_audit_after_commit(
            AuditEventType.PAYMENT_LINKED, "payment_collection", collection.id, correlation_id,
            metadata={"order_id": order.id, "payment_id": payment.id, "amount": amount},
            log=log,
        )
