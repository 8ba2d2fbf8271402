# schemas/order_definitions.py
# ============================================================================
# 31 NORTH STOREFRONT CHECKOUT — ORDER SCHEMAS
# ============================================================================
# Purpose: Type-safe request, order store and payment gateway definitions
#
# SECTIONS:
# - Checkout request (what the storefront submits)
# - Order store records (orders, regions, payment collections)
# - Payment gateway payloads (Airwallex payment intents)
# - Audit trail entries
# ============================================================================

from typing import Dict, Any, List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.utcnow()


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REQUIRES_ACTION = "requires_action"
    CANCELED = "canceled"
    ARCHIVED = "archived"


class PaymentCollectionStatus(str, Enum):
    NOT_PAID = "not_paid"
    AWAITING = "awaiting"
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditEventType(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_DUPLICATE = "order.duplicate"
    ORDER_IN_FLIGHT = "order.in_flight"
    ORDER_FAILED = "order.failed"
    PAYMENT_LINKED = "payment.linked"
    PAYMENT_LINK_FAILED = "payment.link_failed"


# ============================================================================
# SECTION 2: CHECKOUT REQUEST
# ============================================================================

class Address(BaseModel):
    """Postal address as submitted by the storefront."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address_1: Optional[str] = None
    address_2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: str = Field(min_length=2, max_length=2)
    phone: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def lowercase_country(cls, v: str) -> str:
        return v.strip().lower()


class LineItemInput(BaseModel):
    """One cart line as submitted by the storefront (major currency units)."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    sku: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sku", "variant_sku"),
    )


class MerchantOrderRequest(BaseModel):
    """
    A request to materialize one order.

    `merchant_order_id` is the idempotency key and is compared by exact value.
    Amounts are decimals in major units; the coordinator converts them to the
    order store's minor units.

    The older storefront field names (`items`, `shipping_method`,
    `variant_sku`) are accepted as aliases.
    """
    model_config = ConfigDict(populate_by_name=True)

    merchant_order_id: Optional[str] = None
    email: Optional[str] = None
    currency_code: str = "usd"
    line_items: List[LineItemInput] = Field(
        default_factory=list,
        validation_alias=AliasChoices("line_items", "items"),
    )
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    shipping_method_name: str = Field(
        default="Standard",
        validation_alias=AliasChoices("shipping_method_name", "shipping_method"),
    )
    shipping_total: Decimal = Field(default=Decimal("0"), ge=0)
    subtotal: Optional[Decimal] = Field(default=None, ge=0)
    tax_total: Decimal = Field(default=Decimal("0"), ge=0)
    total: Optional[Decimal] = Field(default=None, ge=0)
    payment_intent_id: Optional[str] = None

    def resolved_subtotal(self) -> Decimal:
        if self.subtotal is not None:
            return self.subtotal
        return sum(
            (item.unit_price * item.quantity for item in self.line_items),
            Decimal("0"),
        )

    def resolved_total(self) -> Decimal:
        if self.total is not None:
            return self.total
        return self.resolved_subtotal() + self.shipping_total + self.tax_total


class OrderResult(BaseModel):
    """Outcome of a successful submit."""
    order_id: str
    display_id: str
    duplicate: bool = False


# ============================================================================
# SECTION 3: ORDER STORE RECORDS
# ============================================================================

class Region(BaseModel):
    """A group of countries sharing currency, tax and payment configuration."""
    id: str = Field(default_factory=lambda: f"reg_{uuid.uuid4().hex[:24]}")
    name: str
    currency_code: str = "usd"
    countries: List[str] = Field(default_factory=list)
    payment_providers: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("countries")
    @classmethod
    def lowercase_countries(cls, v: List[str]) -> List[str]:
        return [c.strip().lower() for c in v]


class OrderAddress(BaseModel):
    """Stored address: every optional field is an empty string, never null."""
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    country_code: str
    phone: str = ""


class OrderLineItem(BaseModel):
    """Stored line item (unit_price in minor units)."""
    title: str
    quantity: int
    unit_price: int
    fulfilled_quantity: int = 0
    delivered_quantity: int = 0
    shipped_quantity: int = 0
    return_requested_quantity: int = 0
    return_received_quantity: int = 0
    return_dismissed_quantity: int = 0
    written_off_quantity: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ShippingMethod(BaseModel):
    name: str
    amount: int


class Order(BaseModel):
    """Persisted order record."""
    id: str = Field(default_factory=lambda: f"order_{uuid.uuid4().hex[:24]}")
    display_id: str
    status: OrderStatus = OrderStatus.PENDING
    email: str
    currency_code: str
    region_id: Optional[str] = None
    items: List[OrderLineItem] = Field(default_factory=list)
    shipping_address: Optional[OrderAddress] = None
    billing_address: Optional[OrderAddress] = None
    shipping_methods: List[ShippingMethod] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)
    payment_collection_ids: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def merchant_order_id(self) -> Optional[str]:
        return self.metadata.get("merchant_order_id")


class PaymentCollection(BaseModel):
    id: str = Field(default_factory=lambda: f"paycol_{uuid.uuid4().hex[:24]}")
    currency_code: str
    amount: int
    region_id: Optional[str] = None
    status: PaymentCollectionStatus = PaymentCollectionStatus.NOT_PAID
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Payment(BaseModel):
    id: str = Field(default_factory=lambda: f"pay_{uuid.uuid4().hex[:24]}")
    payment_collection_id: str
    provider_id: str
    amount: int
    currency_code: str
    data: Dict[str, Any] = Field(default_factory=dict)
    captured_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# SECTION 4: PAYMENT GATEWAY PAYLOADS
# ============================================================================

class PaymentIntent(BaseModel):
    """Airwallex payment intent. Unknown gateway fields are preserved."""
    model_config = ConfigDict(extra="allow")

    id: str
    client_secret: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    merchant_order_id: Optional[str] = None
    next_action: Optional[Dict[str, Any]] = None
    latest_payment_attempt: Optional[Dict[str, Any]] = None


class CardDetails(BaseModel):
    number: str
    expiry_month: str
    expiry_year: str
    cvc: str
    name: Optional[str] = None


class PaymentMethodInput(BaseModel):
    type: str
    card: Optional[CardDetails] = None


class CreatePaymentIntentBody(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = None
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    merchant_order_id: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    return_url: Optional[str] = None


class ConfirmPaymentBody(BaseModel):
    payment_intent_id: Optional[str] = None
    payment_method: Optional[PaymentMethodInput] = None
    payment_method_id: Optional[str] = None
    return_url: Optional[str] = None


# ============================================================================
# SECTION 5: AUDIT TRAIL
# ============================================================================

class AuditLogEntry(BaseModel):
    """Immutable audit log entry"""
    log_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: str
    event_type: AuditEventType
    entity_type: str  # "order", "payment_collection"
    entity_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    actor: str = "system"
