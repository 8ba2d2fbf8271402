# schemas/__init__.py
from schemas.order_definitions import (
    OrderStatus,
    PaymentCollectionStatus,
    AuditEventType,
    Address,
    LineItemInput,
    MerchantOrderRequest,
    OrderResult,
    Region,
    OrderAddress,
    OrderLineItem,
    ShippingMethod,
    Order,
    PaymentCollection,
    Payment,
    PaymentIntent,
    PaymentMethodInput,
    CreatePaymentIntentBody,
    ConfirmPaymentBody,
    AuditLogEntry,
)

__all__ = [
    "OrderStatus",
    "PaymentCollectionStatus",
    "AuditEventType",
    "Address",
    "LineItemInput",
    "MerchantOrderRequest",
    "OrderResult",
    "Region",
    "OrderAddress",
    "OrderLineItem",
    "ShippingMethod",
    "Order",
    "PaymentCollection",
    "Payment",
    "PaymentIntent",
    "PaymentMethodInput",
    "CreatePaymentIntentBody",
    "ConfirmPaymentBody",
    "AuditLogEntry",
]
