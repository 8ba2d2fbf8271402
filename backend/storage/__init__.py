# storage/__init__.py
# ============================================================================
# 31 NORTH STOREFRONT CHECKOUT — STORAGE MODULE
# ============================================================================
# Order store interface, in-memory implementation and audit trail
# ============================================================================

from storage.order_store import (
    IOrderStore,
    InMemoryOrderStore,
    OrderNotFound,
)
from storage.audit_log import (
    IAuditLog,
    InMemoryAuditLog,
)

__all__ = [
    "IOrderStore",
    "InMemoryOrderStore",
    "OrderNotFound",
    "IAuditLog",
    "InMemoryAuditLog",
]
