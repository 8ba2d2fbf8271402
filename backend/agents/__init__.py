# agents/__init__.py
from agents.airwallex_bridge import (
    AirwallexBridge,
    AirwallexConfig,
    AirwallexError,
    AirwallexNotConfigured,
    AirwallexAuthError,
    AirwallexAPIError,
    get_airwallex_bridge,
    close_airwallex_bridge,
)

from agents.order_coordinator import (
    OrderIdempotencyCoordinator,
    InFlightLockTable,
    CoordinatorSettings,
    OrderError,
    InvalidRequest,
    DuplicateInFlight,
    NoRegionAvailable,
    StoreError,
    PaymentLinkError,
    to_minor_units,
    resolve_region,
    generate_display_id,
)

__all__ = [
    # Airwallex Bridge (Payment Gateway)
    "AirwallexBridge",
    "AirwallexConfig",
    "AirwallexError",
    "AirwallexNotConfigured",
    "AirwallexAuthError",
    "AirwallexAPIError",
    "get_airwallex_bridge",
    "close_airwallex_bridge",
    # Order Coordinator
    "OrderIdempotencyCoordinator",
    "InFlightLockTable",
    "CoordinatorSettings",
    "OrderError",
    "InvalidRequest",
    "DuplicateInFlight",
    "NoRegionAvailable",
    "StoreError",
    "PaymentLinkError",
    "to_minor_units",
    "resolve_region",
    "generate_display_id",
]
