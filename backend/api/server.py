# api/server.py
# ============================================================================
# 31 NORTH STOREFRONT CHECKOUT — FASTAPI SERVER
# ============================================================================
# Store routes for Airwallex payment intents and idempotent order creation
# ============================================================================

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, TextIO

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agents.airwallex_bridge import (
    AirwallexBridge,
    AirwallexError,
    AirwallexNotConfigured,
    close_airwallex_bridge,
    get_airwallex_bridge,
)
from agents.order_coordinator import (
    DuplicateInFlight,
    OrderError,
    OrderIdempotencyCoordinator,
)
from schemas.order_definitions import (
    ConfirmPaymentBody,
    CreatePaymentIntentBody,
    MerchantOrderRequest,
)
from storage.order_store import IOrderStore, InMemoryOrderStore
from tasks.seed_regions import seed_regions


# =============================================================================
# CONFIGURATION
# =============================================================================

class ServerConfig:
    """Server configuration from environment"""

    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "9000"))
    ENV = os.getenv("ENV", "development")
    DEBUG = ENV == "development"

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # "memory" or "postgres"
    ORDER_STORE = os.getenv("ORDER_STORE", "memory")
    SEED_REGIONS_ON_STARTUP = os.getenv("SEED_REGIONS_ON_STARTUP", "true").lower() == "true"


config = ServerConfig()

VERSION = "1.0.0"


def configure_logging(debug: bool = config.DEBUG, file: Optional[TextIO] = None) -> None:
    """Configure structured logging: console output in development, JSON otherwise."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True) if debug
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file),
    )


configure_logging()

logger = structlog.get_logger(component="server")


# =============================================================================
# DEPENDENCIES
# =============================================================================

_coordinator: Optional[OrderIdempotencyCoordinator] = None


async def build_order_store() -> IOrderStore:
    if config.ORDER_STORE == "postgres":
        from database import PostgresOrderStore, init_database

        await init_database()
        store: IOrderStore = PostgresOrderStore()
    else:
        store = InMemoryOrderStore()

    if config.SEED_REGIONS_ON_STARTUP:
        await seed_regions(store)
    return store


async def get_coordinator() -> OrderIdempotencyCoordinator:
    """Get or create the process-wide order coordinator."""
    global _coordinator
    if _coordinator is None:
        _coordinator = OrderIdempotencyCoordinator(store=await build_order_store())
    return _coordinator


async def get_gateway() -> AirwallexBridge:
    return await get_airwallex_bridge()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("server_starting", env=config.ENV, order_store=config.ORDER_STORE)

    coordinator = await get_coordinator()
    logger.info("order_store_ready", backend=coordinator.store.backend)

    gateway = await get_airwallex_bridge()
    if gateway.is_configured():
        logger.info("airwallex_ready", environment=gateway.environment)
    else:
        logger.warning("airwallex_not_configured",
                       hint="set AIRWALLEX_CLIENT_ID and AIRWALLEX_API_KEY")

    yield

    logger.info("server_stopping")
    await close_airwallex_bridge()
    if config.ORDER_STORE == "postgres":
        from database import close_database

        await close_database()


# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="31 North Storefront Checkout",
    description="Airwallex payment intents and idempotent order creation",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

START_TIME = datetime.utcnow()


@app.middleware("http")
async def correlate_and_time(request: Request, call_next):
    """Bind a correlation id to every log line and add timing headers."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    start = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()
    duration = (time.perf_counter() - start) * 1000
    response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
    response.headers["X-Correlation-ID"] = correlation_id
    return response


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return error_response(400, "; ".join(problems) or "Invalid request")


@app.exception_handler(OrderError)
async def handle_order_error(request: Request, exc: OrderError):
    if isinstance(exc, DuplicateInFlight):
        return error_response(exc.status_code, exc.message, success=False, duplicate=True)
    if exc.status_code >= 500:
        logger.error("order_request_failed", error=exc.message, error_type=type(exc).__name__)
    return error_response(exc.status_code, exc.message)


@app.exception_handler(AirwallexError)
async def handle_gateway_error(request: Request, exc: AirwallexError):
    logger.error("gateway_request_failed", error=exc.message, status_code=exc.status_code)
    return error_response(exc.status_code, exc.message)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    order_store: str
    orders_in_flight: int
    payment_gateway: str
    payment_gateway_configured: bool


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(
    coordinator: OrderIdempotencyCoordinator = Depends(get_coordinator),
    gateway: AirwallexBridge = Depends(get_gateway),
):
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=(datetime.utcnow() - START_TIME).total_seconds(),
        order_store=coordinator.store.backend,
        orders_in_flight=len(coordinator.locks),
        payment_gateway=gateway.environment,
        payment_gateway_configured=gateway.is_configured(),
    )


@app.post("/store/airwallex/payment-intent")
async def create_payment_intent(
    body: CreatePaymentIntentBody,
    gateway: AirwallexBridge = Depends(get_gateway),
):
    """Create a payment intent for the storefront's payment element."""
    if not gateway.is_configured():
        raise AirwallexNotConfigured(
            "Airwallex is not configured. Please set AIRWALLEX_CLIENT_ID and AIRWALLEX_API_KEY."
        )
    if not body.amount or not body.currency:
        return error_response(400, "Missing required fields: amount and currency are required")

    intent = await gateway.create_payment_intent(
        amount=body.amount,
        currency=body.currency,
        merchant_order_id=body.merchant_order_id,
        metadata=body.metadata,
        return_url=body.return_url,
    )
    return {
        "id": intent.id,
        "client_secret": intent.client_secret,
        "amount": intent.amount,
        "currency": intent.currency,
        "status": intent.status,
        "merchant_order_id": intent.merchant_order_id,
    }


@app.get("/store/airwallex/payment-intent")
async def get_payment_intent(
    id: Optional[str] = Query(default=None),
    gateway: AirwallexBridge = Depends(get_gateway),
):
    """Fetch a payment intent's current state."""
    if not id:
        return error_response(400, "Payment intent ID is required")
    if not gateway.is_configured():
        raise AirwallexNotConfigured("Airwallex is not configured")

    intent = await gateway.get_payment_intent(id)
    return intent.model_dump()


@app.post("/store/airwallex/confirm")
async def confirm_payment(
    body: ConfirmPaymentBody,
    gateway: AirwallexBridge = Depends(get_gateway),
):
    """Confirm a payment intent with card details or a saved payment method."""
    if not gateway.is_configured():
        raise AirwallexNotConfigured("Airwallex is not configured")
    if not body.payment_intent_id:
        return error_response(400, "Missing required field: payment_intent_id")

    intent = await gateway.confirm_payment_intent(
        body.payment_intent_id,
        payment_method=body.payment_method.model_dump(exclude_none=True) if body.payment_method else None,
        payment_method_id=body.payment_method_id,
        return_url=body.return_url,
    )
    return {
        "id": intent.id,
        "status": intent.status,
        "next_action": intent.next_action,
        "latest_payment_attempt": intent.latest_payment_attempt,
    }


@app.post("/store/orders/create", status_code=201)
async def create_order(
    body: MerchantOrderRequest,
    request: Request,
    response: Response,
    coordinator: OrderIdempotencyCoordinator = Depends(get_coordinator),
):
    """
    Create the order for a paid checkout.

    201 for a new order, 200 with duplicate=true when the merchant order id
    was already turned into an order, 409 while another request for the same
    id is still running.
    """
    result = await coordinator.submit(
        body, correlation_id=getattr(request.state, "correlation_id", None)
    )
    if result.duplicate:
        response.status_code = 200

    return {
        "success": True,
        "order": {"id": result.order_id, "display_id": result.display_id},
        "duplicate": result.duplicate,
    }


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level="info",
    )
