# agents/airwallex_bridge.py
# ============================================================================
# 31 NORTH STOREFRONT CHECKOUT — AIRWALLEX BRIDGE
# ============================================================================
# Purpose: Talk to the Airwallex payment acceptance REST API
#
# ARCHITECTURE:
# - Logs in with client id + API key, caches the bearer token in-process
# - A token within 60 seconds of expiry is treated as expired and refreshed
# - Creates, confirms and fetches payment intents
#
# FAILURE HANDLING:
# - Missing credentials raise AirwallexNotConfigured before any network call
# - Non-2xx responses raise AirwallexAPIError carrying the gateway's status
# - No retries: callers decide
# ============================================================================

import asyncio
import logging
import os
import random
import re
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx

from schemas.order_definitions import PaymentIntent

logger = logging.getLogger("Checkout.AirwallexBridge")


# ============================================================================
# SECTION 1: CONFIGURATION
# ============================================================================

PROD_BASE_URL = "https://api.airwallex.com/api/v1"
DEMO_BASE_URL = "https://api-demo.airwallex.com/api/v1"

TOKEN_EXPIRY_BUFFER = timedelta(seconds=60)


@dataclass
class AirwallexConfig:
    """Configuration for the Airwallex connection."""
    client_id: str = ""
    api_key: str = ""
    environment: str = "demo"
    timeout_seconds: float = 15.0

    @property
    def base_url(self) -> str:
        return PROD_BASE_URL if self.environment == "prod" else DEMO_BASE_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.api_key)

    @classmethod
    def from_env(cls) -> "AirwallexConfig":
        return cls(
            client_id=os.getenv("AIRWALLEX_CLIENT_ID", ""),
            api_key=os.getenv("AIRWALLEX_API_KEY", ""),
            environment=os.getenv("AIRWALLEX_ENVIRONMENT", "demo") or "demo",
            timeout_seconds=float(os.getenv("AIRWALLEX_TIMEOUT", "15.0")),
        )


# ============================================================================
# SECTION 2: ERRORS
# ============================================================================

class AirwallexError(Exception):
    """Base class for payment gateway failures."""

    status_code: int = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AirwallexNotConfigured(AirwallexError):
    status_code = 500


class AirwallexAuthError(AirwallexError):
    status_code = 502


class AirwallexAPIError(AirwallexError):
    """Non-2xx response from the payment intent endpoints."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message, status_code)
        self.body = body


# ============================================================================
# SECTION 3: HELPERS
# ============================================================================

_OFFSET_WITHOUT_COLON = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_expiry(value: str) -> datetime:
    """Parse the gateway's expires_at ("2024-01-01T00:30:00+0000" or ISO 8601)."""
    text = value.strip().replace("Z", "+00:00")
    text = _OFFSET_WITHOUT_COLON.sub(r"\1:\2", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def make_request_id(prefix: str, clock: Callable[[], float] = time.time) -> str:
    """Unique request id: <prefix>_<ms timestamp>_<9 base36 chars>."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{int(clock() * 1000)}_{suffix}"


@dataclass
class CachedToken:
    token: str
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at > now + TOKEN_EXPIRY_BUFFER


# ============================================================================
# SECTION 4: AIRWALLEX BRIDGE CLASS
# ============================================================================

class AirwallexBridge:
    """
    Async client for the Airwallex payment acceptance API.

    Example:
        bridge = AirwallexBridge()
        await bridge.initialize()
        intent = await bridge.create_payment_intent(Decimal("49.00"), "usd", "31N-1001")
    """

    def __init__(
        self,
        config: Optional[AirwallexConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config or AirwallexConfig.from_env()
        self._transport = transport
        self._now = now
        self._client: Optional[httpx.AsyncClient] = None
        self._token: Optional[CachedToken] = None
        self._token_lock = asyncio.Lock()

    @property
    def environment(self) -> str:
        return self.config.environment or "demo"

    def is_configured(self) -> bool:
        return self.config.is_configured

    async def initialize(self) -> bool:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
            logger.info(f"Airwallex bridge initialized: {self.config.base_url}")
        return True

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.initialize()
        return self._client

    # ------------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------------

    async def get_access_token(self) -> str:
        """Return a bearer token, logging in again when the cached one is stale."""
        if not self.is_configured():
            raise AirwallexNotConfigured("Airwallex is not configured")

        if self._token and self._token.is_fresh(self._now()):
            return self._token.token

        async with self._token_lock:
            # Another coroutine may have refreshed while we waited
            if self._token and self._token.is_fresh(self._now()):
                return self._token.token

            client = await self._get_client()
            try:
                response = await client.post(
                    "/authentication/login",
                    headers={
                        "x-client-id": self.config.client_id,
                        "x-api-key": self.config.api_key,
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"Airwallex login transport error: {e}")
                raise AirwallexAuthError(f"Airwallex authentication failed: {e}") from e

            if response.is_error:
                logger.error(f"Airwallex login rejected ({response.status_code})")
                raise AirwallexAuthError(f"Airwallex authentication failed: {response.text}")

            data = response.json()
            self._token = CachedToken(
                token=data["token"],
                expires_at=parse_expiry(data["expires_at"]),
            )
            logger.info(f"Airwallex token refreshed, expires {self._token.expires_at.isoformat()}")
            return self._token.token

    def invalidate_token(self) -> None:
        self._token = None

    # ------------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        token = await self.get_access_token()
        client = await self._get_client()

        try:
            response = await client.request(
                method,
                endpoint,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            logger.error(f"Airwallex timeout on {method} {endpoint}")
            raise AirwallexAPIError(f"Airwallex API timeout: {endpoint}", 504) from e
        except httpx.HTTPError as e:
            logger.error(f"Airwallex transport error on {method} {endpoint}: {e}")
            raise AirwallexAPIError(f"Airwallex API error: {e}", 502) from e

        if response.is_error:
            logger.warning(f"Airwallex {method} {endpoint} -> {response.status_code}")
            raise AirwallexAPIError(
                f"Airwallex API error: {response.text}",
                response.status_code,
                body=response.text,
            )

        return response.json()

    async def create_payment_intent(
        self,
        amount: Any,
        currency: str,
        merchant_order_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        return_url: Optional[str] = None,
    ) -> PaymentIntent:
        payload: Dict[str, Any] = {
            "amount": float(amount),
            "currency": currency.upper(),
            "merchant_order_id": merchant_order_id or f"order_{int(time.time() * 1000)}",
            "request_id": make_request_id("req"),
            "metadata": metadata or {},
        }
        if return_url:
            payload["return_url"] = return_url

        data = await self._request("POST", "/pa/payment_intents/create", payload)
        intent = PaymentIntent.model_validate(data)
        logger.info(f"Payment intent created: {intent.id} ({intent.merchant_order_id})")
        return intent

    async def confirm_payment_intent(
        self,
        intent_id: str,
        payment_method: Optional[Dict[str, Any]] = None,
        payment_method_id: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> PaymentIntent:
        payload: Dict[str, Any] = {"request_id": make_request_id("confirm")}
        if payment_method:
            payload["payment_method"] = payment_method
        if payment_method_id:
            payload["payment_method_id"] = payment_method_id
        if return_url:
            payload["return_url"] = return_url

        endpoint = f"/pa/payment_intents/{quote(intent_id, safe='')}/confirm"
        data = await self._request("POST", endpoint, payload)
        intent = PaymentIntent.model_validate(data)
        logger.info(f"Payment intent confirmed: {intent.id} status={intent.status}")
        return intent

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        data = await self._request("GET", f"/pa/payment_intents/{quote(intent_id, safe='')}")
        return PaymentIntent.model_validate(data)


# ============================================================================
# SECTION 5: SINGLETON
# ============================================================================

_bridge: Optional[AirwallexBridge] = None


async def get_airwallex_bridge() -> AirwallexBridge:
    """Get or create singleton Airwallex bridge."""
    global _bridge
    if _bridge is None:
        _bridge = AirwallexBridge()
        await _bridge.initialize()
    return _bridge


async def close_airwallex_bridge() -> None:
    global _bridge
    if _bridge is not None:
        await _bridge.close()
        _bridge = None


__all__ = [
    "AirwallexBridge",
    "AirwallexConfig",
    "AirwallexError",
    "AirwallexNotConfigured",
    "AirwallexAuthError",
    "AirwallexAPIError",
    "get_airwallex_bridge",
    "close_airwallex_bridge",
    "parse_expiry",
    "make_request_id",
]
