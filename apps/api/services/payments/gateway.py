"""
Razorpay REST client for orders and payments.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import require_razorpay_credentials, settings
from services.payments.types import (
    GatewayNotConfiguredError,
    GatewayRequestError,
    GatewayUnavailableError,
)

logger = logging.getLogger(__name__)


class RazorpayClient:
    """Thin async client over the Razorpay v1 API."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            key_id: Public key id, also handed to the checkout widget
            key_secret: Secret used for basic auth and payment signatures
            base_url: API root, defaults to settings.RAZORPAY_API_BASE_URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        if not key_id or not key_secret:
            raise ValueError("key_id and key_secret must be provided")
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = (base_url or settings.RAZORPAY_API_BASE_URL).rstrip("/")
        self.timeout = float(timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS)
        self._transport = transport

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("Razorpay %s %s timed out after %.1fs", method, path, self.timeout)
            raise GatewayUnavailableError("Payment gateway timed out. Please retry.") from exc
        except httpx.HTTPError as exc:
            logger.warning("Razorpay %s %s transport error: %s", method, path, exc)
            raise GatewayUnavailableError("Payment gateway is unreachable. Please retry.") from exc

        if response.status_code >= 500:
            logger.warning("Razorpay %s %s returned %s", method, path, response.status_code)
            raise GatewayUnavailableError(f"Payment gateway error ({response.status_code}). Please retry.")
        if response.status_code >= 400:
            description = _error_description(response)
            logger.warning("Razorpay %s %s rejected (%s): %s", method, path, response.status_code, description)
            raise GatewayRequestError(description, http_status=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayUnavailableError("Payment gateway returned an unreadable response.") from exc
        if not isinstance(data, dict):
            raise GatewayUnavailableError("Payment gateway returned an unexpected response shape.")
        return data

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Dict[str, str],
    ) -> Dict[str, Any]:
        """Create an order. `amount` is in minor units (paise)."""
        return await self._request(
            "POST",
            "/orders",
            {"amount": int(amount), "currency": currency, "receipt": receipt[:40], "notes": notes},
        )

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/orders/{order_id}/payments")
        items = data.get("items") or []
        return [item for item in items if isinstance(item, dict)]


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Gateway rejected the request ({response.status_code})"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return str(error["description"])
    return f"Gateway rejected the request ({response.status_code})"


def create_razorpay_client() -> RazorpayClient:
    """Build a client from settings or raise if credentials are missing."""
    try:
        key_id, key_secret = require_razorpay_credentials()
    except ValueError as exc:
        raise GatewayNotConfiguredError(str(exc)) from exc
    return RazorpayClient(key_id, key_secret)


def get_gateway_client() -> RazorpayClient:
    """FastAPI dependency for the payment gateway client."""
    return create_razorpay_client()
