"""MercadoPago service - Integration with the MercadoPago REST API"""

import logging
from typing import Any, Optional

import httpx

from ...config import (
    MERCADOPAGO_ACCESS_TOKEN,
    MERCADOPAGO_API_BASE_URL,
    MERCADOPAGO_TIMEOUT_SECONDS,
)
from ...errors import UpstreamError

logger = logging.getLogger(__name__)


class MercadoPagoService:
    """Service for MercadoPago API operations.

    Every call is bounded by the configured timeout. Transport errors, timeouts and
    non-2xx answers are raised as UpstreamError; callers never get a partial object.
    """

    def __init__(
        self,
        access_token: Optional[str] = MERCADOPAGO_ACCESS_TOKEN,
        base_url: str = MERCADOPAGO_API_BASE_URL,
        timeout: float = MERCADOPAGO_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

        if not self.access_token:
            logger.warning(
                "MERCADOPAGO_ACCESS_TOKEN not set; payment endpoints will fail until configured"
            )

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        if not self.access_token:
            raise UpstreamError("MercadoPago access token not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(method, path, headers=headers, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"⏱️ MercadoPago {method} {path} timed out after {self.timeout}s")
            raise UpstreamError(f"MercadoPago request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ MercadoPago {method} {path} failed: {e}")
            raise UpstreamError(f"MercadoPago request failed: {method} {path}") from e

        if response.status_code >= 400:
            logger.error(
                f"❌ MercadoPago {method} {path} returned {response.status_code}: {response.text[:300]}"
            )
            raise UpstreamError(
                f"MercadoPago API error {response.status_code} on {method} {path}",
                upstream_status=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        """Get payment details"""
        payment = await self._request("GET", f"/v1/payments/{payment_id}")
        logger.info(
            f"💳 MercadoPago payment {payment.get('id')}: status={payment.get('status')}, "
            f"detail={payment.get('status_detail')}, reference={payment.get('external_reference')}"
        )
        return payment

    async def get_preapproval(self, preapproval_id: str) -> dict[str, Any]:
        """Get subscription (preapproval) details"""
        preapproval = await self._request("GET", f"/preapproval/{preapproval_id}")
        logger.info(
            f"🔄 MercadoPago preapproval {preapproval.get('id')}: status={preapproval.get('status')}, "
            f"reference={preapproval.get('external_reference')}"
        )
        return preapproval

    async def create_preapproval(self, payload: dict) -> dict[str, Any]:
        """Create a recurring subscription the payer completes at init_point"""
        return await self._request("POST", "/preapproval", json=payload)

    async def create_preference(self, payload: dict) -> dict[str, Any]:
        """Create a one-off checkout preference"""
        return await self._request("POST", "/checkout/preferences", json=payload)

    async def create_plan(self, payload: dict) -> dict[str, Any]:
        """Create a subscription plan (preapproval_plan)"""
        return await self._request("POST", "/preapproval_plan", json=payload)

    async def update_plan(self, external_plan_id: str, payload: dict) -> dict[str, Any]:
        """Update a subscription plan (preapproval_plan)"""
        return await self._request("PUT", f"/preapproval_plan/{external_plan_id}", json=payload)
