"""
Payment Gateway Client

Thin async client for the hosted-checkout gateway.

- create_checkout: register an order and get the redirect URL
- fetch_status: poll the gateway for an order's current status

Every call is bounded by payment_gateway_timeout_seconds. Network errors,
timeouts and 5xx responses raise GatewayUnavailableError so nothing is
persisted for a checkout the gateway never acknowledged.

Without a configured gateway URL (local development), checkout URLs point
at the frontend's mock checkout page and status polling is unavailable.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from urllib.parse import urlencode

import httpx

from admissions.core.config import settings
from admissions.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class GatewayUnavailableError(UpstreamError):
    def __init__(self, message: str = "The payment gateway is unavailable. Please try again shortly."):
        super().__init__(message, "GATEWAY_UNAVAILABLE")


@dataclass(frozen=True)
class CheckoutRequest:
    order_id: str
    amount: Decimal
    currency: str
    payment_type: str
    customer_name: str
    customer_email: str | None = None
    customer_phone: str | None = None


@dataclass(frozen=True)
class GatewayStatusReport:
    """Raw status as reported by the gateway, before normalization."""

    order_id: str
    gateway_status: str
    tracking_id: str | None = None
    failure_message: str | None = None


class PaymentGatewayClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.payment_gateway_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.payment_gateway_api_key
        self.timeout = timeout if timeout is not None else settings.payment_gateway_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            },
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"[Gateway] Timeout on {method} {path}: {e}")
            raise GatewayUnavailableError() from e
        except httpx.HTTPStatusError as e:
            logger.error(f"[Gateway] HTTP {e.response.status_code} on {method} {path}")
            raise GatewayUnavailableError() from e
        except httpx.RequestError as e:
            logger.error(f"[Gateway] Request error on {method} {path}: {e}")
            raise GatewayUnavailableError() from e
        except ValueError as e:
            logger.error(f"[Gateway] Malformed response on {method} {path}: {e}")
            raise GatewayUnavailableError() from e

    async def create_checkout(self, checkout: CheckoutRequest) -> str:
        """
        Register an order with the gateway.

        Returns:
            URL to redirect the applicant to

        Raises:
            GatewayUnavailableError: Timeout, network error or error response
        """
        return_url = f"{settings.frontend_url}/payment/return?order_id={checkout.order_id}"

        if not self.is_configured:
            query = urlencode({"order_id": checkout.order_id, "amount": str(checkout.amount)})
            url = f"{settings.frontend_url}/payment/checkout?{query}"
            logger.info(f"[Gateway] Not configured; development checkout for {checkout.order_id}")
            return url

        data = await self._request(
            "POST",
            "/orders",
            json={
                "order_id": checkout.order_id,
                "amount": str(checkout.amount),
                "currency": checkout.currency,
                "description": checkout.payment_type,
                "customer": {
                    "name": checkout.customer_name,
                    "email": checkout.customer_email,
                    "phone": checkout.customer_phone,
                },
                "redirect_url": return_url,
                "cancel_url": return_url,
            },
        )

        checkout_url = data.get("checkout_url")
        if not checkout_url:
            logger.error(f"[Gateway] No checkout_url for {checkout.order_id}")
            raise GatewayUnavailableError()
        return checkout_url

    async def fetch_status(self, order_id: str) -> GatewayStatusReport:
        """
        Ask the gateway for an order's status.

        Raises:
            GatewayUnavailableError: Not configured, or the call failed
        """
        if not self.is_configured:
            raise GatewayUnavailableError("Payment gateway status polling is not configured.")

        data = await self._request("GET", f"/orders/{order_id}")
        gateway_status = data.get("order_status") or data.get("status")
        if not gateway_status:
            logger.error(f"[Gateway] No status for {order_id}")
            raise GatewayUnavailableError()

        return GatewayStatusReport(
            order_id=order_id,
            gateway_status=str(gateway_status),
            tracking_id=data.get("tracking_id"),
            failure_message=data.get("failure_message") or data.get("status_message"),
        )


gateway_client = PaymentGatewayClient()
