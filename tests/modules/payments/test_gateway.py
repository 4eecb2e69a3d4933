"""
Tests for the payment gateway client using httpx mock transports.
"""

import json
from decimal import Decimal

import httpx
import pytest

from admissions.modules.payments.gateway import (
    CheckoutRequest,
    GatewayUnavailableError,
    PaymentGatewayClient,
)

CHECKOUT = CheckoutRequest(
    order_id="HKT1760000000000042",
    amount=Decimal("1000.00"),
    currency="INR",
    payment_type="participation",
    customer_name="Asha Rao",
    customer_email="asha@example.com",
)


def client_for(handler) -> PaymentGatewayClient:
    return PaymentGatewayClient(
        base_url="https://gateway.test",
        api_key="sk_test",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestCreateCheckout:
    @pytest.mark.asyncio
    async def test_returns_checkout_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"checkout_url": "https://gateway.test/pay/42"})

        url = await client_for(handler).create_checkout(CHECKOUT)

        assert url == "https://gateway.test/pay/42"
        assert seen["path"] == "/orders"
        assert seen["auth"] == "Bearer sk_test"
        assert seen["body"]["order_id"] == CHECKOUT.order_id
        assert seen["body"]["amount"] == "1000.00"

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayUnavailableError):
            await client_for(handler).create_checkout(CHECKOUT)

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(GatewayUnavailableError):
            await client_for(handler).create_checkout(CHECKOUT)

    @pytest.mark.asyncio
    async def test_missing_checkout_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        with pytest.raises(GatewayUnavailableError):
            await client_for(handler).create_checkout(CHECKOUT)

    @pytest.mark.asyncio
    async def test_unconfigured_uses_development_checkout(self):
        client = PaymentGatewayClient(base_url="", api_key="")

        url = await client.create_checkout(CHECKOUT)

        assert "/payment/checkout?" in url
        assert f"order_id={CHECKOUT.order_id}" in url


class TestFetchStatus:
    @pytest.mark.asyncio
    async def test_reads_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/orders/{CHECKOUT.order_id}"
            return httpx.Response(
                200,
                json={"order_status": "Success", "tracking_id": "trk_1"},
            )

        report = await client_for(handler).fetch_status(CHECKOUT.order_id)

        assert report.gateway_status == "Success"
        assert report.tracking_id == "trk_1"
        assert report.failure_message is None

    @pytest.mark.asyncio
    async def test_failure_message_fallback(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "Failure", "status_message": "Declined"})

        report = await client_for(handler).fetch_status(CHECKOUT.order_id)

        assert report.gateway_status == "Failure"
        assert report.failure_message == "Declined"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GatewayUnavailableError):
            await client_for(handler).fetch_status(CHECKOUT.order_id)

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        with pytest.raises(GatewayUnavailableError):
            await PaymentGatewayClient(base_url="").fetch_status(CHECKOUT.order_id)
