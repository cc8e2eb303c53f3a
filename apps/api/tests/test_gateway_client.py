import base64
import json

import httpx
import pytest

from config import settings
from services.payments.gateway import RazorpayClient, create_razorpay_client
from services.payments.types import GatewayNotConfiguredError, GatewayRequestError, GatewayUnavailableError


def _client(handler):
    return RazorpayClient(
        "rzp_test_key",
        "rzp_test_secret",
        base_url="https://gateway.test/v1",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_create_order_posts_minor_amount_with_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_abc", "amount": 49900, "currency": "INR"})

    order = await _client(handler).create_order(
        amount=49900,
        currency="INR",
        receipt="rcpt_" + "x" * 60,
        notes={"userId": "u1", "packageId": "basic"},
    )

    assert order["id"] == "order_abc"
    assert seen["method"] == "POST"
    assert seen["url"] == "https://gateway.test/v1/orders"
    expected_auth = base64.b64encode(b"rzp_test_key:rzp_test_secret").decode()
    assert seen["auth"] == f"Basic {expected_auth}"
    assert seen["body"]["amount"] == 49900
    assert len(seen["body"]["receipt"]) == 40
    assert seen["body"]["notes"] == {"userId": "u1", "packageId": "basic"}


@pytest.mark.asyncio
async def test_fetch_order_payments_returns_items():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/orders/order_abc/payments"
        return httpx.Response(200, json={"count": 2, "items": [{"id": "pay_1", "status": "captured"}, "junk"]})

    payments = await _client(handler).fetch_order_payments("order_abc")
    assert payments == [{"id": "pay_1", "status": "captured"}]


@pytest.mark.asyncio
async def test_client_error_carries_gateway_description():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
        )

    with pytest.raises(GatewayRequestError) as exc_info:
        await _client(handler).fetch_payment("pay_missing")
    assert str(exc_info.value) == "The id provided does not exist"
    assert exc_info.value.http_status == 400
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_server_errors_and_timeouts_are_retryable():
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream unavailable")

    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayUnavailableError) as exc_info:
        await _client(server_error).fetch_order("order_abc")
    assert exc_info.value.retryable is True

    with pytest.raises(GatewayUnavailableError):
        await _client(timeout).fetch_order("order_abc")


@pytest.mark.asyncio
async def test_non_object_response_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["unexpected"])

    with pytest.raises(GatewayUnavailableError):
        await _client(handler).fetch_order("order_abc")


def test_client_requires_key_pair():
    with pytest.raises(ValueError):
        RazorpayClient("", "secret")


def test_factory_reports_missing_configuration(monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "")
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", "")
    with pytest.raises(GatewayNotConfiguredError) as exc_info:
        create_razorpay_client()
    assert exc_info.value.status_code == 503

    monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "rzp_live_key")
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", "rzp_live_secret")
    client = create_razorpay_client()
    assert client.key_id == "rzp_live_key"
    assert client.base_url == settings.RAZORPAY_API_BASE_URL.rstrip("/")
