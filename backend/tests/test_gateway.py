"""
Tests for the Webpay Plus client against a mocked HTTP transport.
"""
import json

import httpx
import pytest

from checkout_bridge.config import Settings
from checkout_bridge.exceptions import GatewayError
from checkout_bridge.mocks.payment_gateway import MockPaymentGateway
from checkout_bridge.services.gateway import (
    WEBPAY_HOSTS,
    WEBPAY_TRANSACTIONS_PATH,
    WebpayPlusGateway,
    create_gateway,
)


COMMIT_RESPONSE = {
    "vci": "TSY",
    "amount": 50000,
    "status": "AUTHORIZED",
    "buy_order": "LUX-1729260000000-a1b2c3",
    "session_id": "SESSION-abc",
    "card_detail": {"card_number": "6623"},
    "accounting_date": "1018",
    "transaction_date": "2026-10-18T14:35:00.000Z",
    "authorization_code": "1213",
    "payment_type_code": "VN",
    "response_code": 0,
    "installments_number": 0,
}


def make_gateway(handler) -> WebpayPlusGateway:
    client = httpx.AsyncClient(
        base_url=WEBPAY_HOSTS["integration"],
        transport=httpx.MockTransport(handler),
        headers={"Tbk-Api-Key-Id": "597055555532", "Tbk-Api-Key-Secret": "secret"},
    )
    return WebpayPlusGateway("597055555532", "secret", client=client)


@pytest.mark.asyncio
async def test_create_posts_transaction():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["commerce"] = request.headers["Tbk-Api-Key-Id"]
        return httpx.Response(200, json={"token": "01ab" + "f" * 60, "url": "https://webpay3gint.transbank.cl/webpayserver/initTransaction"})

    gateway = make_gateway(handler)
    result = await gateway.create("LUX-1", "SESSION-1", 50000, "http://localhost:5173/checkout/confirm")
    await gateway.aclose()

    assert seen["method"] == "POST"
    assert seen["path"] == WEBPAY_TRANSACTIONS_PATH
    assert seen["body"] == {
        "buy_order": "LUX-1",
        "session_id": "SESSION-1",
        "amount": 50000,
        "return_url": "http://localhost:5173/checkout/confirm",
    }
    assert seen["commerce"] == "597055555532"
    assert result.token.startswith("01ab")
    assert result.url.endswith("initTransaction")


@pytest.mark.asyncio
async def test_commit_puts_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(200, json=COMMIT_RESPONSE)

    gateway = make_gateway(handler)
    commit = await gateway.commit("tok123")

    assert seen == {"method": "PUT", "path": f"{WEBPAY_TRANSACTIONS_PATH}/tok123"}
    assert commit.status == "AUTHORIZED"
    assert commit.card_last4_digits == "6623"
    assert commit.authorization_code == "1213"
    assert commit.installments_number == 0


@pytest.mark.asyncio
async def test_api_error_message_is_surfaced():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"error_message": "Invalid value for parameter: token"})

    gateway = make_gateway(handler)

    with pytest.raises(GatewayError, match="Invalid value for parameter") as exc_info:
        await gateway.commit("bad")

    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_transport_error_raises_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = make_gateway(handler)

    with pytest.raises(GatewayError, match="request failed"):
        await gateway.create("LUX-1", "SESSION-1", 1000, "http://localhost/confirm")


def test_unknown_environment_rejected():
    with pytest.raises(ValueError):
        WebpayPlusGateway("597055555532", "secret", environment="sandbox")


def test_create_gateway_respects_demo_mode():
    assert isinstance(create_gateway(Settings(_env_file=None, demo_mode=True)), MockPaymentGateway)
    assert isinstance(create_gateway(Settings(_env_file=None, demo_mode=False)), WebpayPlusGateway)


@pytest.mark.asyncio
async def test_mock_gateway_forgets_committed_transactions():
    gateway = MockPaymentGateway()
    transaction = await gateway.create("LUX-1", "SESSION-1", 1000, "http://localhost/confirm")

    commit = await gateway.commit(transaction.token)

    assert commit.status == "AUTHORIZED"
    assert gateway.transactions == {}
    assert gateway.committed == {transaction.token}

    with pytest.raises(GatewayError, match="already locked"):
        await gateway.commit(transaction.token)
