"""
Tests for the transaction orchestrator.

Tests cover:
- begin_purchase guards and record creation
- confirm_purchase consumption, retry after gateway failure, unknown tokens
- Best-effort receipt dispatch
- Race with the expiry sweeper
"""
from datetime import timedelta

import pytest

from checkout_bridge.exceptions import (
    GatewayUnavailableError,
    PurchaseValidationError,
    UnknownTokenError,
)
from checkout_bridge.models.purchases import CartItem, CustomerInfo, Pricing
from checkout_bridge.services.orchestrator import (
    TransactionOrchestrator,
    compute_subtotal,
    generate_buy_order,
    generate_session_id,
)

from conftest import RETURN_URL, RecordingEmailSender


class TestIdentifiers:

    def test_buy_orders_are_unique_and_fit_webpay_limit(self):
        orders = {generate_buy_order() for _ in range(500)}

        assert len(orders) == 500
        assert all(o.startswith("LUX-") and len(o) <= 26 for o in orders)

    def test_session_ids_are_unique_and_fit_webpay_limit(self):
        ids = {generate_session_id() for _ in range(500)}

        assert len(ids) == 500
        assert all(len(i) <= 61 for i in ids)

    def test_compute_subtotal(self):
        cart = [
            CartItem.model_validate({"vehicle": {"price": 1000}, "quantity": 2}),
            CartItem.model_validate({"vehicle": {"price": "250"}, "quantity": 3}),
        ]

        assert compute_subtotal(cart) == 2750


class TestBeginPurchase:

    @pytest.mark.asyncio
    async def test_creates_exactly_one_pending_record(self, orchestrator, store, gateway, customer, cart):
        session = await orchestrator.begin_purchase(50000, customer, cart)

        assert len(store) == 1
        record = store.lookup(session.token)
        assert record.buy_order == session.buy_order
        assert record.subtotal == 50000
        assert record.discount == 0
        assert record.coupon_code is None
        assert record.customer_info == customer
        assert record.discount <= record.subtotal
        assert session.url

        sent = gateway.transactions[session.token]
        assert sent["amount"] == 50000
        assert sent["return_url"] == RETURN_URL
        assert sent["session_id"] == record.session_id

    @pytest.mark.asyncio
    async def test_supplied_pricing_is_stored(self, orchestrator, store, customer, cart):
        session = await orchestrator.begin_purchase(
            45000, customer, cart,
            Pricing(subtotal=50000, discount=5000, coupon_code="VIP10"),
        )

        record = store.lookup(session.token)
        assert (record.subtotal, record.discount, record.coupon_code) == (50000, 5000, "VIP10")

    @pytest.mark.asyncio
    async def test_distinct_purchases_get_distinct_tokens(self, orchestrator, store, customer, cart):
        first = await orchestrator.begin_purchase(50000, customer, cart)
        second = await orchestrator.begin_purchase(50000, customer, cart)

        assert first.token != second.token
        assert first.buy_order != second.buy_order
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_discount_above_amount_rejected_before_gateway(self, orchestrator, store, gateway, customer, cart):
        with pytest.raises(PurchaseValidationError):
            await orchestrator.begin_purchase(50000, customer, cart, Pricing(discount=60000))

        assert gateway.transactions == {}
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_discount_above_supplied_subtotal_rejected(self, orchestrator, store, gateway, customer, cart):
        with pytest.raises(PurchaseValidationError):
            await orchestrator.begin_purchase(50000, customer, cart, Pricing(subtotal=1000, discount=2000))

        assert gateway.transactions == {}
        assert len(store) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -100])
    async def test_non_positive_amount_rejected(self, orchestrator, gateway, customer, cart, amount):
        with pytest.raises(PurchaseValidationError, match="Invalid amount"):
            await orchestrator.begin_purchase(amount, customer, cart)

        assert gateway.transactions == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("info", [
        CustomerInfo(email="a@x.com"),
        CustomerInfo(name="Ana"),
        CustomerInfo(name="", email="a@x.com"),
    ])
    async def test_missing_customer_fields_rejected(self, orchestrator, gateway, cart, info):
        with pytest.raises(PurchaseValidationError, match="Customer information"):
            await orchestrator.begin_purchase(50000, info, cart)

        assert gateway.transactions == {}

    @pytest.mark.asyncio
    async def test_malformed_email_rejected(self, orchestrator, cart):
        with pytest.raises(PurchaseValidationError, match="email"):
            await orchestrator.begin_purchase(50000, CustomerInfo(name="Ana", email="not-an-email"), cart)

    @pytest.mark.asyncio
    async def test_email_with_trailing_newline_rejected(self, orchestrator, gateway, cart):
        with pytest.raises(PurchaseValidationError, match="email"):
            await orchestrator.begin_purchase(50000, CustomerInfo(name="Ana", email="a@x.com\n"), cart)

        assert gateway.transactions == {}

    @pytest.mark.asyncio
    async def test_first_name_satisfies_name_requirement(self, orchestrator, store, cart):
        info = CustomerInfo.model_validate({"firstName": "Ana", "email": "a@x.com"})

        session = await orchestrator.begin_purchase(50000, info, cart)

        assert store.lookup(session.token).customer_info.display_name == "Ana"

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self, orchestrator, gateway, customer):
        with pytest.raises(PurchaseValidationError, match="Cart items"):
            await orchestrator.begin_purchase(50000, customer, [])

        assert gateway.transactions == {}

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_no_state(self, orchestrator, store, gateway, customer, cart):
        gateway.fail_create = "connection reset"

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await orchestrator.begin_purchase(50000, customer, cart)

        assert exc_info.value.status_code == 502
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_missing_redirect_url_leaves_no_state(self, orchestrator, store, gateway, customer, cart):
        gateway.omit_url = True

        with pytest.raises(GatewayUnavailableError, match="No redirection URL"):
            await orchestrator.begin_purchase(50000, customer, cart)

        assert len(store) == 0


class TestConfirmPurchase:

    @pytest.mark.asyncio
    async def test_authorized_purchase_scenario(self, orchestrator, store, email_sender, customer, cart):
        session = await orchestrator.begin_purchase(50000, customer, cart)

        result = await orchestrator.confirm_purchase(session.token)
        await orchestrator.drain()

        assert result.status == "AUTHORIZED"
        assert result.order_id == session.buy_order
        assert result.card_last4_digits == "6623"
        assert result.customer_info == customer
        assert result.cart_items == cart
        assert result.amount == 50000
        assert result.subtotal == 50000
        assert result.discount == 0
        assert result.response_code == 0
        assert result.payment_type == "VD"
        assert result.installments == 1
        assert session.token not in store

        assert len(email_sender.sent) == 1
        assert email_sender.sent[0].to == "a@x.com"
        assert session.buy_order in email_sender.sent[0].subject

    @pytest.mark.asyncio
    async def test_second_confirm_is_unknown_token(self, orchestrator, customer, cart):
        session = await orchestrator.begin_purchase(50000, customer, cart)
        await orchestrator.confirm_purchase(session.token)
        await orchestrator.drain()

        with pytest.raises(UnknownTokenError):
            await orchestrator.confirm_purchase(session.token)

    @pytest.mark.asyncio
    async def test_unknown_token(self, orchestrator, gateway):
        with pytest.raises(UnknownTokenError):
            await orchestrator.confirm_purchase("tok_never_issued")

        assert gateway.committed == set()

    @pytest.mark.asyncio
    async def test_failed_commit_keeps_record_for_retry(self, orchestrator, store, gateway, customer, cart):
        session = await orchestrator.begin_purchase(50000, customer, cart)
        gateway.fail_commit = "timeout"

        with pytest.raises(GatewayUnavailableError):
            await orchestrator.confirm_purchase(session.token)

        assert session.token in store

        gateway.fail_commit = None
        result = await orchestrator.confirm_purchase(session.token)

        await orchestrator.drain()

        assert result.status == "AUTHORIZED"
        assert session.token not in store

    @pytest.mark.asyncio
    async def test_declined_commit_still_consumes_record(self, orchestrator, store, email_sender, customer):
        cart = [CartItem.model_validate({"vehicle": {"price": 13}, "quantity": 1})]
        session = await orchestrator.begin_purchase(13, customer, cart)

        result = await orchestrator.confirm_purchase(session.token)
        await orchestrator.drain()

        assert result.status == "FAILED"
        assert session.token not in store
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_confirmation(self, store, gateway, customer, cart):
        orchestrator = TransactionOrchestrator(
            store=store,
            gateway=gateway,
            return_url=RETURN_URL,
            email_sender=RecordingEmailSender(fail=True),
        )
        session = await orchestrator.begin_purchase(50000, customer, cart)

        result = await orchestrator.confirm_purchase(session.token)
        await orchestrator.drain()

        assert result.status == "AUTHORIZED"
        assert orchestrator.pending_receipts == 0

    @pytest.mark.asyncio
    async def test_no_email_sender_skips_receipt(self, store, gateway, customer, cart):
        orchestrator = TransactionOrchestrator(store=store, gateway=gateway, return_url=RETURN_URL)
        session = await orchestrator.begin_purchase(50000, customer, cart)

        result = await orchestrator.confirm_purchase(session.token)

        assert result.status == "AUTHORIZED"
        assert orchestrator.pending_receipts == 0

    @pytest.mark.asyncio
    async def test_confirm_after_sweep_is_unknown_token(self, orchestrator, store, customer, cart):
        session = await orchestrator.begin_purchase(50000, customer, cart)
        record = store.lookup(session.token)

        store.sweep_expired(record.created_at + timedelta(minutes=31), timedelta(minutes=30))

        with pytest.raises(UnknownTokenError):
            await orchestrator.confirm_purchase(session.token)
