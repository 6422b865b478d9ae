"""
Transaction Orchestrator

Sequences the two halves of a Webpay checkout:

- begin_purchase: validate, open the gateway transaction, store the pending
  purchase under the returned token
- confirm_purchase: look up the pending purchase, commit with the gateway,
  merge results, consume the record and dispatch the receipt

Per-token states: NONE -> PENDING -> CONFIRMED | EXPIRED. Gateway calls never
run while the store is locked; the store is only written after a create
succeeds and only cleared after a commit succeeds.
"""
import asyncio
import re
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence, Set
import logging

from ..exceptions import GatewayUnavailableError, PurchaseValidationError
from ..models.purchases import (
    CartItem,
    ConfirmationResult,
    CustomerInfo,
    PendingPurchase,
    Pricing,
    PurchaseSession,
)
from .email_service import EmailSender, mask_email, render_receipt
from .gateway import PaymentGateway
from .session_store import PendingPurchaseStore, mask_token

logger = logging.getLogger(__name__)


EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")


# ============================================================================
# Identifier Generation
# ============================================================================

def generate_buy_order() -> str:
    """
    Merchant order id: LUX-<epoch ms>-<6 hex>.

    Webpay caps buy_order at 26 characters; this yields 24.
    """
    return f"LUX-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def generate_session_id() -> str:
    return f"SESSION-{uuid.uuid4().hex}"


def compute_subtotal(cart_items: Sequence[CartItem]) -> int:
    """Sum of price x quantity over the cart."""
    return sum(item.line_total for item in cart_items)


# ============================================================================
# Orchestrator
# ============================================================================

class TransactionOrchestrator:
    """
    Mediates between the pending purchase store, the payment gateway and the
    email sender.
    """

    def __init__(
        self,
        store: PendingPurchaseStore,
        gateway: PaymentGateway,
        return_url: str,
        email_sender: Optional[EmailSender] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.return_url = return_url
        self.email_sender = email_sender

        # Receipt tasks still running
        self._receipt_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Begin
    # ------------------------------------------------------------------

    async def begin_purchase(
        self,
        amount: int,
        customer_info: CustomerInfo,
        cart_items: Sequence[CartItem],
        pricing: Optional[Pricing] = None,
    ) -> PurchaseSession:
        """
        Open a gateway transaction and store the pending purchase.

        Args:
            amount: Total to charge
            customer_info: Buyer contact data (name and email required)
            cart_items: Non-empty cart
            pricing: Optional subtotal, discount and coupon code

        Returns:
            PurchaseSession with the Webpay redirect URL and token

        Raises:
            PurchaseValidationError: A business rule failed (nothing was sent
                to the gateway)
            GatewayUnavailableError: The create call failed or returned no URL
                (nothing was stored)
        """
        pricing = pricing or Pricing()
        self._validate_purchase(amount, customer_info, cart_items, pricing)

        discount = pricing.discount or 0
        subtotal = pricing.subtotal if pricing.subtotal is not None else compute_subtotal(cart_items)
        if discount > subtotal:
            raise PurchaseValidationError(
                "Discount cannot be greater than the subtotal",
                details={"discount": discount, "subtotal": subtotal}
            )

        buy_order = generate_buy_order()
        session_id = generate_session_id()

        logger.info(
            f"Creating transaction {buy_order}: amount={amount}, "
            f"customer={mask_email(customer_info.email)}, items={len(cart_items)}, "
            f"subtotal={subtotal}, discount={discount}, coupon={pricing.coupon_code or 'None'}"
        )

        try:
            transaction = await self.gateway.create(buy_order, session_id, amount, self.return_url)
        except Exception as e:
            logger.error(f"Gateway create failed for {buy_order}: {e}")
            raise GatewayUnavailableError(
                "Error creating transaction",
                details={"buy_order": buy_order}
            ) from e

        if not transaction.url:
            logger.error(f"Gateway returned no redirect URL for {buy_order}")
            raise GatewayUnavailableError(
                "No redirection URL received from Webpay",
                details={"buy_order": buy_order}
            )

        record = PendingPurchase(
            token=transaction.token,
            buy_order=buy_order,
            session_id=session_id,
            customer_info=customer_info,
            cart_items=list(cart_items),
            amount=amount,
            subtotal=subtotal,
            discount=discount,
            coupon_code=pricing.coupon_code,
            created_at=datetime.now(timezone.utc),
        )
        self.store.insert(record)

        logger.info(f"Transaction {buy_order} pending confirmation ({mask_token(transaction.token)})")

        return PurchaseSession(url=transaction.url, token=transaction.token, buy_order=buy_order)

    @staticmethod
    def _validate_purchase(
        amount: int,
        customer_info: CustomerInfo,
        cart_items: Sequence[CartItem],
        pricing: Pricing,
    ) -> None:
        """Business-rule guards checked before any gateway call."""
        if amount is None or amount <= 0:
            raise PurchaseValidationError(
                "Invalid amount",
                details={"reason": "Amount must be a positive number"}
            )

        if customer_info is None or not customer_info.display_name or not customer_info.email:
            raise PurchaseValidationError(
                "Customer information is required",
                details={"reason": "name and email are mandatory fields"}
            )

        if not EMAIL_PATTERN.fullmatch(customer_info.email):
            raise PurchaseValidationError(
                "Invalid email format",
                details={"reason": "Please provide a valid email address"}
            )

        if not cart_items:
            raise PurchaseValidationError(
                "Cart items are required",
                details={"reason": "At least one item must be in the cart"}
            )

        discount = pricing.discount or 0
        if discount < 0:
            raise PurchaseValidationError(
                "Invalid discount",
                details={"reason": "Discount cannot be negative"}
            )
        if discount > amount:
            raise PurchaseValidationError(
                "Invalid discount",
                details={"reason": "Discount cannot be greater than the total amount"}
            )

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    async def confirm_purchase(self, token: str) -> ConfirmationResult:
        """
        Commit the gateway transaction for a token.

        Any completed commit consumes the pending purchase, whatever status
        Webpay reports. A failed commit call leaves it in place so the caller
        can retry with the same token.

        The receipt email only goes out for AUTHORIZED results; a declined
        payment is confirmed to the caller but no receipt is sent. Delivery
        runs in the background and its failures are only logged.

        Raises:
            UnknownTokenError: No pending purchase for the token
            GatewayUnavailableError: The commit call failed
        """
        record = self.store.lookup(token)

        logger.info(f"Confirming transaction {record.buy_order} ({mask_token(token)})")

        try:
            commit = await self.gateway.commit(token)
        except Exception as e:
            logger.error(f"Gateway commit failed for {record.buy_order}: {e}")
            raise GatewayUnavailableError(
                "Error confirming transaction",
                details={"buy_order": record.buy_order}
            ) from e

        logger.info(
            f"Commit response for {record.buy_order}: status={commit.status}, "
            f"amount={commit.amount}, auth_code={commit.authorization_code}"
        )

        result = ConfirmationResult(
            status=commit.status,
            order_id=commit.buy_order or record.buy_order,
            amount=commit.amount,
            subtotal=record.subtotal,
            discount=record.discount,
            coupon_code=record.coupon_code,
            card_last4_digits=commit.card_last4_digits or "N/A",
            customer_info=record.customer_info,
            cart_items=record.cart_items,
            transaction_date=datetime.now(timezone.utc),
            authorization_code=commit.authorization_code,
            response_code=commit.response_code,
            payment_type=commit.payment_type_code,
            installments=commit.installments_number or 1,
        )

        self.store.delete(token)
        logger.info(f"Cleaned transaction data for {mask_token(token)}")

        if result.is_authorized:
            self._dispatch_receipt(result)

        return result

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def _dispatch_receipt(self, result: ConfirmationResult) -> None:
        """Send the receipt in a background task; never raises."""
        if self.email_sender is None:
            logger.warning(f"No email sender configured, skipping receipt for {result.order_id}")
            return

        task = asyncio.create_task(self._send_receipt(result))
        self._receipt_tasks.add(task)
        task.add_done_callback(self._receipt_tasks.discard)

    async def _send_receipt(self, result: ConfirmationResult) -> None:
        try:
            message = render_receipt(result)
            await self.email_sender.send(message)
            logger.info(f"Receipt sent for {result.order_id} to {mask_email(message.to)}")
        except Exception as e:
            logger.error(f"Failed to send receipt for {result.order_id}: {e}")

    @property
    def pending_receipts(self) -> int:
        return len(self._receipt_tasks)

    async def drain(self) -> None:
        """Wait for outstanding receipt tasks."""
        if self._receipt_tasks:
            await asyncio.gather(*self._receipt_tasks, return_exceptions=True)
