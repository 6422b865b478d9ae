"""
Shared fixtures for checkout bridge tests.

The mock gateway stands in for Webpay and RecordingEmailSender for Resend,
so no test leaves the process.
"""
from typing import List, Optional

import pytest

from checkout_bridge.config import Settings
from checkout_bridge.exceptions import EmailDeliveryError
from checkout_bridge.mocks.payment_gateway import MockPaymentGateway
from checkout_bridge.models.purchases import CartItem, CustomerInfo
from checkout_bridge.services.email_service import EmailMessage, EmailSender
from checkout_bridge.services.orchestrator import TransactionOrchestrator
from checkout_bridge.services.session_store import PendingPurchaseStore


RETURN_URL = "http://localhost:5173/checkout/confirm"


class RecordingEmailSender(EmailSender):
    """Keeps sent messages in memory; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[EmailMessage] = []
        self.closed = False

    async def send(self, message: EmailMessage) -> Optional[str]:
        if self.fail:
            raise EmailDeliveryError("Resend is down")
        self.sent.append(message)
        return f"email_{len(self.sent)}"

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(name="Ana", email="a@x.com", phone="+56911111111")


@pytest.fixture
def cart() -> List[CartItem]:
    return [CartItem.model_validate({"vehicle": {"id": "v1", "name": "Roadster", "price": 50000}, "quantity": 1})]


@pytest.fixture
def store() -> PendingPurchaseStore:
    return PendingPurchaseStore()


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def orchestrator(store, gateway, email_sender) -> TransactionOrchestrator:
    return TransactionOrchestrator(
        store=store,
        gateway=gateway,
        return_url=RETURN_URL,
        email_sender=email_sender,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="development",
        frontend_url="http://localhost:5173",
        resend_api_key="",
        rate_limit_max_requests=100,
        transaction_rate_limit_max_requests=10,
    )
