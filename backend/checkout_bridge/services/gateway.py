"""
Payment Gateway Clients

Opens and commits card transactions with Transbank Webpay Plus.

The orchestrator only sees the PaymentGateway interface; WebpayPlusGateway
talks to the Webpay REST API and the mock gateway in ..mocks serves demo mode
and tests.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional
import logging

import httpx
from pydantic import BaseModel

from ..exceptions import GatewayError

logger = logging.getLogger(__name__)


WEBPAY_HOSTS = {
    "integration": "https://webpay3gint.transbank.cl",
    "production": "https://webpay3g.transbank.cl",
}
WEBPAY_TRANSACTIONS_PATH = "/rswebpaytransaction/api/webpay/v1.2/transactions"


# ============================================================================
# Gateway Results
# ============================================================================

class GatewayTransaction(BaseModel):
    """Response of a create call: token plus the Webpay form URL."""
    token: str
    url: Optional[str] = None


class CardDetail(BaseModel):
    card_number: Optional[str] = None


class GatewayCommit(BaseModel):
    """Response of a commit call as reported by Webpay."""
    status: str
    buy_order: Optional[str] = None
    session_id: Optional[str] = None
    amount: Optional[int] = None
    authorization_code: Optional[str] = None
    response_code: Optional[int] = None
    payment_type_code: Optional[str] = None
    installments_number: Optional[int] = None
    card_detail: Optional[CardDetail] = None
    transaction_date: Optional[datetime] = None
    accounting_date: Optional[str] = None
    vci: Optional[str] = None

    @property
    def card_last4_digits(self) -> Optional[str]:
        return self.card_detail.card_number if self.card_detail else None


# ============================================================================
# Gateway Interface
# ============================================================================

class PaymentGateway(ABC):
    """Abstract interface for the card-payment gateway."""

    @abstractmethod
    async def create(
        self,
        buy_order: str,
        session_id: str,
        amount: int,
        return_url: str,
    ) -> GatewayTransaction:
        """
        Open a transaction.

        Args:
            buy_order: Merchant order identifier
            session_id: Merchant session identifier
            amount: Amount to charge
            return_url: Page the customer returns to after paying

        Returns:
            GatewayTransaction with token and redirect URL

        Raises:
            GatewayError: Network or validation failure
        """

    @abstractmethod
    async def commit(self, token: str) -> GatewayCommit:
        """
        Commit a transaction after the customer returns.

        Raises:
            GatewayError: Network or validation failure
        """

    async def aclose(self) -> None:
        """Release network resources."""


# ============================================================================
# Webpay Plus
# ============================================================================

class WebpayPlusGateway(PaymentGateway):
    """Transbank Webpay Plus REST client."""

    def __init__(
        self,
        commerce_code: str,
        api_key: str,
        environment: str = "integration",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if environment not in WEBPAY_HOSTS:
            raise ValueError(f"Unknown Webpay environment: {environment}")

        self.commerce_code = commerce_code
        self.environment = environment
        self._client = client or httpx.AsyncClient(
            base_url=WEBPAY_HOSTS[environment],
            headers={
                "Tbk-Api-Key-Id": commerce_code,
                "Tbk-Api-Key-Secret": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    async def create(
        self,
        buy_order: str,
        session_id: str,
        amount: int,
        return_url: str,
    ) -> GatewayTransaction:
        payload = {
            "buy_order": buy_order,
            "session_id": session_id,
            "amount": amount,
            "return_url": return_url,
        }
        data = await self._request("POST", WEBPAY_TRANSACTIONS_PATH, json=payload)
        return GatewayTransaction(**data)

    async def commit(self, token: str) -> GatewayCommit:
        data = await self._request("PUT", f"{WEBPAY_TRANSACTIONS_PATH}/{token}")
        return GatewayCommit(**data)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Webpay {method} request failed: {e}")
            raise GatewayError(f"Webpay request failed: {e}") from e

        if response.is_error:
            raise GatewayError(
                _error_message(response),
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError("Webpay returned a non-JSON response", status_code=response.status_code) from e


def _error_message(response: httpx.Response) -> str:
    """Extract Webpay's error_message field, falling back to the status line."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error_message") if isinstance(body, dict) else None
    return message or f"Webpay responded with HTTP {response.status_code}"


def create_gateway(settings) -> PaymentGateway:
    """
    Build the gateway configured for this process.

    Returns the in-process mock in demo mode, Webpay Plus otherwise.
    """
    if settings.demo_mode:
        from ..mocks.payment_gateway import MockPaymentGateway

        logger.warning("Demo mode: using mock payment gateway")
        return MockPaymentGateway()

    logger.info(f"Using Webpay Plus ({settings.webpay_environment}), commerce {settings.webpay_commerce_code}")
    return WebpayPlusGateway(
        commerce_code=settings.webpay_commerce_code,
        api_key=settings.webpay_api_key,
        environment=settings.webpay_environment,
        timeout=settings.gateway_timeout_seconds,
    )
