"""
Email Service

Delivers transactional email through Resend and renders purchase receipts.

Delivery failures raise EmailDeliveryError; callers decide whether that is
fatal (the /api/send-email endpoint) or only logged (receipts sent after a
confirmation).
"""
from abc import ABC, abstractmethod
from html import escape
from typing import Optional
import logging

import httpx
from pydantic import BaseModel

from ..exceptions import EmailDeliveryError
from ..models.purchases import ConfirmationResult

logger = logging.getLogger(__name__)


RESEND_API_BASE = "https://api.resend.com"
MAILER_NAME = "Luxury Cars System"


class EmailMessage(BaseModel):
    to: str
    subject: str
    html: str


def mask_email(email: Optional[str]) -> str:
    """First three characters of the mailbox plus the domain, for log lines."""
    if not email:
        return "No email"
    local, _, domain = email.partition("@")
    return f"{local[:3]}***@{domain}" if domain else f"{local[:3]}***"


# ============================================================================
# Sender Interface
# ============================================================================

class EmailSender(ABC):
    """Abstract interface for the transactional email provider."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> Optional[str]:
        """
        Deliver a message.

        Returns:
            Provider message id

        Raises:
            EmailDeliveryError: Provider rejected the message or was unreachable
        """

    async def aclose(self) -> None:
        """Release network resources."""


class ResendEmailSender(EmailSender):
    """Resend REST client."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        version: str = "1.1.0",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.sender = sender
        self.version = version
        self._client = client or httpx.AsyncClient(
            base_url=RESEND_API_BASE,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    async def send(self, message: EmailMessage) -> Optional[str]:
        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "headers": {
                "X-Priority": "1",
                "X-MSMail-Priority": "High",
                "Importance": "high",
                "X-Mailer": f"{MAILER_NAME} v{self.version}",
            },
            "tags": [
                {"name": "category", "value": "transaction-confirmation"},
            ],
        }

        try:
            response = await self._client.post("/emails", json=payload)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(
                f"Email provider unreachable: {e}",
                details={"to": mask_email(message.to)}
            ) from e

        if response.is_error:
            raise EmailDeliveryError(
                f"Email provider responded with HTTP {response.status_code}",
                details={"to": mask_email(message.to), "provider_status": response.status_code}
            )

        email_id = response.json().get("id")
        logger.info(f"Email sent: id={email_id or 'No ID received'}, to={mask_email(message.to)}")
        return email_id

    async def aclose(self) -> None:
        await self._client.aclose()


def create_email_sender(settings) -> Optional[EmailSender]:
    """
    Build the Resend sender, or None when no API key is configured.
    """
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not configured: receipts will not be sent")
        return None

    return ResendEmailSender(
        api_key=settings.resend_api_key,
        sender=settings.email_from,
        version=settings.app_version,
    )


# ============================================================================
# Receipt Rendering
# ============================================================================

def format_clp(amount: Optional[int]) -> str:
    """Format an integer peso amount as $1.234.567."""
    if amount is None:
        return "-"
    return "$" + f"{amount:,}".replace(",", ".")


def render_receipt(result: ConfirmationResult) -> EmailMessage:
    """
    Render the purchase receipt for a confirmed transaction.

    Raises:
        ValueError: The confirmation carries no customer email
    """
    if not result.customer_info.email:
        raise ValueError("Confirmation has no customer email")

    rows = "".join(
        "<tr>"
        f"<td>{escape(str(item.vehicle.name or item.vehicle.id or 'Item'))}</td>"
        f"<td style=\"text-align:center\">{item.quantity}</td>"
        f"<td style=\"text-align:right\">{format_clp(item.line_total)}</td>"
        "</tr>"
        for item in result.cart_items
    )

    coupon = f" ({escape(result.coupon_code)})" if result.coupon_code else ""
    name = escape(result.customer_info.display_name or "")

    html = f"""\
<html>
  <body style="font-family: Arial, sans-serif; color: #222;">
    <h2>Thank you for your purchase, {name}!</h2>
    <p>Order <strong>{escape(result.order_id)}</strong> was {escape(result.status.lower())}
       on {result.transaction_date.strftime('%Y-%m-%d %H:%M UTC')}.</p>
    <table style="width:100%; border-collapse: collapse;">
      <thead><tr><th align="left">Item</th><th>Qty</th><th align="right">Total</th></tr></thead>
      <tbody>{rows}</tbody>
    </table>
    <p>Subtotal: {format_clp(result.subtotal)}<br>
       Discount{coupon}: {format_clp(result.discount)}<br>
       <strong>Total paid: {format_clp(result.amount)}</strong></p>
    <p>Card ending in {escape(result.card_last4_digits)}, authorization code
       {escape(result.authorization_code or '-')}, {result.installments} installment(s).</p>
  </body>
</html>
"""

    return EmailMessage(
        to=result.customer_info.email,
        subject=f"Purchase confirmation {result.order_id}",
        html=html,
    )
