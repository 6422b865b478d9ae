"""
API request and response bodies for the storefront endpoints.
"""
from datetime import datetime
from typing import Optional, List

from pydantic import Field

from .purchases import CamelModel, CartItem, CustomerInfo, Pricing


class CreateTransactionRequest(CamelModel):
    """Body of POST /api/create-transaction."""
    amount: int
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    cart_items: List[CartItem] = Field(default_factory=list)
    subtotal: Optional[int] = None
    discount: Optional[int] = None
    coupon_code: Optional[str] = None

    def pricing(self) -> Pricing:
        return Pricing(
            subtotal=self.subtotal,
            discount=self.discount,
            coupon_code=self.coupon_code,
        )


class CreateTransactionResponse(CamelModel):
    success: bool = True
    url: str
    token: str
    buy_order: str
    message: str = "Transaction created successfully"


class ConfirmTransactionRequest(CamelModel):
    """Body of POST /api/confirm-transaction."""
    token: str = Field(min_length=1)


class SendEmailRequest(CamelModel):
    """
    Body of POST /api/send-email.

    reactTemplate is HTML already rendered by the storefront.
    """
    to: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    react_template: str = Field(min_length=1)


class SendEmailResponse(CamelModel):
    success: bool = True
    email_id: Optional[str] = None
    message: str = "Email sent successfully"
    timestamp: datetime
