"""
Pydantic Purchase Models

PendingPurchase is the server-side record linking a Webpay token to the
business data of a checkout. ConfirmationResult is the merged payload returned
to the storefront once the gateway commit succeeds.

Wire format is camelCase to match the storefront (customerInfo, cartItems,
couponCode, ...). Amounts are integer CLP.
"""
from datetime import datetime
from typing import Optional, List, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Nested Types ====================

class CustomerInfo(CamelModel):
    """
    Buyer contact data.

    name and email are optional at the shape level so the orchestrator can
    report missing values as a business-rule violation. The storefront's
    legacy firstName key stands in for name. Unknown keys pass through, and
    serialization only emits the keys that were actually sent.
    """
    model_config = ConfigDict(frozen=True, extra="allow")

    name: Optional[str] = None
    first_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.first_name

    @model_serializer(mode="wrap")
    def _serialize_as_sent(self, handler):
        data = handler(self)
        for field_name, field in type(self).model_fields.items():
            if field_name not in self.model_fields_set:
                data.pop(field.alias or field_name, None)
                data.pop(field_name, None)
        return data


class Vehicle(CamelModel):
    """Priced product reference carried by a cart line."""
    model_config = ConfigDict(frozen=True, extra="allow")

    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    price: int = Field(ge=0)


class CartItem(CamelModel):
    """Individual cart line item."""
    model_config = ConfigDict(frozen=True, extra="allow")

    vehicle: Vehicle
    quantity: int = Field(gt=0)

    @property
    def line_total(self) -> int:
        return self.vehicle.price * self.quantity


class Pricing(CamelModel):
    """Optional pricing breakdown sent by the storefront."""
    model_config = ConfigDict(frozen=True)

    subtotal: Optional[int] = None
    discount: Optional[int] = None
    coupon_code: Optional[str] = None


# ==================== Main Models ====================

class PendingPurchase(CamelModel):
    """
    Purchase awaiting gateway confirmation.

    Keyed by the gateway token. Immutable once stored; the only permitted
    change is removal from the store.
    """
    model_config = ConfigDict(frozen=True)

    token: str = Field(min_length=1)
    buy_order: str
    session_id: str
    customer_info: CustomerInfo
    cart_items: List[CartItem] = Field(min_length=1)
    amount: int = Field(gt=0)
    subtotal: int = Field(ge=0)
    discount: int = Field(default=0, ge=0)
    coupon_code: Optional[str] = None
    created_at: datetime


class PurchaseSession(CamelModel):
    """Result of opening a gateway transaction."""
    url: str
    token: str
    buy_order: str


class ConfirmationResult(CamelModel):
    """
    Gateway commit result merged with the stored business data.

    status is whatever Webpay reported (AUTHORIZED, FAILED, ...). A FAILED
    status is still a completed confirmation.
    """
    success: bool = True
    status: str
    order_id: str
    amount: Optional[int] = None
    subtotal: int
    discount: int
    coupon_code: Optional[str] = None
    card_last4_digits: str = "N/A"
    customer_info: CustomerInfo
    cart_items: List[CartItem]
    transaction_date: datetime
    authorization_code: Optional[str] = None
    response_code: Optional[int] = None
    payment_type: Optional[str] = None
    installments: int = 1

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": True,
                "status": "AUTHORIZED",
                "orderId": "LUX-1729260000000-a1b2c3",
                "amount": 50000,
                "subtotal": 50000,
                "discount": 0,
                "couponCode": None,
                "cardLast4Digits": "6623",
                "customerInfo": {"name": "Ana", "email": "a@x.com"},
                "cartItems": [{"vehicle": {"id": "v1", "name": "Roadster", "price": 50000}, "quantity": 1}],
                "transactionDate": "2026-10-18T14:35:00Z",
                "authorizationCode": "1213",
                "responseCode": 0,
                "paymentType": "VD",
                "installments": 1
            }
        }
    }

    @property
    def is_authorized(self) -> bool:
        return self.status == "AUTHORIZED"
