"""
Pydantic models for the checkout bridge.
"""
from .purchases import (
    CartItem,
    ConfirmationResult,
    CustomerInfo,
    PendingPurchase,
    Pricing,
    PurchaseSession,
    Vehicle,
)

__all__ = [
    "CartItem",
    "ConfirmationResult",
    "CustomerInfo",
    "PendingPurchase",
    "Pricing",
    "PurchaseSession",
    "Vehicle",
]
