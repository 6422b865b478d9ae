"""
Checkout Exception Hierarchy

Error codes returned to the storefront. All codes use the checkout: prefix.
"""
from typing import Optional, Dict, Any


class CheckoutError(Exception):
    """
    Base exception for all checkout errors.

    Carries a stable error code, a human-readable message and optional
    details, plus the HTTP status the API layer should answer with.
    """

    status_code: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class PurchaseValidationError(CheckoutError):
    """
    Purchase rejected by a business rule before reaching the gateway.

    Examples:
    - Amount is zero or negative
    - Customer name or email missing, email malformed
    - Empty cart
    - Discount greater than the amount
    """

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:validation", message, details)


class UnknownTokenError(CheckoutError):
    """
    No pending purchase exists for the token.

    The token was never issued, was already confirmed, or expired.
    """

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:token:unknown", message, details)


class DuplicateTokenError(CheckoutError):
    """A pending purchase already exists for the token."""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:token:duplicate", message, details)


class GatewayUnavailableError(CheckoutError):
    """
    Payment gateway create or commit call failed.

    Examples:
    - Network error or timeout talking to Webpay
    - Gateway rejected the request
    - Create response carried no redirect URL
    """

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:gateway:unavailable", message, details)


class EmailDeliveryError(CheckoutError):
    """Email provider rejected or failed to deliver a message."""

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:email:failed", message, details)


class GatewayError(Exception):
    """Raised by gateway clients on transport or API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
