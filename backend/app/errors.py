"""Custom exceptions for the storefront backend.

Every error the services raise derives from ``StorefrontError`` and carries
the HTTP status and public message the API layer renders. Provider and
storage failures are translated into these classes at the adapter
boundary, so callers never inspect Stripe or pymongo exceptions.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code: int = 500
    public_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)

    def payload(self) -> dict:
        """Body rendered to the client."""
        return {"error": self.public_message}


# Validation


class ValidationFailed(StorefrontError):
    """Raised when request fields fail structural or catalog checks."""

    status_code = 400
    public_message = "Validation failed"

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        super().__init__(
            "Validation failed: " + ", ".join(f"{e.field}: {e.message}" for e in errors)
        )

    def payload(self) -> dict:
        return {"error": self.public_message, "details": [e.to_dict() for e in self.errors]}


# Payment provider


class PaymentError(StorefrontError):
    """Base exception for payment provider failures."""

    status_code = 402
    public_message = "Payment failed"


class PaymentDeclined(PaymentError):
    """Raised when the card issuer declines an authorization."""

    def __init__(self, decline_code: Optional[str], message: Optional[str] = None):
        self.decline_code = decline_code or "card_declined"
        self.user_message = message or "Your card was declined. Please try a different payment method."
        super().__init__(f"Payment declined ({self.decline_code})")

    def payload(self) -> dict:
        return {
            "error": self.public_message,
            "code": self.decline_code,
            "details": self.user_message,
        }


class AuthenticationRequired(PaymentError):
    """Raised when the payment needs customer authentication (3-D Secure)."""

    public_message = "Payment authentication required"

    def __init__(self, authorization_id: Optional[str] = None, client_secret: Optional[str] = None):
        self.authorization_id = authorization_id
        self.client_secret = client_secret
        super().__init__(f"Authentication required for {authorization_id}")

    def payload(self) -> dict:
        body = {"error": self.public_message, "authorizationId": self.authorization_id}
        if self.client_secret:
            body["clientSecret"] = self.client_secret
        return body


class PaymentProviderUnavailable(PaymentError):
    """Raised on provider outages and timeouts; the outcome is unknown."""

    status_code = 503
    public_message = "Payment service temporarily unavailable, please try again"


class PaymentPending(PaymentError):
    """Raised when the provider has not settled the payment yet.

    No order is created now; the provider webhook creates it once the
    payment settles.
    """

    status_code = 202
    public_message = "Payment is processing; your order will be confirmed shortly"

    def __init__(self, authorization_id: str):
        self.authorization_id = authorization_id
        super().__init__(f"Payment {authorization_id} still processing")

    def payload(self) -> dict:
        return {"message": self.public_message, "authorizationId": self.authorization_id}


class PaymentVerificationFailed(PaymentError):
    """Raised when a pre-authorized payment does not cover the order."""

    public_message = "Payment verification failed"


class AuthorizationNotFound(PaymentError):
    """Raised when the provider has no record of an authorization id."""

    status_code = 404
    public_message = "Payment authorization not found"


class RefundFailed(PaymentError):
    """Raised when the provider rejects a refund request."""

    status_code = 400
    public_message = "Invalid refund request"


class InvalidWebhookSignature(StorefrontError):
    """Raised when a webhook payload fails signature verification."""

    status_code = 400
    public_message = "Invalid signature"


# Storage


class StorageError(StorefrontError):
    """Base exception for order store failures."""


class StorageUnavailable(StorageError):
    """Raised when MongoDB cannot be reached."""

    status_code = 503
    public_message = "Service temporarily unavailable, please try again"


class DuplicateOrderNumber(StorageError):
    """Raised when an insert collides on orderNumber."""

    status_code = 409
    public_message = "Order number conflict. Please try again."

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order number already exists: {order_number}")


class DuplicateOrder(StorageError):
    """Raised when an authorization is already linked to a different request."""

    status_code = 409
    public_message = "Order already exists for this payment"

    def __init__(self, authorization_id: str):
        self.authorization_id = authorization_id
        super().__init__(f"Order already exists for authorization {authorization_id}")


class OrderNumberExhausted(StorageError):
    """Raised when no unique order number could be allocated."""

    status_code = 503
    public_message = "Could not allocate an order number, please try again"


class OrderPersistenceFailed(StorageError):
    """Raised when an authorized payment could not be written as an order."""

    status_code = 503
    public_message = "Your payment was received but the order is still being recorded"

    def __init__(self, authorization_id: str):
        self.authorization_id = authorization_id
        super().__init__(f"Order write failed after authorization {authorization_id}")

    def payload(self) -> dict:
        return {"error": self.public_message, "authorizationId": self.authorization_id}


class OrderNotFound(StorageError):
    """Raised when an order lookup has no match."""

    status_code = 404
    public_message = "Order not found"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Order not found: {key}")


class InvalidTransition(StorageError):
    """Raised when a status change is not allowed by the state machine."""

    status_code = 409
    public_message = "Invalid status transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")

    def payload(self) -> dict:
        return {"error": self.public_message, "from": self.current, "to": self.requested}


# Admin access


class AdminAuthenticationFailed(StorefrontError):
    status_code = 401
    public_message = "Access token required"


class AdminForbidden(StorefrontError):
    status_code = 403
    public_message = "Insufficient permissions"
