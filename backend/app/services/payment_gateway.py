"""Payment gateway adapter around Stripe.

Everything crossing this boundary is in integer minor units, and every
Stripe exception is translated into the payment errors in ``app.errors``.
Stripe calls are blocking, so they run in a worker thread bounded by the
configured timeout; a timeout means the outcome is unknown.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import stripe

from app.config import get_settings
from app.errors import (
    AuthenticationRequired,
    AuthorizationNotFound,
    InvalidWebhookSignature,
    PaymentDeclined,
    PaymentError,
    PaymentProviderUnavailable,
    RefundFailed,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# Provider-neutral event types
AUTHORIZATION_SUCCEEDED = "authorization.succeeded"
AUTHORIZATION_FAILED = "authorization.failed"
DISPUTE_CREATED = "dispute.created"

EVENT_TYPE_MAP = {
    "payment_intent.succeeded": AUTHORIZATION_SUCCEEDED,
    "payment_intent.payment_failed": AUTHORIZATION_FAILED,
    "charge.dispute.created": DISPUTE_CREATED,
}

# Authorization statuses
STATUS_SUCCEEDED = "succeeded"
STATUS_REQUIRES_ACTION = "requires_action"
STATUS_REQUIRES_PAYMENT_METHOD = "requires_payment_method"
STATUS_PROCESSING = "processing"
STATUS_CANCELED = "canceled"

METADATA_VALUE_LIMIT = 500
METADATA_KEY_LIMIT = 50
SNAPSHOT_PREFIX = "snapshot_"
SNAPSHOT_PARTS_KEY = "snapshot_parts"


@dataclass(frozen=True)
class Charge:
    id: str
    amount: int
    status: str
    receipt_url: Optional[str] = None


@dataclass(frozen=True)
class Authorization:
    """Provider-side record of a payment authorization."""

    id: str
    status: str
    amount: int
    currency: str
    client_secret: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)
    charges: list[Charge] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED


@dataclass(frozen=True)
class RefundResult:
    id: str
    amount: int
    currency: str
    status: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class ProviderEvent:
    """A verified webhook event with its type mapped to our vocabulary."""

    id: str
    type: str
    provider_type: str
    object: dict[str, Any]


class PaymentGateway(Protocol):
    """Contract the checkout and webhook services rely on."""

    async def authorize(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        payment_method_token: Optional[str] = None,
        receipt_email: Optional[str] = None,
        shipping: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Authorization: ...

    async def confirm(self, authorization_id: str, payment_method_id: str) -> Authorization: ...

    async def retrieve(self, authorization_id: str) -> Authorization: ...

    async def refund(
        self, authorization_id: str, amount_minor: Optional[int] = None, reason: str = "requested_by_customer"
    ) -> RefundResult: ...

    async def authorization_for_charge(self, charge_id: str) -> Optional[str]: ...

    def verify_webhook_signature(
        self, payload: bytes, signature: Optional[str], secret: Optional[str] = None
    ) -> ProviderEvent: ...


# Metadata snapshot


def encode_snapshot(snapshot: dict[str, Any], reserved_keys: int = 0) -> dict[str, str]:
    """Split a JSON snapshot across metadata values of at most 500 characters.

    Returns an empty dict when the snapshot does not fit in the remaining keys.
    """
    text = json.dumps(snapshot, separators=(",", ":"), default=str)
    parts = [text[i : i + METADATA_VALUE_LIMIT] for i in range(0, len(text), METADATA_VALUE_LIMIT)]
    if len(parts) + 1 + reserved_keys > METADATA_KEY_LIMIT:
        logger.warning("Order snapshot too large for payment metadata (%d chars)", len(text))
        return {}
    encoded = {f"{SNAPSHOT_PREFIX}{index}": part for index, part in enumerate(parts)}
    encoded[SNAPSHOT_PARTS_KEY] = str(len(parts))
    return encoded


def decode_snapshot(metadata: dict[str, str]) -> Optional[dict[str, Any]]:
    """Reassemble a snapshot written by ``encode_snapshot``; None if absent or corrupt."""
    try:
        count = int(metadata.get(SNAPSHOT_PARTS_KEY, "0"))
        if count <= 0:
            return None
        text = "".join(metadata[f"{SNAPSHOT_PREFIX}{index}"] for index in range(count))
        snapshot = json.loads(text)
    except (KeyError, ValueError) as e:
        logger.warning("Unreadable order snapshot in payment metadata: %s", e)
        return None
    return snapshot if isinstance(snapshot, dict) else None


# Stripe adapter


def _plain(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {key: obj[key] for key in obj.keys()}


def _charges(intent: Any) -> list[Charge]:
    charge = getattr(intent, "latest_charge", None)
    if charge is None or isinstance(charge, str):
        return []
    return [
        Charge(
            id=charge.id,
            amount=charge.amount,
            status=charge.status,
            receipt_url=getattr(charge, "receipt_url", None),
        )
    ]


def _authorization(intent: Any) -> Authorization:
    return Authorization(
        id=intent.id,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency,
        client_secret=getattr(intent, "client_secret", None),
        metadata={str(k): str(v) for k, v in _plain(getattr(intent, "metadata", None)).items()},
        charges=_charges(intent),
    )


def authorization_from_event(obj: dict[str, Any]) -> Authorization:
    """Authorization carried as the object of a payment webhook event."""
    return Authorization(
        id=obj["id"],
        status=obj.get("status") or "",
        amount=int(obj.get("amount") or 0),
        currency=obj.get("currency") or settings.currency,
        metadata={str(k): str(v) for k, v in (obj.get("metadata") or {}).items()},
    )


def _decline_code(error: stripe.StripeError) -> Optional[str]:
    details = getattr(error, "error", None)
    return getattr(details, "decline_code", None) or getattr(error, "code", None)


def translate_stripe_error(error: stripe.StripeError) -> PaymentError:
    """Map a Stripe exception onto the payment error taxonomy."""
    code = getattr(error, "code", None)
    if code in ("authentication_required", "payment_intent_authentication_failure"):
        return AuthenticationRequired()
    if isinstance(error, stripe.CardError):
        return PaymentDeclined(_decline_code(error), getattr(error, "user_message", None))
    if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        return PaymentProviderUnavailable(str(error))
    if isinstance(error, stripe.AuthenticationError):
        logger.error("Stripe rejected the API key: %s", error)
        return PaymentProviderUnavailable("Payment provider misconfigured")
    if code == "payment_intent_payment_attempt_failed":
        return PaymentDeclined(code)
    return PaymentError(str(error))


class StripePaymentGateway:
    """Stripe PaymentIntents behind the ``PaymentGateway`` contract."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        self.timeout = timeout or settings.stripe_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Stripe call %s timed out after %.1fs", func.__qualname__, self.timeout)
            raise PaymentProviderUnavailable("Payment provider timed out") from e

    async def authorize(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        payment_method_token: Optional[str] = None,
        receipt_email: Optional[str] = None,
        shipping: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Authorization:
        """Create a PaymentIntent; confirm it at once when a token is given."""
        params: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
            "description": "Custom Case Order",
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if shipping:
            params["shipping"] = shipping
        if settings.stripe_statement_descriptor_suffix:
            params["statement_descriptor_suffix"] = settings.stripe_statement_descriptor_suffix
        if payment_method_token:
            params["payment_method"] = payment_method_token
            params["confirm"] = True
            params["automatic_payment_methods"] = {"enabled": True, "allow_redirects": "never"}
        else:
            params["automatic_payment_methods"] = {"enabled": True}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = await self._call(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            error = translate_stripe_error(e)
            logger.warning("Payment authorization failed: %s", error, extra={"amount": amount_minor})
            raise error from e

        authorization = _authorization(intent)
        logger.info(
            "Payment intent created: %s for %d %s (%s)",
            authorization.id,
            amount_minor,
            currency,
            authorization.status,
        )
        if payment_method_token:
            self._raise_for_confirmation(intent, authorization)
        return authorization

    @staticmethod
    def _raise_for_confirmation(intent: Any, authorization: Authorization) -> None:
        if authorization.status == STATUS_REQUIRES_ACTION:
            raise AuthenticationRequired(authorization.id, authorization.client_secret)
        if authorization.status == STATUS_REQUIRES_PAYMENT_METHOD:
            last_error = getattr(intent, "last_payment_error", None)
            raise PaymentDeclined(getattr(last_error, "decline_code", None) or getattr(last_error, "code", None))

    async def confirm(self, authorization_id: str, payment_method_id: str) -> Authorization:
        """Confirm a client-side payment method against an existing intent."""
        try:
            intent = await self._call(
                stripe.PaymentIntent.confirm,
                authorization_id,
                payment_method=payment_method_id,
                return_url=f"{settings.frontend_url}/order-confirmation",
            )
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise AuthorizationNotFound(str(e)) from e
            raise translate_stripe_error(e) from e
        except stripe.StripeError as e:
            raise translate_stripe_error(e) from e
        authorization = _authorization(intent)
        logger.info("Payment confirmed: %s - Status: %s", authorization.id, authorization.status)
        self._raise_for_confirmation(intent, authorization)
        return authorization

    async def retrieve(self, authorization_id: str) -> Authorization:
        try:
            intent = await self._call(
                stripe.PaymentIntent.retrieve, authorization_id, expand=["latest_charge"]
            )
        except stripe.InvalidRequestError as e:
            raise AuthorizationNotFound(str(e)) from e
        except stripe.StripeError as e:
            raise translate_stripe_error(e) from e
        return _authorization(intent)

    async def refund(
        self,
        authorization_id: str,
        amount_minor: Optional[int] = None,
        reason: str = "requested_by_customer",
    ) -> RefundResult:
        """Refund an authorization in full, or partially when an amount is given."""
        params: dict[str, Any] = {
            "payment_intent": authorization_id,
            "reason": reason,
            "metadata": {"refund_requested_by": "admin", "original_payment_intent": authorization_id},
        }
        if amount_minor is not None:
            params["amount"] = amount_minor
        try:
            refund = await self._call(stripe.Refund.create, **params)
        except stripe.InvalidRequestError as e:
            raise RefundFailed(str(e)) from e
        except stripe.StripeError as e:
            raise translate_stripe_error(e) from e
        logger.info("Refund processed: %s for %s", refund.id, authorization_id)
        return RefundResult(
            id=refund.id,
            amount=refund.amount,
            currency=refund.currency,
            status=refund.status,
            reason=getattr(refund, "reason", None),
        )

    async def authorization_for_charge(self, charge_id: str) -> Optional[str]:
        try:
            charge = await self._call(stripe.Charge.retrieve, charge_id)
        except stripe.InvalidRequestError:
            logger.warning("Charge not found: %s", charge_id)
            return None
        except stripe.StripeError as e:
            raise translate_stripe_error(e) from e
        payment_intent = getattr(charge, "payment_intent", None)
        if payment_intent is None or isinstance(payment_intent, str):
            return payment_intent
        return payment_intent.id

    def verify_webhook_signature(
        self, payload: bytes, signature: Optional[str], secret: Optional[str] = None
    ) -> ProviderEvent:
        """Verify the raw payload against its signature header, then parse it.

        Nothing is parsed before the signature checks out.
        """
        secret = secret or self.webhook_secret
        if not secret:
            logger.error("Webhook secret is not configured")
            raise InvalidWebhookSignature()
        if not signature:
            raise InvalidWebhookSignature()
        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise InvalidWebhookSignature() from e

        try:
            event = json.loads(text)
            provider_type = event["type"]
            obj = event["data"]["object"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Signed webhook payload is malformed: %s", e)
            raise InvalidWebhookSignature() from e
        return ProviderEvent(
            id=event.get("id", ""),
            type=EVENT_TYPE_MAP.get(provider_type, provider_type),
            provider_type=provider_type,
            object=obj,
        )


# Global gateway instance
payment_gateway = StripePaymentGateway()
