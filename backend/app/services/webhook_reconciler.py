"""Webhook reconciliation.

Provider events are verified on the raw payload, mapped to our event
vocabulary and dispatched to a handler by type. Every handler is safe to
run more than once for the same event, because the provider delivers at
least once.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from app.database.order_store import OrderStore, order_store
from app.database.reconciliation_store import ReconciliationStore, reconciliation_store
from app.errors import ValidationFailed
from app.models.order import PaymentStatus
from app.services.checkout import CheckoutService, checkout_service
from app.services.payment_gateway import (
    AUTHORIZATION_FAILED,
    AUTHORIZATION_SUCCEEDED,
    DISPUTE_CREATED,
    PaymentGateway,
    ProviderEvent,
    authorization_from_event,
    decode_snapshot,
    payment_gateway,
)

logger = logging.getLogger(__name__)

# Handler outcomes
OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_QUEUED = "queued"
OUTCOME_STALE = "stale"
OUTCOME_IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    event_type: str
    outcome: str


Handler = Callable[[ProviderEvent], Awaitable[str]]


def _has_object_id(obj: Any) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("id"), str) and bool(obj["id"])


class WebhookReconciler:
    """Applies verified provider events to orders."""

    def __init__(
        self,
        gateway: PaymentGateway = payment_gateway,
        store: OrderStore = order_store,
        checkout: CheckoutService = checkout_service,
        reconciliation: ReconciliationStore = reconciliation_store,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.checkout = checkout
        self.reconciliation = reconciliation
        self._handlers: dict[str, Handler] = {
            AUTHORIZATION_SUCCEEDED: self.handle_authorization_succeeded,
            AUTHORIZATION_FAILED: self.handle_authorization_failed,
            DISPUTE_CREATED: self.handle_dispute_created,
        }

    async def process(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """Verify, then dispatch. Unknown event types are acknowledged and ignored."""
        event = self.gateway.verify_webhook_signature(payload, signature)
        logger.info(
            "Webhook received: %s",
            event.provider_type,
            extra={"event_id": event.id, "event_type": event.type},
        )
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Unhandled event type: %s", event.provider_type)
            return WebhookResult(event.provider_type, OUTCOME_IGNORED)
        if not _has_object_id(event.object):
            # Acknowledged, not retried.
            logger.warning(
                "Ignoring %s event %s: object has no id",
                event.provider_type,
                event.id,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return WebhookResult(event.provider_type, OUTCOME_IGNORED)
        try:
            outcome = await handler(event)
        except Exception:
            logger.exception("Webhook handler failed for %s (%s)", event.provider_type, event.id)
            raise
        logger.info("Webhook %s handled: %s", event.id, outcome)
        return WebhookResult(event.provider_type, outcome)

    async def handle_authorization_succeeded(self, event: ProviderEvent) -> str:
        try:
            authorization = authorization_from_event(event.object)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring malformed authorization in event %s: %s", event.id, e)
            return OUTCOME_IGNORED
        result = await self.store.mark_payment_succeeded(authorization.id)
        if result is not None:
            order, changed = result
            if changed:
                logger.info("Order %s payment marked succeeded", order.orderNumber)
            return OUTCOME_UPDATED if changed else OUTCOME_UNCHANGED

        logger.warning("Payment succeeded with no matching order: %s", authorization.id)
        snapshot = decode_snapshot(authorization.metadata)
        if snapshot is None:
            await self.reconciliation.enqueue(
                authorization.id, "missing_order_snapshot", amount_minor=authorization.amount
            )
            return OUTCOME_QUEUED
        try:
            order, created = await self.checkout.recover_order(authorization, snapshot)
        except (ValidationError, ValidationFailed) as e:
            logger.error("Order snapshot for %s is invalid: %s", authorization.id, e)
            await self.reconciliation.enqueue(
                authorization.id,
                "invalid_order_snapshot",
                amount_minor=authorization.amount,
                snapshot=snapshot,
            )
            return OUTCOME_QUEUED

        await self.reconciliation.resolve(authorization.id, order.orderNumber)
        if created:
            logger.info(
                "Order %s created from webhook for %s",
                order.orderNumber,
                authorization.id,
                extra={"order_number": order.orderNumber, "authorization_id": authorization.id},
            )
            return OUTCOME_CREATED
        return OUTCOME_UNCHANGED

    async def handle_authorization_failed(self, event: ProviderEvent) -> str:
        authorization_id = event.object["id"]
        order = await self.store.get_by_authorization_id(authorization_id)
        if order is None:
            logger.info("Payment failed with no matching order: %s", authorization_id)
            return OUTCOME_IGNORED

        # A failed attempt can be reported after a later attempt on the same
        # authorization succeeded; the provider's current state wins.
        if order.paymentInfo.paymentStatus in (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED):
            current = await self.gateway.retrieve(authorization_id)
            if current.succeeded:
                logger.info("Ignoring stale failure for %s, payment has succeeded", authorization_id)
                return OUTCOME_STALE

        result = await self.store.mark_payment_failed(authorization_id)
        if result is None:
            return OUTCOME_IGNORED
        updated, changed = result
        if changed:
            logger.warning(
                "Payment failed for order %s, status %s",
                updated.orderNumber,
                updated.status.value,
            )
        return OUTCOME_UPDATED if changed else OUTCOME_UNCHANGED

    async def handle_dispute_created(self, event: ProviderEvent) -> str:
        dispute = event.object
        authorization_id = dispute.get("payment_intent")
        if not authorization_id and dispute.get("charge"):
            authorization_id = await self.gateway.authorization_for_charge(dispute["charge"])
        if not authorization_id:
            logger.warning("Dispute %s has no payment reference", dispute.get("id"))
            return OUTCOME_IGNORED

        result = await self.store.attach_dispute(
            authorization_id, dispute["id"], dispute.get("reason"), dispute.get("status")
        )
        if result is None:
            logger.warning("Dispute %s for unknown authorization %s", dispute["id"], authorization_id)
            return OUTCOME_IGNORED
        order, changed = result
        if changed:
            logger.warning(
                "Dispute created for order %s: %s",
                order.orderNumber,
                dispute.get("reason"),
                extra={"order_number": order.orderNumber, "dispute_id": dispute["id"]},
            )
        return OUTCOME_UPDATED if changed else OUTCOME_UNCHANGED


# Global webhook reconciler instance
webhook_reconciler = WebhookReconciler()
