"""Payment provider webhook route."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request

from app.models.request import WebhookAck
from app.services.webhook_reconciler import webhook_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment-provider", response_model=WebhookAck)
async def payment_provider_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAck:
    """Receive provider events.

    The body is read raw; the signature is checked before any parsing.
    """
    payload = await request.body()
    result = await webhook_reconciler.process(payload, stripe_signature)
    return WebhookAck(eventType=result.event_type, outcome=result.outcome)
