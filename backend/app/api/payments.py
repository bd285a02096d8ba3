"""Payment routes."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from app.api.dependencies import require_admin, require_super_admin
from app.config import get_settings
from app.database.reconciliation_store import reconciliation_store
from app.models.request import (
    AuthorizationResponse,
    CartRequest,
    ChargeSummary,
    CheckoutRequest,
    ConfirmPaymentRequest,
    OrderCreatedResponse,
    OrderSummary,
    PaymentIntentResponse,
    QuoteRequest,
    RefundRequest,
    RefundResponse,
    TotalsResponse,
    money,
)
from app.models.user import AdminPrincipal
from app.services import pricing
from app.services.admin_service import admin_service
from app.services.checkout import checkout_service
from app.services.payment_gateway import Authorization, payment_gateway

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/payments", tags=["payments"])


def _totals_response(totals: pricing.Totals) -> TotalsResponse:
    return TotalsResponse(
        subtotal=money(totals.subtotal),
        shipping=money(totals.shipping_cost),
        tax=money(totals.tax),
        total=money(totals.total),
        taxRate=float(totals.tax_rate),
    )


def _authorization_response(authorization: Authorization) -> AuthorizationResponse:
    return AuthorizationResponse(
        id=authorization.id,
        status=authorization.status,
        amount=authorization.amount,
        currency=authorization.currency,
        charges=[
            ChargeSummary(id=c.id, amount=c.amount, status=c.status, receiptUrl=c.receipt_url)
            for c in authorization.charges
        ],
    )


@router.get("/config")
async def payment_config() -> dict[str, Any]:
    """Publishable key and pricing parameters for the client."""
    return {"publishableKey": settings.stripe_publishable_key, **pricing.pricing_config()}


@router.post("/calculate", response_model=TotalsResponse)
async def calculate_totals(request: QuoteRequest) -> TotalsResponse:
    """Preview totals for a cart."""
    totals = await checkout_service.quote(request.items, request.region)
    return _totals_response(totals)


@router.post("/create-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    request: CartRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
) -> PaymentIntentResponse:
    authorization, totals = await checkout_service.create_payment_intent(request, idempotency_key)
    return PaymentIntentResponse(
        id=authorization.id,
        clientSecret=authorization.client_secret,
        amount=authorization.amount,
        currency=authorization.currency,
        status=authorization.status,
        calculatedAmounts=_totals_response(totals),
    )


@router.post("/confirm", response_model=AuthorizationResponse)
async def confirm_payment(request: ConfirmPaymentRequest) -> AuthorizationResponse:
    authorization = await checkout_service.confirm_payment(
        request.paymentAuthorizationId, request.paymentMethodId
    )
    return _authorization_response(authorization)


@router.post("/checkout", response_model=OrderCreatedResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    request: CheckoutRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
) -> OrderCreatedResponse:
    """Authorize a payment method token and create the order in one call."""
    order, created = await checkout_service.checkout(request, idempotency_key)
    if not created:
        response.status_code = status.HTTP_200_OK
        return OrderCreatedResponse(message="Order already exists", order=OrderSummary.from_order(order))
    return OrderCreatedResponse(order=OrderSummary.from_order(order))


@router.get("/intent/{authorization_id}", response_model=AuthorizationResponse)
async def get_payment_intent(
    authorization_id: str, principal: AdminPrincipal = Depends(require_admin)
) -> AuthorizationResponse:
    return _authorization_response(await payment_gateway.retrieve(authorization_id))


@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    request: RefundRequest, principal: AdminPrincipal = Depends(require_super_admin)
) -> RefundResponse:
    result = await admin_service.refund(request, principal)
    return RefundResponse(
        id=result.id,
        amount=result.amount,
        currency=result.currency,
        status=result.status,
        reason=result.reason,
    )


@router.get("/reconciliation")
async def open_reconciliations(
    limit: int = Query(100, ge=1, le=500),
    principal: AdminPrincipal = Depends(require_admin),
) -> list[dict[str, Any]]:
    """Payments taken without a matching order."""
    return await reconciliation_store.list_open(limit)
