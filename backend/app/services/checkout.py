"""Checkout orchestration.

Turns a cart into a persisted, paid order. Totals are always recomputed
on the server; the client total only decides whether a discrepancy is
logged and, when it is higher, the authorization amount. Once money has
been authorized the order write is retried, and if it still fails the
payment is queued for reconciliation so the provider webhook can create
the order later.
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

from app.config import get_settings
from app.database.catalog_store import CatalogStore, catalog_store
from app.database.order_store import OrderStore, order_store
from app.database.reconciliation_store import ReconciliationStore, reconciliation_store
from app.errors import (
    AuthorizationNotFound,
    DuplicateOrder,
    DuplicateOrderNumber,
    FieldError,
    OrderNumberExhausted,
    OrderPersistenceFailed,
    PaymentDeclined,
    PaymentPending,
    PaymentVerificationFailed,
    StorageUnavailable,
    ValidationFailed,
)
from app.models.order import (
    LineItem,
    OrderCreate,
    OrderInDB,
    OrderStatus,
    PaymentInfo,
    PaymentStatus,
)
from app.models.request import CartRequest, CheckoutRequest, CreateOrderRequest
from app.services import pricing
from app.services.order_numbers import OrderNumberAllocator, order_number_allocator
from app.services.payment_gateway import (
    STATUS_CANCELED,
    STATUS_PROCESSING,
    Authorization,
    PaymentGateway,
    encode_snapshot,
    payment_gateway,
)
from app.utils.helpers import from_minor_units, generate_hash, to_minor_units

logger = logging.getLogger(__name__)
settings = get_settings()


def build_snapshot(request: CartRequest, items: Sequence[LineItem]) -> dict[str, Any]:
    """Everything the webhook needs to rebuild the order without the client."""
    return {
        "customerInfo": request.customerInfo.model_dump(mode="json"),
        "shippingAddress": request.shippingAddress.model_dump(mode="json"),
        "billingAddress": request.billingAddress.model_dump(mode="json") if request.billingAddress else None,
        "items": [item.model_dump(mode="json") for item in items],
        "specialInstructions": request.specialInstructions,
        "marketing": request.marketing,
    }


def build_metadata(request: CartRequest, items: Sequence[LineItem], total: Decimal) -> dict[str, str]:
    first = items[0]
    metadata = {
        "customerEmail": request.customerInfo.email,
        "customerName": f"{request.customerInfo.firstName} {request.customerInfo.lastName}",
        "itemCount": str(sum(item.quantity for item in items)),
        "customText": first.text,
        "device": first.device if len(items) == 1 else "Multiple",
        "region": request.shippingAddress.region,
        "orderTotal": str(total),
    }
    metadata.update(encode_snapshot(build_snapshot(request, items), reserved_keys=len(metadata)))
    return metadata


def build_shipping(request: CartRequest) -> dict[str, Any]:
    """Shipping block in the provider's format."""
    address = request.shippingAddress
    return {
        "name": f"{request.customerInfo.firstName} {request.customerInfo.lastName}",
        "phone": request.customerInfo.phone,
        "address": {
            "line1": address.street,
            "city": address.city,
            "state": address.region,
            "postal_code": address.postalCode,
            "country": "US",
        },
    }


def request_fingerprint(request: CheckoutRequest) -> str:
    """Stable idempotency key for a checkout submission.

    Two identical submissions map to the same provider authorization, which
    the order store then converges on.
    """
    body = request.model_dump(mode="json")
    return "checkout-" + generate_hash(json.dumps(body, sort_keys=True, separators=(",", ":")))


class CheckoutService:
    """Pricing, authorization and order creation for the storefront."""

    def __init__(
        self,
        gateway: PaymentGateway = payment_gateway,
        store: OrderStore = order_store,
        catalog: CatalogStore = catalog_store,
        allocator: OrderNumberAllocator = order_number_allocator,
        reconciliation: ReconciliationStore = reconciliation_store,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.catalog = catalog
        self.allocator = allocator
        self.reconciliation = reconciliation

    # Pricing

    async def apply_catalog_prices(self, items: Sequence[LineItem]) -> list[LineItem]:
        """Replace client unit prices with the catalog price for each case type."""
        unit_prices = await self.catalog.unit_prices()
        repriced = []
        for item in items:
            price = unit_prices.get(item.caseType.value)
            if price is not None and price != item.price:
                logger.info(
                    "Repricing %s item from %s to catalog price %s",
                    item.caseType.value,
                    item.price,
                    price,
                )
                item = item.model_copy(update={"price": price})
            repriced.append(item)
        return repriced

    async def quote(self, items: Sequence[LineItem], region: str) -> pricing.Totals:
        """Server totals for a cart preview."""
        repriced = await self.apply_catalog_prices(items)
        return pricing.compute_totals(repriced, region).quantized()

    async def price_cart(self, request: CartRequest) -> tuple[list[LineItem], pricing.Totals]:
        """Validate against the catalog and compute authoritative totals."""
        errors = await self.catalog.validate_items(request.items)
        if errors:
            raise ValidationFailed(errors)
        items = await self.apply_catalog_prices(request.items)
        totals = pricing.compute_totals(items, request.shippingAddress.region).quantized()
        return items, totals

    @staticmethod
    def resolve_amount(server_total: Decimal, client_total: Optional[Decimal]) -> Decimal:
        """Amount to authorize: never less than the server total."""
        if client_total is not None and abs(server_total - client_total) > settings.price_tolerance:
            logger.warning(
                "Total amount mismatch: calculated %s, provided %s",
                server_total,
                client_total,
                extra={"calculated_total": str(server_total), "provided_total": str(client_total)},
            )
        amount = server_total if client_total is None else max(server_total, client_total)
        if amount < settings.minimum_order_total:
            raise ValidationFailed(
                [FieldError("total", f"Minimum order value is ${settings.minimum_order_total}")]
            )
        return amount

    # Payment

    async def create_payment_intent(
        self, request: CartRequest, idempotency_key: Optional[str] = None
    ) -> tuple[Authorization, pricing.Totals]:
        """Authorize server-side without a payment method; the client confirms it."""
        items, totals = await self.price_cart(request)
        amount = self.resolve_amount(totals.total, request.total)
        authorization = await self.gateway.authorize(
            to_minor_units(amount),
            settings.currency,
            build_metadata(request, items, totals.total),
            receipt_email=request.customerInfo.email,
            shipping=build_shipping(request),
            idempotency_key=idempotency_key,
        )
        return authorization, totals

    async def confirm_payment(self, authorization_id: str, payment_method_id: str) -> Authorization:
        return await self.gateway.confirm(authorization_id, payment_method_id)

    async def checkout(
        self, request: CheckoutRequest, idempotency_key: Optional[str] = None
    ) -> tuple[OrderInDB, bool]:
        """Authorize with a payment method token and persist the order.

        Returns ``(order, created)``; ``created`` is False when the same
        submission was already turned into an order.
        """
        items, totals = await self.price_cart(request)
        amount = self.resolve_amount(totals.total, request.total)
        authorization = await self.gateway.authorize(
            to_minor_units(amount),
            settings.currency,
            build_metadata(request, items, totals.total),
            payment_method_token=request.paymentMethodId,
            receipt_email=request.customerInfo.email,
            shipping=build_shipping(request),
            idempotency_key=idempotency_key or request_fingerprint(request),
        )
        self._require_settled(authorization)
        logger.info(
            "Payment authorized: %s for %s",
            authorization.id,
            amount,
            extra={"authorization_id": authorization.id, "amount": authorization.amount},
        )
        order = self.build_order(request, items, totals, authorization, created_via="checkout")
        placed, created = await self.persist(order, build_snapshot(request, items))
        self._check_same_request(placed, request)
        return placed, created

    async def place_order(self, request: CreateOrderRequest) -> tuple[OrderInDB, bool]:
        """Persist an order for a payment the client already authorized."""
        authorization_id = request.paymentInfo.paymentAuthorizationId
        existing = await self.store.get_by_authorization_id(authorization_id)
        if existing is not None:
            self._check_same_request(existing, request)
            logger.info("Order already exists for authorization %s", authorization_id)
            return existing, False

        items, totals = await self.price_cart(request)
        if request.total is not None and abs(totals.total - request.total) > settings.price_tolerance:
            logger.warning(
                "Total amount mismatch: calculated %s, provided %s",
                totals.total,
                request.total,
                extra={"calculated_total": str(totals.total), "provided_total": str(request.total)},
            )

        try:
            authorization = await self.gateway.retrieve(authorization_id)
        except AuthorizationNotFound as e:
            raise PaymentVerificationFailed(f"Unknown authorization {authorization_id}") from e
        self._require_settled(authorization, verifying=True)
        if authorization.currency.lower() != settings.currency.lower():
            raise PaymentVerificationFailed(f"Authorization currency {authorization.currency} not supported")
        required = to_minor_units(totals.total)
        if authorization.amount < required:
            logger.warning(
                "Authorization %s amount %d below order total %s",
                authorization_id,
                authorization.amount,
                totals.total,
            )
            raise PaymentVerificationFailed(
                f"Authorized {authorization.amount} does not cover {required}"
            )

        order = self.build_order(
            request,
            items,
            totals,
            authorization,
            payment_method=request.paymentInfo.paymentMethod,
            created_via="checkout",
        )
        placed, created = await self.persist(order, build_snapshot(request, items))
        self._check_same_request(placed, request)
        return placed, created

    @staticmethod
    def _require_settled(authorization: Authorization, verifying: bool = False) -> None:
        if authorization.succeeded:
            return
        if authorization.status == STATUS_PROCESSING:
            logger.info("Payment %s still processing; order deferred to webhook", authorization.id)
            raise PaymentPending(authorization.id)
        if verifying:
            raise PaymentVerificationFailed(f"Payment not completed: {authorization.status}")
        if authorization.status == STATUS_CANCELED:
            raise PaymentDeclined(STATUS_CANCELED, "This payment was canceled.")
        raise PaymentDeclined(authorization.status)

    @staticmethod
    def _check_same_request(order: OrderInDB, request: CartRequest) -> None:
        """Raise DuplicateOrder when an authorization is reused by another customer."""
        if order.customerInfo.email != request.customerInfo.email:
            logger.warning(
                "Authorization %s already belongs to order %s",
                order.paymentInfo.paymentAuthorizationId,
                order.orderNumber,
            )
            raise DuplicateOrder(order.paymentInfo.paymentAuthorizationId)

    # Persistence

    @staticmethod
    def build_order(
        request: CartRequest,
        items: Sequence[LineItem],
        totals: pricing.Totals,
        authorization: Authorization,
        payment_method: str = "card",
        created_via: str = "checkout",
    ) -> OrderCreate:
        return OrderCreate(
            customerInfo=request.customerInfo,
            shippingAddress=request.shippingAddress,
            billingAddress=request.billingAddress or request.shippingAddress,
            items=list(items),
            subtotal=totals.subtotal,
            shippingCost=totals.shipping_cost,
            tax=totals.tax,
            total=totals.total,
            paymentInfo=PaymentInfo(
                paymentAuthorizationId=authorization.id,
                paymentMethod=payment_method,
                paymentStatus=PaymentStatus.SUCCEEDED,
                authorizedAmount=from_minor_units(authorization.amount),
            ),
            specialInstructions=request.specialInstructions,
            marketing=request.marketing,
            createdVia=created_via,
        )

    async def recover_order(
        self, authorization: Authorization, snapshot: dict[str, Any]
    ) -> tuple[OrderInDB, bool]:
        """Create the missing order for a settled payment from its metadata snapshot.

        Items carry the prices fixed at checkout, so the catalog is not
        consulted again. Raises pydantic's ValidationError for a bad snapshot.
        """
        request = CartRequest(**snapshot, total=from_minor_units(authorization.amount))
        totals = pricing.compute_totals(request.items, request.shippingAddress.region).quantized()
        order = self.build_order(request, request.items, totals, authorization, created_via="webhook")
        return await self.persist(order, snapshot)

    async def insert(self, order: OrderCreate) -> tuple[OrderInDB, bool]:
        """Allocate a number and insert, reallocating on a number collision."""
        for _ in range(self.allocator.max_attempts):
            order_number = await self.allocator.allocate()
            try:
                return await self.store.create(order, order_number, OrderStatus.PROCESSING)
            except DuplicateOrderNumber:
                logger.info("Order number %s taken during insert, reallocating", order_number)
        raise OrderNumberExhausted()

    async def persist(
        self, order: OrderCreate, snapshot: Optional[dict[str, Any]] = None
    ) -> tuple[OrderInDB, bool]:
        """Write an order for an authorized payment.

        Retried on storage failures; the unique authorization id makes a
        retry after an unacknowledged write converge on the stored order.
        """
        authorization_id = order.paymentInfo.paymentAuthorizationId
        attempts = settings.order_persist_attempts
        failure: Exception = OrderPersistenceFailed(authorization_id)
        for attempt in range(1, attempts + 1):
            try:
                return await self.insert(order)
            except StorageUnavailable as e:
                failure = e
                logger.warning(
                    "Order write for %s failed (attempt %d/%d): %s",
                    authorization_id,
                    attempt,
                    attempts,
                    e,
                )
                if attempt < attempts:
                    await asyncio.sleep(settings.order_persist_backoff_seconds * attempt)
            except OrderNumberExhausted as e:
                failure = e
                break

        logger.critical(
            "Payment %s authorized but order could not be saved",
            authorization_id,
            extra={"authorization_id": authorization_id, "total": str(order.total)},
        )
        try:
            await self.reconciliation.enqueue(
                authorization_id,
                "order_write_failed",
                amount_minor=to_minor_units(order.total),
                snapshot=snapshot,
            )
        except StorageUnavailable:
            logger.critical("Could not queue %s for reconciliation; awaiting webhook", authorization_id)
        if isinstance(failure, OrderNumberExhausted):
            raise failure
        raise OrderPersistenceFailed(authorization_id) from failure


# Global checkout service instance
checkout_service = CheckoutService()
