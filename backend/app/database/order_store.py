"""Order persistence.

The order store is the only writer of order documents. New orders go
through ``create``; every later change goes through one of the
transition methods below, each a single conditional update so that
concurrent requests and webhook deliveries converge instead of
overwriting each other.
"""

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.database.mongodb import MongoDB, mongodb, to_storage_time, translate_storage_errors
from app.errors import DuplicateOrderNumber, InvalidTransition, OrderNotFound
from app.models.order import (
    OrderCreate,
    OrderInDB,
    OrderStatus,
    PaymentStatus,
    to_document,
)
from app.models.request import OrderListQuery
from app.services import pricing
from app.services.order_status import plan_transition
from app.utils.helpers import from_minor_units, round_money, to_minor_units, utcnow

logger = logging.getLogger(__name__)

AUTHORIZATION_KEY = "paymentInfo.paymentAuthorizationId"
MAX_TRANSITION_ATTEMPTS = 3


def _storage_updates(updates: dict[str, Any]) -> dict[str, Any]:
    return {
        key: to_storage_time(value) if isinstance(value, datetime) else value
        for key, value in updates.items()
    }


def apply_tax_safety_net(order: OrderCreate) -> OrderCreate:
    """Fill in tax from the region rate when it is unset or zero.

    The checkout path always supplies tax; this guards orders built from
    other sources such as webhook snapshots.
    """
    if order.tax:
        return order
    tax = round_money(pricing.compute_tax(order.subtotal, order.shippingCost, order.shippingAddress.region))
    if not tax:
        return order
    logger.info("Auto-calculated tax %s for region %s", tax, order.shippingAddress.region)
    return order.model_copy(update={"tax": tax, "total": order.subtotal + order.shippingCost + tax})


class OrderStore:
    """Order store backed by the orders collection."""

    def __init__(self, db: MongoDB = mongodb) -> None:
        self._db = db

    @property
    def _orders(self):
        return self._db.orders

    # Reads

    @translate_storage_errors
    async def order_number_exists(self, order_number: str) -> bool:
        return await self._orders.find_one({"orderNumber": order_number}, {"_id": 1}) is not None

    @translate_storage_errors
    async def get_by_id(self, order_id: str) -> Optional[OrderInDB]:
        if not ObjectId.is_valid(order_id):
            return None
        doc = await self._orders.find_one({"_id": ObjectId(order_id)})
        return OrderInDB.from_document(doc) if doc else None

    @translate_storage_errors
    async def get_by_order_number(self, order_number: str) -> Optional[OrderInDB]:
        doc = await self._orders.find_one({"orderNumber": order_number})
        return OrderInDB.from_document(doc) if doc else None

    @translate_storage_errors
    async def get_by_authorization_id(self, authorization_id: str) -> Optional[OrderInDB]:
        doc = await self._orders.find_one({AUTHORIZATION_KEY: authorization_id})
        return OrderInDB.from_document(doc) if doc else None

    async def require(self, order_id: str) -> OrderInDB:
        order = await self.get_by_id(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    # Creation

    @translate_storage_errors
    async def create(
        self,
        order: OrderCreate,
        order_number: str,
        status: OrderStatus = OrderStatus.PROCESSING,
    ) -> tuple[OrderInDB, bool]:
        """Insert a new order.

        Returns ``(order, created)``. When an order already exists for the
        same authorization id the existing order is returned with
        ``created=False``. A collision on the order number raises
        DuplicateOrderNumber so the caller can allocate another.
        """
        order = apply_tax_safety_net(order)
        if order.total != order.subtotal + order.shippingCost + order.tax:
            raise ValueError(
                f"Order total {order.total} does not equal the sum of its components"
            )

        now = to_storage_time(utcnow())
        doc = to_document(
            order,
            orderNumber=order_number,
            status=status.value,
            fulfillment={},
            createdAt=now,
            updatedAt=now,
        )
        try:
            result = await self._orders.insert_one(doc)
        except DuplicateKeyError:
            existing = await self.get_by_authorization_id(order.paymentInfo.paymentAuthorizationId)
            if existing is not None:
                logger.info(
                    "Order already exists for authorization %s: %s",
                    order.paymentInfo.paymentAuthorizationId,
                    existing.orderNumber,
                )
                return existing, False
            raise DuplicateOrderNumber(order_number)

        doc["_id"] = result.inserted_id
        created = OrderInDB.from_document(doc)
        logger.info(
            "Order created: %s",
            created.orderNumber,
            extra={
                "order_number": created.orderNumber,
                "authorization_id": order.paymentInfo.paymentAuthorizationId,
                "total": str(created.total),
                "created_via": created.createdVia,
            },
        )
        return created, True

    # Transitions

    async def _conditional_update(
        self, order: OrderInDB, updates: dict[str, Any]
    ) -> Optional[OrderInDB]:
        doc = await self._orders.find_one_and_update(
            {"_id": ObjectId(order.id), "status": order.status.value},
            {"$set": _storage_updates(updates)},
            return_document=ReturnDocument.AFTER,
        )
        return OrderInDB.from_document(doc) if doc else None

    @translate_storage_errors
    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        tracking_number: Optional[str] = None,
        carrier: Optional[str] = None,
    ) -> OrderInDB:
        """Apply the state machine to an order.

        Raises OrderNotFound or InvalidTransition. Re-applying the current
        status is a no-op that returns the stored order.
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            order = await self.require(order_id)
            plan = plan_transition(order, status, utcnow(), tracking_number, carrier)
            if plan.is_noop:
                return order
            updated = await self._conditional_update(order, plan.updates)
            if updated is not None:
                logger.info(
                    "Order %s status %s -> %s",
                    order.orderNumber,
                    order.status.value,
                    updated.status.value,
                    extra={"path": [s.value for s in plan.path]},
                )
                return updated
            logger.info("Order %s changed concurrently, re-reading", order.orderNumber)
        raise InvalidTransition(order.status.value, status.value)

    @translate_storage_errors
    async def mark_payment_succeeded(self, authorization_id: str) -> Optional[tuple[OrderInDB, bool]]:
        """Record a successful payment; pending orders move to processing.

        Returns None when no order exists, otherwise ``(order, changed)``.
        Refunded payments are never downgraded.
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            order = await self.get_by_authorization_id(authorization_id)
            if order is None:
                return None
            payment_status = order.paymentInfo.paymentStatus
            if payment_status == PaymentStatus.REFUNDED:
                return order, False
            needs_status = order.status == OrderStatus.PENDING
            if payment_status == PaymentStatus.SUCCEEDED and not needs_status:
                return order, False

            now = utcnow()
            updates: dict[str, Any] = {"paymentInfo.paymentStatus": PaymentStatus.SUCCEEDED.value}
            if needs_status:
                updates.update(plan_transition(order, OrderStatus.PROCESSING, now).updates)
            updates["updatedAt"] = now
            updated = await self._conditional_update(order, updates)
            if updated is not None:
                return updated, True
        raise InvalidTransition(order.status.value, OrderStatus.PROCESSING.value)

    @translate_storage_errors
    async def mark_payment_failed(self, authorization_id: str) -> Optional[tuple[OrderInDB, bool]]:
        """Record a failed payment and cancel the order when still cancellable."""
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            order = await self.get_by_authorization_id(authorization_id)
            if order is None:
                return None
            already_failed = order.paymentInfo.paymentStatus == PaymentStatus.FAILED
            cancellable = order.status in (OrderStatus.PENDING, OrderStatus.PROCESSING)
            if already_failed and not cancellable:
                return order, False

            now = utcnow()
            updates: dict[str, Any] = {
                "paymentInfo.paymentStatus": PaymentStatus.FAILED.value,
                "updatedAt": now,
            }
            if cancellable:
                updates.update(plan_transition(order, OrderStatus.CANCELLED, now).updates)
            else:
                logger.warning(
                    "Payment failed for order %s already in %s; status left unchanged",
                    order.orderNumber,
                    order.status.value,
                )
            updated = await self._conditional_update(order, updates)
            if updated is not None:
                return updated, True
        raise InvalidTransition(order.status.value, OrderStatus.CANCELLED.value)

    @translate_storage_errors
    async def attach_dispute(
        self,
        authorization_id: str,
        dispute_id: str,
        reason: Optional[str],
        dispute_status: Optional[str],
    ) -> Optional[tuple[OrderInDB, bool]]:
        """Attach dispute details without touching order status."""
        order = await self.get_by_authorization_id(authorization_id)
        if order is None:
            return None
        info = order.paymentInfo
        if (info.disputeId, info.disputeReason, info.disputeStatus) == (dispute_id, reason, dispute_status):
            return order, False

        note = f"Dispute created: {reason or 'unspecified'}"
        notes = order.fulfillment.notes
        if not notes or note not in notes:
            notes = f"{notes}\n{note}" if notes else note
        doc = await self._orders.find_one_and_update(
            {"_id": ObjectId(order.id)},
            {
                "$set": _storage_updates(
                    {
                        "paymentInfo.disputeId": dispute_id,
                        "paymentInfo.disputeReason": reason,
                        "paymentInfo.disputeStatus": dispute_status,
                        "fulfillment.notes": notes,
                        "updatedAt": utcnow(),
                    }
                )
            },
            return_document=ReturnDocument.AFTER,
        )
        return OrderInDB.from_document(doc), True

    @translate_storage_errors
    async def mark_refunded(
        self, authorization_id: str, amount_minor: Optional[int] = None
    ) -> Optional[OrderInDB]:
        """Record a refund against the order paid by ``authorization_id``.

        ``amount_minor`` of None refunds whatever is left. Refunds accumulate
        in ``paymentInfo.refundedAmount``; the payment status only becomes
        refunded once they cover the authorized amount.
        """
        order = await self.get_by_authorization_id(authorization_id)
        if order is None:
            return None
        captured = to_minor_units(order.paymentInfo.authorizedAmount or order.total)
        if amount_minor is None:
            amount_minor = max(captured - to_minor_units(order.paymentInfo.refundedAmount), 0)

        doc = await self._orders.find_one_and_update(
            {AUTHORIZATION_KEY: authorization_id},
            {
                "$inc": {"paymentInfo.refundedAmount": amount_minor},
                "$set": _storage_updates({"updatedAt": utcnow()}),
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None
        updated = OrderInDB.from_document(doc)
        if (
            to_minor_units(updated.paymentInfo.refundedAmount) < captured
            or updated.paymentInfo.paymentStatus == PaymentStatus.REFUNDED
        ):
            return updated

        doc = await self._orders.find_one_and_update(
            {AUTHORIZATION_KEY: authorization_id},
            {"$set": {"paymentInfo.paymentStatus": PaymentStatus.REFUNDED.value}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Order %s fully refunded", updated.orderNumber)
        return OrderInDB.from_document(doc) if doc else updated

    # Admin queries

    @staticmethod
    def build_filter(query: OrderListQuery) -> dict[str, Any]:
        filter_: dict[str, Any] = {}
        if query.status and query.status != "all":
            filter_["status"] = query.status
        if query.search:
            pattern = {"$regex": re.escape(query.search.strip()), "$options": "i"}
            filter_["$or"] = [
                {"orderNumber": pattern},
                {"customerInfo.firstName": pattern},
                {"customerInfo.lastName": pattern},
                {"customerInfo.email": pattern},
            ]
        if query.dateFrom or query.dateTo:
            created: dict[str, datetime] = {}
            if query.dateFrom:
                created["$gte"] = to_storage_time(query.dateFrom)
            if query.dateTo:
                created["$lte"] = to_storage_time(query.dateTo)
            filter_["createdAt"] = created
        return filter_

    @translate_storage_errors
    async def list_orders(self, query: OrderListQuery) -> tuple[list[OrderInDB], int]:
        """Page through orders matching the admin filters."""
        filter_ = self.build_filter(query)
        direction = DESCENDING if query.sortOrder == "desc" else ASCENDING
        skip = (query.page - 1) * query.limit
        cursor = (
            self._orders.find(filter_)
            .sort([(query.sortBy, direction), ("_id", direction)])
            .skip(skip)
            .limit(query.limit)
        )
        docs = await cursor.to_list(length=query.limit)
        total = await self._orders.count_documents(filter_)
        return [OrderInDB.from_document(doc) for doc in docs], total

    @translate_storage_errors
    async def analytics(self, start: datetime) -> dict[str, Any]:
        """Revenue, counts and status breakdown for orders since ``start``."""
        match = {"$match": {"createdAt": {"$gte": to_storage_time(start)}}}
        totals_cursor = self._orders.aggregate(
            [
                match,
                {
                    "$group": {
                        "_id": None,
                        "totalOrders": {"$sum": 1},
                        "totalRevenue": {"$sum": "$total"},
                    }
                },
            ]
        )
        totals = await totals_cursor.to_list(length=None)
        status_cursor = self._orders.aggregate(
            [match, {"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        )
        status_counts = await status_cursor.to_list(length=None)
        recent_docs = (
            await self._orders.find(match["$match"])
            .sort("createdAt", DESCENDING)
            .limit(10)
            .to_list(length=10)
        )

        stats = totals[0] if totals else {"totalOrders": 0, "totalRevenue": 0}
        count = int(stats.get("totalOrders", 0))
        revenue = from_minor_units(stats.get("totalRevenue", 0))
        average = round_money(revenue / count) if count else Decimal("0.00")
        return {
            "totalOrders": count,
            "totalRevenue": revenue,
            "averageOrderValue": average,
            "statusCounts": {item["_id"]: item["count"] for item in status_counts},
            "recentOrders": [OrderInDB.from_document(doc) for doc in recent_docs],
        }


# Global order store instance
order_store = OrderStore()
