"""Tests for order persistence against an in-memory MongoDB."""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.database.catalog_store import catalog_store
from app.database.order_store import order_store
from app.errors import DuplicateOrderNumber, InvalidTransition, OrderNotFound
from app.models.order import (
    Address,
    CustomerInfo,
    LineItem,
    OrderCreate,
    OrderStatus,
    PaymentInfo,
    PaymentStatus,
)
from app.models.product import CatalogEntry, CatalogType
from app.models.request import OrderListQuery
from app.utils.helpers import utcnow


def new_order(authorization_id="pi_1", email="jane@example.com", first_name="Jane", **overrides) -> OrderCreate:
    fields = dict(
        customerInfo=CustomerInfo(firstName=first_name, lastName="Smith", email=email, phone="5555550123"),
        shippingAddress=Address(street="123 Main Street", city="Austin", region="TX", postalCode="78701"),
        items=[
            LineItem(device="iPhone 15", text="Hello", color="Black", price=Decimal("10.00"), quantity=2)
        ],
        subtotal=Decimal("20.00"),
        shippingCost=Decimal("5.99"),
        tax=Decimal("1.62"),
        total=Decimal("27.61"),
        paymentInfo=PaymentInfo(paymentAuthorizationId=authorization_id, paymentStatus=PaymentStatus.SUCCEEDED),
    )
    fields.update(overrides)
    return OrderCreate(**fields)


class TestCreate:
    async def test_create_round_trips_money(self, db):
        order, created = await order_store.create(new_order(), "LICC2401010001")

        assert created is True
        assert order.status == OrderStatus.PROCESSING
        stored = await order_store.get_by_order_number("LICC2401010001")
        assert stored.total == Decimal("27.61")
        assert stored.items[0].price == Decimal("10.00")
        raw = await db.orders.find_one({"orderNumber": "LICC2401010001"})
        assert raw["total"] == 2761

    async def test_same_authorization_converges(self, db):
        first, _ = await order_store.create(new_order(), "LICC2401010001")
        second, created = await order_store.create(new_order(), "LICC2401010002")

        assert created is False
        assert second.id == first.id
        assert await db.orders.count_documents({}) == 1

    async def test_order_number_collision_raises(self, db):
        await order_store.create(new_order("pi_1"), "LICC2401010001")
        with pytest.raises(DuplicateOrderNumber):
            await order_store.create(new_order("pi_2"), "LICC2401010001")

    async def test_rejects_inconsistent_total(self, db):
        with pytest.raises(ValueError):
            await order_store.create(new_order(total=Decimal("1.00")), "LICC2401010001")

    async def test_tax_safety_net_fills_missing_tax(self, db):
        order = new_order(tax=Decimal("0"), total=Decimal("25.99"))
        created, _ = await order_store.create(order, "LICC2401010001")

        assert created.tax == Decimal("1.62")
        assert created.total == Decimal("27.61")


class TestStatusUpdates:
    async def test_ship_then_reapply_keeps_shipped_at(self, db):
        order, _ = await order_store.create(new_order(), "LICC2401010001")

        shipped = await order_store.update_status(order.id, OrderStatus.SHIPPED, "1Z999", "standard")
        again = await order_store.update_status(order.id, OrderStatus.SHIPPED, "1Z999", "standard")

        assert shipped.status == OrderStatus.SHIPPED
        assert shipped.fulfillment.printedAt is not None
        assert shipped.fulfillment.estimatedDelivery - shipped.fulfillment.shippedAt == timedelta(days=5)
        assert again.fulfillment.shippedAt == shipped.fulfillment.shippedAt
        assert again.updatedAt == shipped.updatedAt

    async def test_cancelled_order_cannot_resume(self, db):
        order, _ = await order_store.create(new_order(), "LICC2401010001")
        await order_store.update_status(order.id, OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            await order_store.update_status(order.id, OrderStatus.PROCESSING)

    async def test_unknown_order(self, db):
        with pytest.raises(OrderNotFound):
            await order_store.update_status("65f000000000000000000001", OrderStatus.PRINTED)
        with pytest.raises(OrderNotFound):
            await order_store.update_status("not-an-id", OrderStatus.PRINTED)


class TestPaymentTransitions:
    async def test_pending_order_moves_to_processing(self, db):
        pending = new_order(paymentInfo=PaymentInfo(paymentAuthorizationId="pi_1"))
        await order_store.create(pending, "LICC2401010001", OrderStatus.PENDING)

        order, changed = await order_store.mark_payment_succeeded("pi_1")
        assert changed is True
        assert order.status == OrderStatus.PROCESSING
        assert order.paymentInfo.paymentStatus == PaymentStatus.SUCCEEDED

        _, changed_again = await order_store.mark_payment_succeeded("pi_1")
        assert changed_again is False

    async def test_missing_order_returns_none(self, db):
        assert await order_store.mark_payment_succeeded("pi_missing") is None

    async def test_refund_is_not_downgraded(self, db):
        await order_store.create(new_order(), "LICC2401010001")
        await order_store.mark_refunded("pi_1")

        order, changed = await order_store.mark_payment_succeeded("pi_1")
        assert changed is False
        assert order.paymentInfo.paymentStatus == PaymentStatus.REFUNDED

    async def test_partial_refund_keeps_payment_succeeded(self, db):
        await order_store.create(new_order(), "LICC2401010001")

        order = await order_store.mark_refunded("pi_1", 500)

        assert order.paymentInfo.paymentStatus == PaymentStatus.SUCCEEDED
        assert order.paymentInfo.refundedAmount == Decimal("5.00")
        raw = await db.orders.find_one({"orderNumber": "LICC2401010001"})
        assert raw["paymentInfo"]["refundedAmount"] == 500

    async def test_partial_refunds_accumulate_to_full(self, db):
        await order_store.create(new_order(), "LICC2401010001")

        await order_store.mark_refunded("pi_1", 1000)
        order = await order_store.mark_refunded("pi_1", 1761)

        assert order.paymentInfo.refundedAmount == Decimal("27.61")
        assert order.paymentInfo.paymentStatus == PaymentStatus.REFUNDED

    async def test_full_refund_covers_remainder(self, db):
        await order_store.create(new_order(), "LICC2401010001")
        await order_store.mark_refunded("pi_1", 761)

        order = await order_store.mark_refunded("pi_1")

        assert order.paymentInfo.refundedAmount == Decimal("27.61")
        assert order.paymentInfo.paymentStatus == PaymentStatus.REFUNDED

    async def test_refund_for_unknown_authorization(self, db):
        assert await order_store.mark_refunded("pi_missing", 500) is None

    async def test_failure_cancels_processing_order(self, db):
        await order_store.create(new_order(), "LICC2401010001")

        order, changed = await order_store.mark_payment_failed("pi_1")
        assert changed is True
        assert order.status == OrderStatus.CANCELLED
        assert order.paymentInfo.paymentStatus == PaymentStatus.FAILED

    async def test_failure_leaves_shipped_order_status(self, db):
        created, _ = await order_store.create(new_order(), "LICC2401010001")
        await order_store.update_status(created.id, OrderStatus.SHIPPED)

        order, _ = await order_store.mark_payment_failed("pi_1")
        assert order.status == OrderStatus.SHIPPED
        assert order.paymentInfo.paymentStatus == PaymentStatus.FAILED

    async def test_dispute_attached_once(self, db):
        await order_store.create(new_order(), "LICC2401010001")

        order, changed = await order_store.attach_dispute("pi_1", "dp_1", "fraudulent", "needs_response")
        assert changed is True
        assert order.status == OrderStatus.PROCESSING
        assert order.paymentInfo.disputeId == "dp_1"
        assert order.fulfillment.notes == "Dispute created: fraudulent"

        order, changed = await order_store.attach_dispute("pi_1", "dp_1", "fraudulent", "needs_response")
        assert changed is False
        assert order.fulfillment.notes == "Dispute created: fraudulent"


class TestQueries:
    @pytest.fixture
    async def orders(self, db):
        await order_store.create(new_order("pi_1", "jane@example.com", "Jane"), "LICC2401010001")
        await order_store.create(new_order("pi_2", "bob@example.com", "Bob"), "LICC2401010002")
        third, _ = await order_store.create(new_order("pi_3", "amy@example.com", "Amy"), "LICC2401010003")
        await order_store.update_status(third.id, OrderStatus.PRINTED)

    async def test_filter_by_status(self, orders):
        found, total = await order_store.list_orders(OrderListQuery(status="printed"))
        assert total == 1
        assert found[0].orderNumber == "LICC2401010003"

    async def test_search_is_case_insensitive_and_escaped(self, orders):
        found, total = await order_store.list_orders(OrderListQuery(search="BOB"))
        assert total == 1
        assert found[0].customerInfo.email == "bob@example.com"

        _, total = await order_store.list_orders(OrderListQuery(search=".*"))
        assert total == 0

    async def test_pagination_and_sort(self, orders):
        query = OrderListQuery(page=2, limit=2, sortBy="orderNumber", sortOrder="asc")
        found, total = await order_store.list_orders(query)
        assert total == 3
        assert [o.orderNumber for o in found] == ["LICC2401010003"]

    async def test_date_range(self, orders):
        query = OrderListQuery(dateFrom=utcnow() - timedelta(hours=1), dateTo=utcnow() + timedelta(hours=1))
        _, total = await order_store.list_orders(query)
        assert total == 3

        _, total = await order_store.list_orders(OrderListQuery(dateFrom=utcnow() + timedelta(days=1)))
        assert total == 0

    async def test_analytics(self, orders):
        stats = await order_store.analytics(utcnow() - timedelta(days=30))

        assert stats["totalOrders"] == 3
        assert stats["totalRevenue"] == Decimal("82.83")
        assert stats["averageOrderValue"] == Decimal("27.61")
        assert stats["statusCounts"] == {"processing": 2, "printed": 1}
        assert len(stats["recentOrders"]) == 3


class TestCatalog:
    async def test_defaults_seeded_once(self, db):
        assert await catalog_store.ensure_defaults() is True
        assert await catalog_store.ensure_defaults() is False
        assert "iPhone 15 Pro" in await catalog_store.active_names(CatalogType.DEVICES)

    async def test_inactive_entries_hidden(self, db):
        await catalog_store.ensure_defaults()
        carriers = await catalog_store.active_names(CatalogType.CARRIERS)
        assert "DHL" not in carriers

    async def test_unit_prices(self, db):
        await catalog_store.ensure_defaults()
        assert await catalog_store.unit_prices() == {
            "CLASSIC": Decimal("5.95"),
            "PREMIUM": Decimal("8.95"),
        }

    async def test_validate_items(self, db):
        await catalog_store.ensure_defaults()
        items = [
            LineItem(device="Nokia 3310", text="Hi", color="Black", price=Decimal("5.95"), quantity=1)
        ]
        errors = await catalog_store.validate_items(items)
        assert [e.field for e in errors] == ["items[0].device"]

    async def test_replace_entries(self, db):
        await catalog_store.replace_entries(
            CatalogType.COLORS, [CatalogEntry(name="Mint", hex="#98FF98")]
        )
        assert await catalog_store.active_names(CatalogType.COLORS) == ["Mint"]
