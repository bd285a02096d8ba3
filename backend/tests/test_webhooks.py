"""Tests for webhook reconciliation."""

import asyncio
from decimal import Decimal

import pytest
from conftest import cart_payload, event_payload, sign_payload

from app.database.order_store import order_store
from app.database.reconciliation_store import reconciliation_store
from app.errors import InvalidWebhookSignature, OrderPersistenceFailed, StorageUnavailable
from app.models.order import OrderStatus, PaymentStatus
from app.models.request import CheckoutRequest, CreateOrderRequest
from app.services.checkout import CheckoutService
from app.services.payment_gateway import STATUS_SUCCEEDED, Authorization
from app.services.webhook_reconciler import (
    OUTCOME_CREATED,
    OUTCOME_IGNORED,
    OUTCOME_QUEUED,
    OUTCOME_STALE,
    OUTCOME_UNCHANGED,
    OUTCOME_UPDATED,
    WebhookReconciler,
)


@pytest.fixture
def checkout(db, gateway, five_dollar_shipping):
    return CheckoutService(gateway=gateway)


@pytest.fixture
def reconciler(checkout, gateway):
    return WebhookReconciler(gateway=gateway, checkout=checkout)


def intent_object(authorization: Authorization, status: str = STATUS_SUCCEEDED) -> dict:
    return {
        "id": authorization.id,
        "object": "payment_intent",
        "status": status,
        "amount": authorization.amount,
        "currency": authorization.currency,
        "metadata": authorization.metadata,
    }


async def deliver(reconciler, provider_type, obj, event_id="evt_test_1"):
    payload = event_payload(provider_type, obj, event_id)
    return await reconciler.process(payload, sign_payload(payload))


async def checkout_without_order(checkout, gateway, monkeypatch) -> str:
    """Authorize a payment whose order write never lands."""

    async def unavailable(*args, **kwargs):
        raise StorageUnavailable("timed out")

    original = order_store.create
    monkeypatch.setattr(order_store, "create", unavailable)
    request = CheckoutRequest(**cart_payload(), paymentMethodId="pm_card_visa")
    with pytest.raises(OrderPersistenceFailed) as exc_info:
        await checkout.checkout(request)
    monkeypatch.setattr(order_store, "create", original)
    return exc_info.value.authorization_id


class TestSignature:
    async def test_rejects_bad_signature(self, reconciler, db):
        payload = event_payload("payment_intent.succeeded", {"id": "pi_1"})

        with pytest.raises(InvalidWebhookSignature):
            await reconciler.process(payload, sign_payload(payload, secret="whsec_wrong"))

    async def test_rejects_missing_signature(self, reconciler):
        with pytest.raises(InvalidWebhookSignature):
            await reconciler.process(b"{}", None)

    async def test_rejects_tampered_body(self, reconciler):
        payload = event_payload("payment_intent.succeeded", {"id": "pi_1"})
        signature = sign_payload(payload)

        with pytest.raises(InvalidWebhookSignature):
            await reconciler.process(payload.replace(b"pi_1", b"pi_2"), signature)


class TestAuthorizationSucceeded:
    async def test_missing_order_is_created_from_webhook(self, reconciler, checkout, gateway, monkeypatch, db):
        authorization_id = await checkout_without_order(checkout, gateway, monkeypatch)
        assert await order_store.get_by_authorization_id(authorization_id) is None
        authorization = gateway.authorizations[authorization_id]

        result = await deliver(reconciler, "payment_intent.succeeded", intent_object(authorization))

        assert result.outcome == OUTCOME_CREATED
        order = await order_store.get_by_authorization_id(authorization_id)
        assert order.total == Decimal("26.75")
        assert order.status == OrderStatus.PROCESSING
        assert order.createdVia == "webhook"
        record = await reconciliation_store.get(authorization_id)
        assert record["status"] == "resolved"
        assert record["orderNumber"] == order.orderNumber

        replay = await deliver(reconciler, "payment_intent.succeeded", intent_object(authorization))
        assert replay.outcome == OUTCOME_UNCHANGED
        assert await db.orders.count_documents({}) == 1
        assert (await order_store.get_by_authorization_id(authorization_id)).updatedAt == order.updatedAt

    async def test_existing_order_is_unchanged(self, reconciler, checkout, gateway):
        order, _ = await checkout.checkout(CheckoutRequest(**cart_payload(), paymentMethodId="pm_card_visa"))
        authorization = gateway.authorizations[order.paymentInfo.paymentAuthorizationId]

        result = await deliver(reconciler, "payment_intent.succeeded", intent_object(authorization))
        assert result.outcome == OUTCOME_UNCHANGED

    async def test_missing_snapshot_is_queued(self, reconciler, db):
        authorization = Authorization(id="pi_orphan", status=STATUS_SUCCEEDED, amount=1500, currency="usd")

        result = await deliver(reconciler, "payment_intent.succeeded", intent_object(authorization))

        assert result.outcome == OUTCOME_QUEUED
        record = await reconciliation_store.get("pi_orphan")
        assert record["reason"] == "missing_order_snapshot"
        assert record["amount"] == 1500
        assert await db.orders.count_documents({}) == 0

    async def test_invalid_snapshot_is_queued(self, reconciler, db):
        authorization = Authorization(
            id="pi_bad",
            status=STATUS_SUCCEEDED,
            amount=1500,
            currency="usd",
            metadata={"snapshot_parts": "1", "snapshot_0": '{"items": []}'},
        )

        result = await deliver(reconciler, "payment_intent.succeeded", intent_object(authorization))

        assert result.outcome == OUTCOME_QUEUED
        assert (await reconciliation_store.get("pi_bad"))["reason"] == "invalid_order_snapshot"


class TestAuthorizationFailed:
    async def test_failure_cancels_order(self, reconciler, checkout, gateway):
        order, _ = await checkout.checkout(CheckoutRequest(**cart_payload(), paymentMethodId="pm_card_visa"))
        authorization_id = order.paymentInfo.paymentAuthorizationId
        gateway.add(
            Authorization(id=authorization_id, status="requires_payment_method", amount=2675, currency="usd")
        )

        result = await deliver(
            reconciler, "payment_intent.payment_failed", {"id": authorization_id, "status": "requires_payment_method"}
        )

        assert result.outcome == OUTCOME_UPDATED
        updated = await order_store.get_by_authorization_id(authorization_id)
        assert updated.status == OrderStatus.CANCELLED
        assert updated.paymentInfo.paymentStatus == PaymentStatus.FAILED

        replay = await deliver(
            reconciler, "payment_intent.payment_failed", {"id": authorization_id, "status": "requires_payment_method"}
        )
        assert replay.outcome == OUTCOME_UNCHANGED

    async def test_stale_failure_is_ignored(self, reconciler, checkout, gateway):
        order, _ = await checkout.checkout(CheckoutRequest(**cart_payload(), paymentMethodId="pm_card_visa"))
        authorization_id = order.paymentInfo.paymentAuthorizationId

        result = await deliver(reconciler, "payment_intent.payment_failed", {"id": authorization_id})

        assert result.outcome == OUTCOME_STALE
        current = await order_store.get_by_authorization_id(authorization_id)
        assert current.status == OrderStatus.PROCESSING

    async def test_failure_without_order_is_ignored(self, reconciler, db):
        result = await deliver(reconciler, "payment_intent.payment_failed", {"id": "pi_unknown"})
        assert result.outcome == OUTCOME_IGNORED


class TestDispute:
    async def test_dispute_attached_via_charge(self, reconciler, checkout, gateway):
        order, _ = await checkout.checkout(CheckoutRequest(**cart_payload(), paymentMethodId="pm_card_visa"))
        authorization_id = order.paymentInfo.paymentAuthorizationId
        gateway.charges["ch_1"] = authorization_id
        dispute = {"id": "dp_1", "charge": "ch_1", "reason": "fraudulent", "status": "needs_response"}

        result = await deliver(reconciler, "charge.dispute.created", dispute)

        assert result.outcome == OUTCOME_UPDATED
        updated = await order_store.get_by_authorization_id(authorization_id)
        assert updated.paymentInfo.disputeId == "dp_1"
        assert updated.paymentInfo.disputeReason == "fraudulent"
        assert updated.status == OrderStatus.PROCESSING

    async def test_dispute_for_unknown_charge_is_ignored(self, reconciler, db):
        dispute = {"id": "dp_1", "charge": "ch_unknown", "reason": "fraudulent"}
        result = await deliver(reconciler, "charge.dispute.created", dispute)
        assert result.outcome == OUTCOME_IGNORED


class TestMalformedEvents:
    @pytest.mark.parametrize(
        "provider_type",
        ["payment_intent.succeeded", "payment_intent.payment_failed", "charge.dispute.created"],
    )
    async def test_object_without_id_is_acknowledged(self, reconciler, db, provider_type):
        result = await deliver(reconciler, provider_type, {"object": "payment_intent", "status": "succeeded"})

        assert result.outcome == OUTCOME_IGNORED
        assert result.event_type == provider_type
        assert await db.orders.count_documents({}) == 0

    async def test_non_object_payload_is_acknowledged(self, reconciler, db):
        result = await deliver(reconciler, "payment_intent.payment_failed", "pi_1")
        assert result.outcome == OUTCOME_IGNORED

    async def test_unreadable_amount_is_acknowledged(self, reconciler, db):
        obj = {"id": "pi_odd", "status": "succeeded", "amount": "lots", "currency": "usd"}

        result = await deliver(reconciler, "payment_intent.succeeded", obj)

        assert result.outcome == OUTCOME_IGNORED
        assert await reconciliation_store.get("pi_odd") is None


async def test_client_order_and_webhook_race_create_one_order(reconciler, checkout, gateway, monkeypatch, db):
    authorization_id = await checkout_without_order(checkout, gateway, monkeypatch)
    authorization = gateway.authorizations[authorization_id]
    request = CreateOrderRequest(**cart_payload(), paymentInfo={"paymentAuthorizationId": authorization_id})

    (order, placed), result = await asyncio.gather(
        checkout.place_order(request),
        deliver(reconciler, "payment_intent.succeeded", intent_object(authorization)),
    )

    assert await db.orders.count_documents({}) == 1
    assert placed != (result.outcome == OUTCOME_CREATED)
    stored = await order_store.get_by_authorization_id(authorization_id)
    assert stored.orderNumber == order.orderNumber


async def test_checkout_retry_and_webhook_race_create_one_order(reconciler, checkout, gateway, monkeypatch, db):
    authorization_id = await checkout_without_order(checkout, gateway, monkeypatch)
    authorization = gateway.authorizations[authorization_id]
    retry = CheckoutRequest(**cart_payload(), paymentMethodId="pm_card_visa")

    (order, created), result = await asyncio.gather(
        checkout.checkout(retry),
        deliver(reconciler, "payment_intent.succeeded", intent_object(authorization)),
    )

    assert order.paymentInfo.paymentAuthorizationId == authorization_id
    assert created != (result.outcome == OUTCOME_CREATED)
    assert await db.orders.count_documents({}) == 1


async def test_unknown_event_type_is_acknowledged(reconciler, db):
    result = await deliver(reconciler, "customer.created", {"id": "cus_1"})
    assert result.outcome == OUTCOME_IGNORED
    assert result.event_type == "customer.created"
