"""Pytest fixtures for storefront tests."""

import hashlib
import hmac
import itertools
import json
import os
import time
from decimal import Decimal
from typing import Any, Optional

os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("RATE_LIMIT_PAYMENTS", "100000")
os.environ.setdefault("RATE_LIMIT_WEBHOOKS", "100000")
os.environ.setdefault("RATE_LIMIT_ORDERS", "100000")
os.environ.setdefault("ORDER_PERSIST_BACKOFF_SECONDS", "0")
os.environ.setdefault("LOG_FORMAT", "text")

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from app.database.mongodb import mongodb
from app.errors import AuthorizationNotFound, PaymentDeclined
from app.services.payment_gateway import (
    STATUS_REQUIRES_PAYMENT_METHOD,
    STATUS_SUCCEEDED,
    Authorization,
    ProviderEvent,
    RefundResult,
    StripePaymentGateway,
)

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


class FakeGateway:
    """In-memory payment gateway honoring the PaymentGateway contract."""

    configured = True

    def __init__(self) -> None:
        self.authorizations: dict[str, Authorization] = {}
        self.idempotency: dict[str, str] = {}
        self.charges: dict[str, str] = {}
        self.refunds: list[tuple[str, Optional[int], str]] = []
        self.declined_tokens: set[str] = set()
        self.next_status: Optional[str] = None
        self.authorize_calls = 0
        self._ids = itertools.count(1)
        self._verifier = StripePaymentGateway(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)

    def add(self, authorization: Authorization) -> Authorization:
        self.authorizations[authorization.id] = authorization
        return authorization

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
        self.authorize_calls += 1
        if idempotency_key and idempotency_key in self.idempotency:
            return self.authorizations[self.idempotency[idempotency_key]]
        if payment_method_token in self.declined_tokens:
            raise PaymentDeclined("insufficient_funds", "Your card has insufficient funds.")
        status = STATUS_SUCCEEDED if payment_method_token else STATUS_REQUIRES_PAYMENT_METHOD
        number = next(self._ids)
        authorization = self.add(
            Authorization(
                id=f"pi_test_{number}",
                status=self.next_status or status,
                amount=amount_minor,
                currency=currency,
                client_secret=f"pi_test_{number}_secret",
                metadata=dict(metadata),
            )
        )
        if idempotency_key:
            self.idempotency[idempotency_key] = authorization.id
        return authorization

    async def confirm(self, authorization_id: str, payment_method_id: str) -> Authorization:
        current = await self.retrieve(authorization_id)
        return self.add(
            Authorization(
                id=current.id,
                status=STATUS_SUCCEEDED,
                amount=current.amount,
                currency=current.currency,
                metadata=current.metadata,
            )
        )

    async def retrieve(self, authorization_id: str) -> Authorization:
        if authorization_id not in self.authorizations:
            raise AuthorizationNotFound(authorization_id)
        return self.authorizations[authorization_id]

    async def refund(
        self, authorization_id: str, amount_minor: Optional[int] = None, reason: str = "requested_by_customer"
    ) -> RefundResult:
        authorization = await self.retrieve(authorization_id)
        self.refunds.append((authorization_id, amount_minor, reason))
        return RefundResult(
            id=f"re_test_{len(self.refunds)}",
            amount=amount_minor if amount_minor is not None else authorization.amount,
            currency=authorization.currency,
            status="succeeded",
            reason=reason,
        )

    async def authorization_for_charge(self, charge_id: str) -> Optional[str]:
        return self.charges.get(charge_id)

    def verify_webhook_signature(
        self, payload: bytes, signature: Optional[str], secret: Optional[str] = None
    ) -> ProviderEvent:
        return self._verifier.verify_webhook_signature(payload, signature, secret)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def event_payload(provider_type: str, obj: dict[str, Any], event_id: str = "evt_test_1") -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": provider_type, "data": {"object": obj}}
    ).encode()


def cart_payload(**overrides: Any) -> dict[str, Any]:
    """A valid cart as the frontend submits it: 2 x 10.00 shipped to Indiana."""
    payload: dict[str, Any] = {
        "customerInfo": {
            "firstName": "Jane",
            "lastName": "Smith",
            "email": "jane.smith@example.com",
            "phone": "(555) 555-0123",
        },
        "shippingAddress": {
            "street": "123 Main Street",
            "city": "Indianapolis",
            "region": "IN",
            "postalCode": "46204",
        },
        "items": [
            {
                "device": "iPhone 15 Pro",
                "caseType": "CLASSIC",
                "text": "Island Vibes",
                "color": "Hot Pink",
                "price": "10.00",
                "quantity": 2,
            }
        ],
        "total": "26.75",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
async def db():
    """Bind the global MongoDB manager to an in-memory database."""
    await mongodb.bind(AsyncMongoMockClient(), "storefront_test")
    yield mongodb
    mongodb.client = None
    mongodb.db = None


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def five_dollar_shipping(monkeypatch):
    """Flat $5.00 shipping tier for the eastern zone."""
    from app.services import pricing

    monkeypatch.setitem(pricing.SHIPPING_TIERS, "eastern", Decimal("5.00"))


@pytest.fixture
def services(db, gateway, monkeypatch):
    """Point the global services at the fake gateway."""
    from app.api import payments, routes
    from app.services.admin_service import admin_service
    from app.services.checkout import checkout_service
    from app.services.webhook_reconciler import webhook_reconciler

    monkeypatch.setattr(checkout_service, "gateway", gateway)
    monkeypatch.setattr(webhook_reconciler, "gateway", gateway)
    monkeypatch.setattr(admin_service, "gateway", gateway)
    monkeypatch.setattr(payments, "payment_gateway", gateway)
    monkeypatch.setattr(routes, "payment_gateway", gateway)
    return gateway


@pytest.fixture
async def client(services):
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture
async def admin_key(db):
    from app.database.admin_store import admin_store
    from app.models.user import AdminBase, AdminRole

    _, api_key = await admin_store.create_admin(
        AdminBase(email="ops@example.com", firstName="Ops", lastName="Team", role=AdminRole.SUPER_ADMIN)
    )
    return api_key


@pytest.fixture
async def staff_key(db):
    from app.database.admin_store import admin_store
    from app.models.user import AdminBase, AdminRole

    _, api_key = await admin_store.create_admin(
        AdminBase(email="staff@example.com", firstName="Floor", lastName="Staff", role=AdminRole.ADMIN)
    )
    return api_key


def bearer(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}
