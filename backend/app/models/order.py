"""Order data models.

Monetary amounts are ``Decimal`` on the models and integer minor units
(cents) in MongoDB; ``to_document`` / ``from_document`` convert between
the two so aggregation over stored totals stays exact.
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.utils.helpers import ensure_utc, from_minor_units, to_minor_units, utcnow

MONEY_FIELDS = ("subtotal", "shippingCost", "tax", "total")
ALLOWED_TEXT_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-.!?&',]+$")
PHONE_PATTERN = re.compile(r"^\+?1?\d{9,15}$")


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    PRINTED = "printed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment states mirrored from the provider."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class CaseType(str, Enum):
    CLASSIC = "CLASSIC"
    PREMIUM = "PREMIUM"


class CustomerInfo(BaseModel):
    """Customer contact details."""

    firstName: str = Field(..., min_length=1, max_length=100)
    lastName: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., description="Phone number, formatting characters allowed")

    @field_validator("firstName", "lastName", mode="before")
    @classmethod
    def strip_names(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("phone")
    @classmethod
    def normalize_phone(cls, v: str) -> str:
        digits = re.sub(r"[\s\-().]", "", v)
        if not PHONE_PATTERN.match(digits):
            raise ValueError("Valid phone number required")
        return digits


class Address(BaseModel):
    """Postal address; ``region`` is the tax/shipping jurisdiction code."""

    street: str = Field(..., min_length=5, max_length=200)
    city: str = Field(..., min_length=2, max_length=100)
    region: str = Field(..., min_length=2, max_length=2, description="US state code")
    postalCode: str = Field(..., pattern=r"^\d{5}(-\d{4})?$")
    country: str = "United States"

    @field_validator("street", "city", "region", "postalCode", mode="before")
    @classmethod
    def strip_fields(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("region")
    @classmethod
    def uppercase_region(cls, v: str) -> str:
        return v.upper()


class LineItem(BaseModel):
    """A customized product in an order."""

    device: str = Field(..., min_length=1, max_length=100)
    caseType: CaseType = CaseType.CLASSIC
    text: str = Field(..., min_length=1, max_length=20, description="Custom text (max 20 chars)")
    color: str = Field(..., min_length=1, max_length=50)
    font: str = "Pecita"
    fontSize: int = Field(default=24, ge=8, le=96)
    logo: bool = False
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    quantity: int = Field(..., ge=1, le=100)

    @field_validator("device", "text", "color", "font", mode="before")
    @classmethod
    def strip_fields(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("text")
    @classmethod
    def check_text_characters(cls, v: str) -> str:
        if not ALLOWED_TEXT_PATTERN.match(v):
            raise ValueError("Text contains unsupported characters")
        return v


class DisputeInfo(BaseModel):
    disputeId: str
    reason: Optional[str] = None
    status: Optional[str] = None


class PaymentInfo(BaseModel):
    """Link between an order and its provider authorization."""

    paymentAuthorizationId: str = Field(..., min_length=1)
    paymentMethod: str = "card"
    paymentStatus: PaymentStatus = PaymentStatus.PENDING
    authorizedAmount: Optional[Decimal] = Field(None, description="Amount actually authorized")
    refundedAmount: Decimal = Field(Decimal("0"), description="Amount refunded so far")
    disputeId: Optional[str] = None
    disputeReason: Optional[str] = None
    disputeStatus: Optional[str] = None


class Fulfillment(BaseModel):
    """Production and shipping progress."""

    trackingNumber: Optional[str] = None
    carrier: Optional[str] = None
    printedAt: Optional[datetime] = None
    shippedAt: Optional[datetime] = None
    deliveredAt: Optional[datetime] = None
    estimatedDelivery: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("printedAt", "shippedAt", "deliveredAt", "estimatedDelivery")
    @classmethod
    def utc_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v else v


class OrderCreate(BaseModel):
    """Everything needed to persist a new order, totals already server-computed."""

    customerInfo: CustomerInfo
    shippingAddress: Address
    billingAddress: Optional[Address] = None
    items: list[LineItem] = Field(..., min_length=1)
    subtotal: Decimal
    shippingCost: Decimal
    tax: Decimal
    total: Decimal
    paymentInfo: PaymentInfo
    specialInstructions: str = Field(default="", max_length=500)
    marketing: bool = False
    createdVia: str = Field(default="checkout", description="'checkout' or 'webhook'")


class OrderInDB(OrderCreate):
    """Order model as stored in database."""

    id: str = Field(..., description="MongoDB document id")
    orderNumber: str = Field(..., description="Human-facing order number")
    status: OrderStatus = OrderStatus.PENDING
    fulfillment: Fulfillment = Field(default_factory=Fulfillment)
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    @field_validator("createdAt", "updatedAt")
    @classmethod
    def utc_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def customerName(self) -> str:
        return f"{self.customerInfo.firstName} {self.customerInfo.lastName}"

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "OrderInDB":
        """Build a model from a raw MongoDB document."""
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        for name in MONEY_FIELDS:
            data[name] = from_minor_units(data.get(name, 0))
        payment = dict(data.get("paymentInfo") or {})
        if payment.get("authorizedAmount") is not None:
            payment["authorizedAmount"] = from_minor_units(payment["authorizedAmount"])
        if payment.get("refundedAmount") is not None:
            payment["refundedAmount"] = from_minor_units(payment["refundedAmount"])
        data["paymentInfo"] = payment
        data["items"] = [
            {**item, "price": from_minor_units(item["price"])} for item in data.get("items", [])
        ]
        return cls(**data)


def to_document(order: OrderCreate, **extra: Any) -> dict[str, Any]:
    """Serialize an order for MongoDB, converting money to cents."""
    doc = order.model_dump(mode="python", exclude={"id"})
    for name in MONEY_FIELDS:
        doc[name] = to_minor_units(doc[name])
    for item in doc["items"]:
        item["price"] = to_minor_units(item["price"])
        item["caseType"] = CaseType(item["caseType"]).value
    doc["paymentInfo"]["paymentStatus"] = PaymentStatus(doc["paymentInfo"]["paymentStatus"]).value
    if doc["paymentInfo"].get("authorizedAmount") is not None:
        doc["paymentInfo"]["authorizedAmount"] = to_minor_units(doc["paymentInfo"]["authorizedAmount"])
    doc["paymentInfo"]["refundedAmount"] = to_minor_units(doc["paymentInfo"]["refundedAmount"])
    doc.update(extra)
    return doc


def check_custom_text(text: str) -> tuple[bool, str, Optional[str]]:
    """Validate engraving text; returns ``(valid, message, cleaned)``."""
    clean = (text or "").strip()
    if not clean:
        return False, "Text is required", None
    if len(clean) > 20:
        return False, "Text must be 20 characters or less", None
    if not ALLOWED_TEXT_PATTERN.match(clean):
        return False, "Text contains invalid characters", None
    return True, "Text is valid", clean
