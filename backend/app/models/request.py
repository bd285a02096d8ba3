"""API request and response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from app.models.order import (
    Address,
    CustomerInfo,
    Fulfillment,
    LineItem,
    OrderInDB,
    OrderStatus,
    PaymentStatus,
)
from app.utils.helpers import round_money

SortField = Literal["createdAt", "updatedAt", "total", "orderNumber", "status"]
AnalyticsRange = Literal["7d", "30d", "90d", "1y"]
RefundReason = Literal["duplicate", "fraudulent", "requested_by_customer"]


def money(amount: Decimal) -> float:
    """Format an amount for transport."""
    return float(round_money(amount))


# Requests


class CartRequest(BaseModel):
    """A client-computed cart submitted for pricing and payment.

    The client totals are advisory; the server recomputes them.
    """

    customerInfo: CustomerInfo
    shippingAddress: Address
    billingAddress: Optional[Address] = None
    items: list[LineItem] = Field(..., min_length=1, max_length=50)
    subtotal: Optional[Decimal] = Field(None, ge=0)
    shipping: Optional[Decimal] = Field(None, ge=0)
    tax: Optional[Decimal] = Field(None, ge=0)
    total: Decimal = Field(..., ge=0, description="Client-computed total (untrusted)")
    specialInstructions: str = Field(default="", max_length=500)
    marketing: bool = False

    model_config = {
        "json_schema_extra": {
            "example": {
                "customerInfo": {
                    "firstName": "Jane",
                    "lastName": "Smith",
                    "email": "jane.smith@example.com",
                    "phone": "+15555550123",
                },
                "shippingAddress": {
                    "street": "123 Main Street",
                    "city": "Austin",
                    "region": "TX",
                    "postalCode": "78701",
                },
                "items": [
                    {
                        "device": "iPhone 15 Pro",
                        "text": "Island Vibes",
                        "color": "Hot Pink",
                        "price": 5.95,
                        "quantity": 2,
                    }
                ],
                "total": 18.61,
            }
        }
    }


class CheckoutRequest(CartRequest):
    """Cart plus a client-side payment method token, authorized server-side."""

    paymentMethodId: str = Field(..., min_length=1, description="Payment method token")


class PaymentReference(BaseModel):
    paymentAuthorizationId: str = Field(..., min_length=1)
    paymentMethod: str = "card"


class CreateOrderRequest(CartRequest):
    """Cart whose payment was already authorized client-side."""

    paymentInfo: PaymentReference


class QuoteRequest(BaseModel):
    items: list[LineItem] = Field(..., min_length=1, max_length=50)
    region: str = Field(..., min_length=2, max_length=2)


class ConfirmPaymentRequest(BaseModel):
    paymentAuthorizationId: str = Field(..., min_length=1)
    paymentMethodId: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    paymentAuthorizationId: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, gt=0, description="Partial refund amount; full when omitted")
    reason: RefundReason = "requested_by_customer"


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    trackingNumber: Optional[str] = Field(None, min_length=1, max_length=100)
    carrier: Optional[str] = Field(None, min_length=1, max_length=50)


class TextValidationRequest(BaseModel):
    text: str


class OrderListQuery(BaseModel):
    """Admin order list filters."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=200)
    status: Optional[str] = None
    search: Optional[str] = Field(None, max_length=100)
    dateFrom: Optional[datetime] = None
    dateTo: Optional[datetime] = None
    sortBy: SortField = "createdAt"
    sortOrder: Literal["asc", "desc"] = "desc"


# Responses


class TotalsResponse(BaseModel):
    subtotal: float
    shipping: float
    tax: float
    total: float
    taxRate: float


class PaymentIntentResponse(BaseModel):
    id: str
    clientSecret: Optional[str]
    amount: int = Field(..., description="Authorized amount in minor units")
    currency: str
    status: str
    calculatedAmounts: TotalsResponse


class ChargeSummary(BaseModel):
    id: str
    amount: int
    status: str
    receiptUrl: Optional[str] = None


class AuthorizationResponse(BaseModel):
    id: str
    status: str
    amount: int
    currency: str
    charges: list[ChargeSummary] = Field(default_factory=list)


class RefundResponse(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    reason: Optional[str] = None


class OrderSummary(BaseModel):
    """Order summary returned to the customer after checkout."""

    id: str
    orderNumber: str
    total: float
    subtotal: float
    shipping: float
    tax: float
    status: OrderStatus
    customerEmail: str
    customerName: str
    items: list[LineItem]
    shippingAddress: Address
    createdAt: datetime
    paymentAuthorizationId: str
    paymentStatus: PaymentStatus

    @classmethod
    def from_order(cls, order: OrderInDB) -> "OrderSummary":
        return cls(
            id=order.id,
            orderNumber=order.orderNumber,
            total=money(order.total),
            subtotal=money(order.subtotal),
            shipping=money(order.shippingCost),
            tax=money(order.tax),
            status=order.status,
            customerEmail=order.customerInfo.email,
            customerName=order.customerName,
            items=order.items,
            shippingAddress=order.shippingAddress,
            createdAt=order.createdAt,
            paymentAuthorizationId=order.paymentInfo.paymentAuthorizationId,
            paymentStatus=order.paymentInfo.paymentStatus,
        )


class OrderCreatedResponse(BaseModel):
    message: str = "Order created successfully"
    order: OrderSummary


class OrderTimeline(BaseModel):
    ordered: datetime
    processing: Optional[datetime] = None
    printed: Optional[datetime] = None
    shipped: Optional[datetime] = None
    delivered: Optional[datetime] = None


class OrderTrackingResponse(BaseModel):
    """Public tracking view; exposes no contact details beyond the name."""

    orderNumber: str
    status: OrderStatus
    customerName: str
    items: list[LineItem]
    total: float
    shippingAddress: Address
    trackingNumber: Optional[str] = None
    carrier: Optional[str] = None
    estimatedDelivery: Optional[datetime] = None
    createdAt: datetime
    timeline: OrderTimeline

    @classmethod
    def from_order(cls, order: OrderInDB) -> "OrderTrackingResponse":
        fulfillment = order.fulfillment
        processing = order.createdAt if order.status != OrderStatus.PENDING else None
        return cls(
            orderNumber=order.orderNumber,
            status=order.status,
            customerName=order.customerName,
            items=order.items,
            total=money(order.total),
            shippingAddress=order.shippingAddress,
            trackingNumber=fulfillment.trackingNumber,
            carrier=fulfillment.carrier,
            estimatedDelivery=fulfillment.estimatedDelivery,
            createdAt=order.createdAt,
            timeline=OrderTimeline(
                ordered=order.createdAt,
                processing=processing,
                printed=fulfillment.printedAt,
                shipped=fulfillment.shippedAt,
                delivered=fulfillment.deliveredAt,
            ),
        )


class AdminOrderSummary(BaseModel):
    id: str
    orderNumber: str
    customerName: str
    customerEmail: str
    device: str
    customText: str
    quantity: int
    total: float
    status: OrderStatus
    paymentStatus: PaymentStatus
    shippingAddress: Address
    fulfillment: Fulfillment
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_order(cls, order: OrderInDB) -> "AdminOrderSummary":
        first = order.items[0]
        return cls(
            id=order.id,
            orderNumber=order.orderNumber,
            customerName=order.customerName,
            customerEmail=order.customerInfo.email,
            device=first.device if len(order.items) == 1 else "Multiple",
            customText=first.text,
            quantity=sum(item.quantity for item in order.items),
            total=money(order.total),
            status=order.status,
            paymentStatus=order.paymentInfo.paymentStatus,
            shippingAddress=order.shippingAddress,
            fulfillment=order.fulfillment,
            createdAt=order.createdAt,
            updatedAt=order.updatedAt,
        )


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalOrders: int
    hasNextPage: bool
    hasPrevPage: bool


class OrderListResponse(BaseModel):
    orders: list[AdminOrderSummary]
    pagination: Pagination


class StatusUpdateResponse(BaseModel):
    message: str = "Order status updated successfully"
    id: str
    orderNumber: str
    status: OrderStatus
    trackingNumber: Optional[str] = None
    estimatedDelivery: Optional[datetime] = None
    updatedAt: datetime


class RecentActivity(BaseModel):
    type: str = "ORDER_CREATED"
    message: str
    timestamp: datetime
    orderId: str


class AnalyticsResponse(BaseModel):
    range: AnalyticsRange
    totalRevenue: float
    totalOrders: int
    averageOrderValue: float
    statusCounts: dict[str, int]
    recentActivity: list[RecentActivity]


class TextValidationResponse(BaseModel):
    valid: bool
    message: str
    cleanText: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    eventType: Optional[str] = None
    outcome: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str
    details: Optional[Any] = None
    requestId: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]
