"""Order routes: public creation and tracking, admin listing and fulfillment."""

import logging

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.dependencies import require_admin
from app.database.order_store import order_store
from app.errors import OrderNotFound
from app.models.order import OrderInDB
from app.models.request import (
    AnalyticsRange,
    AnalyticsResponse,
    CreateOrderRequest,
    OrderCreatedResponse,
    OrderListQuery,
    OrderListResponse,
    OrderSummary,
    OrderTrackingResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from app.models.user import AdminPrincipal
from app.services.admin_service import admin_service
from app.services.checkout import checkout_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_order(request: CreateOrderRequest, response: Response) -> OrderCreatedResponse:
    """Create an order for a payment authorized on the client."""
    order, created = await checkout_service.place_order(request)
    if not created:
        response.status_code = status.HTTP_200_OK
        return OrderCreatedResponse(message="Order already exists", order=OrderSummary.from_order(order))
    return OrderCreatedResponse(order=OrderSummary.from_order(order))


@router.get("/analytics", response_model=AnalyticsResponse)
async def order_analytics(
    range_: AnalyticsRange = Query("30d", alias="range"),
    principal: AdminPrincipal = Depends(require_admin),
) -> AnalyticsResponse:
    return await admin_service.analytics(range_)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    query: OrderListQuery = Depends(),
    principal: AdminPrincipal = Depends(require_admin),
) -> OrderListResponse:
    """Paginated, filterable order list."""
    return await admin_service.list_orders(query)


@router.get("/id/{order_id}", response_model=OrderInDB)
async def get_order(order_id: str, principal: AdminPrincipal = Depends(require_admin)) -> OrderInDB:
    """Full order detail for admins."""
    return await order_store.require(order_id)


@router.get("/{order_number}", response_model=OrderTrackingResponse)
async def track_order(order_number: str) -> OrderTrackingResponse:
    """Public tracking by order number."""
    order = await order_store.get_by_order_number(order_number.strip().upper())
    if order is None:
        raise OrderNotFound(order_number)
    return OrderTrackingResponse.from_order(order)


@router.patch("/{order_id}/status", response_model=StatusUpdateResponse)
async def update_order_status(
    order_id: str,
    request: StatusUpdateRequest,
    principal: AdminPrincipal = Depends(require_admin),
) -> StatusUpdateResponse:
    order = await order_store.update_status(
        order_id, request.status, request.trackingNumber, request.carrier
    )
    logger.info(
        "Order %s set to %s by %s",
        order.orderNumber,
        order.status.value,
        principal.email,
    )
    return StatusUpdateResponse(
        id=order.id,
        orderNumber=order.orderNumber,
        status=order.status,
        trackingNumber=order.fulfillment.trackingNumber,
        estimatedDelivery=order.fulfillment.estimatedDelivery,
        updatedAt=order.updatedAt,
    )
