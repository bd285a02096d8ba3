"""Admin operations: authentication, order listing, analytics and refunds."""

import logging
import math
from datetime import timedelta
from typing import Optional

from app.database.admin_store import AdminStore, admin_store
from app.database.order_store import OrderStore, order_store
from app.errors import AdminAuthenticationFailed, AdminForbidden
from app.models.request import (
    AdminOrderSummary,
    AnalyticsRange,
    AnalyticsResponse,
    OrderListQuery,
    OrderListResponse,
    Pagination,
    RecentActivity,
    RefundRequest,
    money,
)
from app.models.user import AdminPrincipal
from app.services.payment_gateway import PaymentGateway, RefundResult, payment_gateway
from app.utils.helpers import to_minor_units, utcnow

logger = logging.getLogger(__name__)

ANALYTICS_RANGES: dict[str, timedelta] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


class AdminService:
    def __init__(
        self,
        admins: AdminStore = admin_store,
        store: OrderStore = order_store,
        gateway: PaymentGateway = payment_gateway,
    ) -> None:
        self.admins = admins
        self.store = store
        self.gateway = gateway

    async def authenticate(self, api_key: Optional[str]) -> AdminPrincipal:
        """Resolve an API key to an active admin."""
        if not api_key:
            raise AdminAuthenticationFailed()
        admin = await self.admins.get_by_api_key(api_key)
        if admin is None:
            logger.warning("Rejected admin API key")
            raise AdminAuthenticationFailed("Invalid token")
        await self.admins.touch_last_login(admin)
        return AdminPrincipal(email=admin.email, role=admin.role)

    @staticmethod
    def require_super_admin(principal: AdminPrincipal) -> AdminPrincipal:
        if not principal.is_super_admin:
            logger.warning("Admin %s attempted a super admin action", principal.email)
            raise AdminForbidden()
        return principal

    async def list_orders(self, query: OrderListQuery) -> OrderListResponse:
        orders, total = await self.store.list_orders(query)
        total_pages = math.ceil(total / query.limit) if total else 0
        return OrderListResponse(
            orders=[AdminOrderSummary.from_order(order) for order in orders],
            pagination=Pagination(
                currentPage=query.page,
                totalPages=total_pages,
                totalOrders=total,
                hasNextPage=query.page < total_pages,
                hasPrevPage=query.page > 1,
            ),
        )

    async def analytics(self, range_: AnalyticsRange = "30d") -> AnalyticsResponse:
        start = utcnow() - ANALYTICS_RANGES[range_]
        stats = await self.store.analytics(start)
        return AnalyticsResponse(
            range=range_,
            totalRevenue=money(stats["totalRevenue"]),
            totalOrders=stats["totalOrders"],
            averageOrderValue=money(stats["averageOrderValue"]),
            statusCounts=stats["statusCounts"],
            recentActivity=[
                RecentActivity(
                    message=f"New order {order.orderNumber} from {order.customerName}",
                    timestamp=order.createdAt,
                    orderId=order.id,
                )
                for order in stats["recentOrders"]
            ],
        )

    async def refund(self, request: RefundRequest, principal: AdminPrincipal) -> RefundResult:
        """Refund through the provider, then record the refund on the order."""
        amount_minor = to_minor_units(request.amount) if request.amount is not None else None
        result = await self.gateway.refund(
            request.paymentAuthorizationId, amount_minor=amount_minor, reason=request.reason
        )
        order = await self.store.mark_refunded(request.paymentAuthorizationId, result.amount)
        logger.info(
            "Refund %s issued by %s for %s",
            result.id,
            principal.email,
            request.paymentAuthorizationId,
            extra={
                "refund_id": result.id,
                "amount": result.amount,
                "order_number": order.orderNumber if order else None,
            },
        )
        return result


# Global admin service instance
admin_service = AdminService()
