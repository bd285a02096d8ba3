"""Data models package."""

from app.models.order import (
    Address,
    CaseType,
    CustomerInfo,
    Fulfillment,
    LineItem,
    OrderCreate,
    OrderInDB,
    OrderStatus,
    PaymentInfo,
    PaymentStatus,
)
from app.models.product import CatalogEntry, CatalogType, ProductConfig
from app.models.request import (
    CartRequest,
    CheckoutRequest,
    CreateOrderRequest,
    ErrorResponse,
    HealthResponse,
)
from app.models.user import AdminBase, AdminInDB, AdminPrincipal, AdminRole

__all__ = [
    # Order models
    "Address",
    "CaseType",
    "CustomerInfo",
    "Fulfillment",
    "LineItem",
    "OrderCreate",
    "OrderInDB",
    "OrderStatus",
    "PaymentInfo",
    "PaymentStatus",
    # Catalog models
    "CatalogEntry",
    "CatalogType",
    "ProductConfig",
    # Admin models
    "AdminBase",
    "AdminInDB",
    "AdminPrincipal",
    "AdminRole",
    # Request/Response models
    "CartRequest",
    "CheckoutRequest",
    "CreateOrderRequest",
    "HealthResponse",
    "ErrorResponse",
]
