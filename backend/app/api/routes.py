"""API router assembly and health check."""

import logging

from fastapi import APIRouter

from app.api import orders, payments, products, webhooks
from app.config import get_settings
from app.database.mongodb import mongodb
from app.models.request import HealthResponse
from app.services.payment_gateway import payment_gateway

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix=settings.api_prefix)
router.include_router(orders.router)
router.include_router(payments.router)
router.include_router(webhooks.router)
router.include_router(products.router)


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    mongodb_status = "disconnected"
    if mongodb.connected:
        try:
            await mongodb.db.command("ping")
            mongodb_status = "connected"
        except Exception as e:
            logger.error("Health check ping failed: %s", e)
    stripe_status = "configured" if payment_gateway.configured else "not_configured"

    return HealthResponse(
        status="healthy" if mongodb_status == "connected" else "degraded",
        version=settings.app_version,
        services={"mongodb": mongodb_status, "stripe": stripe_status},
    )
