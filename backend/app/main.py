"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.middleware import LoggingMiddleware, RateLimitMiddleware
from app.api.routes import router
from app.config import get_settings
from app.database.catalog_store import catalog_store
from app.database.mongodb import mongodb
from app.errors import StorefrontError
from app.utils.logger import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting application...")
    try:
        await mongodb.connect()
        await catalog_store.ensure_defaults()
        if not settings.stripe_webhook_secret:
            logger.warning("Stripe webhook secret not configured; webhooks will be rejected")

        yield

    finally:
        # Shutdown
        logger.info("Shutting down application...")
        await mongodb.disconnect()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Custom phone case storefront: checkout, payments and order fulfillment",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add custom middleware
app.add_middleware(
    RateLimitMiddleware,
    limits={
        f"{settings.api_prefix}/payments": settings.rate_limit_payments,
        f"{settings.api_prefix}/webhooks": settings.rate_limit_webhooks,
        f"{settings.api_prefix}/orders": settings.rate_limit_orders,
    },
    period=settings.rate_limit_period,
)
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(router)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


# Exception handlers
@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Render domain errors with their status and public message."""
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc, extra={"request_id": _request_id(request)})
    else:
        logger.info("%s: %s", type(exc).__name__, exc, extra={"request_id": _request_id(request)})
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.payload(), "requestId": _request_id(request)},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Structural validation failures as a 400 with field-level details."""
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": details, "requestId": _request_id(request)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error("Unhandled exception: %s", exc, exc_info=True, extra={"request_id": _request_id(request)})
    content = {
        "error": "Internal Server Error",
        "message": "An unexpected error occurred",
        "requestId": _request_id(request),
    }
    if settings.debug:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Root endpoint
@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
