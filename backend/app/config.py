"""Application configuration management using Pydantic Settings."""
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the directory where settings.py is located
BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    app_name: str = "Custom Case Storefront"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", pattern="^(development|staging|production)$")

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    frontend_url: str = "http://localhost:5173"

    # MongoDB
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = "storefront"
    mongodb_order_collection: str = "orders"
    mongodb_catalog_collection: str = "product_configs"
    mongodb_admin_collection: str = "admins"
    mongodb_reconciliation_collection: str = "payment_reconciliation"
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 1

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_timeout_seconds: float = 15.0
    stripe_statement_descriptor_suffix: str = "CASA CUSTOMZ"
    currency: str = "usd"

    # Pricing
    free_shipping_threshold: Decimal = Decimal("25.00")
    price_tolerance: Decimal = Decimal("0.05")
    minimum_order_total: Decimal = Decimal("0.50")
    default_tax_rate: Decimal = Decimal("0.085")

    # Orders
    order_number_prefix: str = "LICC"
    order_number_max_attempts: int = 5
    order_persist_attempts: int = 3
    order_persist_backoff_seconds: float = 0.5

    # Rate Limiting
    rate_limit_payments: int = 20
    rate_limit_webhooks: int = 100
    rate_limit_orders: int = 10
    rate_limit_period: int = 60  # seconds

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
