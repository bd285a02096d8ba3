"""MongoDB database connection management."""

import functools
import logging
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, ExecutionTimeout

from app.config import get_settings
from app.errors import StorageUnavailable

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")


def to_storage_time(value: datetime) -> datetime:
    """Naive UTC datetime, the form MongoDB hands back."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def translate_storage_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Turn driver connectivity failures into StorageUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except (ConnectionFailure, ExecutionTimeout) as e:
            logger.error("MongoDB unavailable in %s: %s", func.__qualname__, e)
            raise StorageUnavailable(str(e)) from e

    return wrapper


class MongoDB:
    """MongoDB connection manager."""

    def __init__(self) -> None:
        """Initialize MongoDB connection."""
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self) -> None:
        """Connect to MongoDB."""
        try:
            client = AsyncIOMotorClient(
                settings.mongodb_url,
                maxPoolSize=settings.mongodb_max_pool_size,
                minPoolSize=settings.mongodb_min_pool_size,
                serverSelectionTimeoutMS=5000,
            )
            # Test connection
            await client.admin.command("ping")
            await self.bind(client)
            logger.info("Connected to MongoDB: %s", settings.mongodb_database)

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB: %s", e)
            raise

    async def bind(self, client: Any, database: Optional[str] = None) -> None:
        """Attach an already constructed client and create indexes."""
        self.client = client
        self.db = client[database or settings.mongodb_database]
        await self._create_indexes()

    async def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")
        self.client = None
        self.db = None

    @property
    def connected(self) -> bool:
        return self.db is not None

    def collection(self, name: str) -> AsyncIOMotorCollection:
        if self.db is None:
            raise StorageUnavailable("Database not connected")
        return self.db[name]

    @property
    def orders(self) -> AsyncIOMotorCollection:
        return self.collection(settings.mongodb_order_collection)

    @property
    def catalog(self) -> AsyncIOMotorCollection:
        return self.collection(settings.mongodb_catalog_collection)

    @property
    def admins(self) -> AsyncIOMotorCollection:
        return self.collection(settings.mongodb_admin_collection)

    @property
    def reconciliation(self) -> AsyncIOMotorCollection:
        return self.collection(settings.mongodb_reconciliation_collection)

    async def _create_indexes(self) -> None:
        """Create database indexes."""
        orders = self.orders
        await orders.create_index("orderNumber", unique=True, name="orderNumber_unique")
        await orders.create_index(
            "paymentInfo.paymentAuthorizationId",
            unique=True,
            name="paymentAuthorizationId_unique",
        )
        await orders.create_index("customerInfo.email", name="email_index")
        await orders.create_index("status", name="status_index")
        await orders.create_index([("createdAt", DESCENDING)], name="createdAt_index")
        await orders.create_index("shippingAddress.region", name="region_index")

        await self.catalog.create_index([("type", ASCENDING)], unique=True, name="type_unique")
        await self.admins.create_index("apiKeyHash", unique=True, name="apiKeyHash_unique")
        await self.admins.create_index("email", unique=True, name="email_unique")
        await self.reconciliation.create_index(
            "authorizationId", unique=True, name="authorizationId_unique"
        )
        logger.info("MongoDB indexes created")


# Global MongoDB instance
mongodb = MongoDB()
