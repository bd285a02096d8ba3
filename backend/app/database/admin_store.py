"""Admin principal persistence."""

import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from app.database.mongodb import MongoDB, mongodb, to_storage_time, translate_storage_errors
from app.models.user import AdminBase, AdminInDB
from app.utils.helpers import generate_api_key, generate_hash, utcnow

logger = logging.getLogger(__name__)


class AdminStore:
    """Admins are looked up by the hash of their API key."""

    def __init__(self, db: MongoDB = mongodb) -> None:
        self._db = db

    @translate_storage_errors
    async def create_admin(self, admin: AdminBase) -> tuple[AdminInDB, str]:
        """Create an admin and return it with its plaintext API key.

        The key is only available here; it is stored hashed.
        """
        api_key = generate_api_key()
        record = AdminInDB(**admin.model_dump(), apiKeyHash=generate_hash(api_key))
        doc = record.model_dump(mode="python")
        doc["role"] = record.role.value
        doc["createdAt"] = to_storage_time(record.createdAt)
        try:
            await self._db.admins.insert_one(doc)
        except DuplicateKeyError:
            raise ValueError(f"Admin with email '{admin.email}' already exists")
        logger.info("Admin created: %s (%s)", record.email, record.role.value)
        return record, api_key

    @translate_storage_errors
    async def get_by_api_key(self, api_key: str) -> Optional[AdminInDB]:
        doc = await self._db.admins.find_one(
            {"apiKeyHash": generate_hash(api_key), "isActive": True}, {"_id": 0}
        )
        return AdminInDB(**doc) if doc else None

    @translate_storage_errors
    async def touch_last_login(self, admin: AdminInDB) -> None:
        await self._db.admins.update_one(
            {"apiKeyHash": admin.apiKeyHash},
            {"$set": {"lastLogin": to_storage_time(utcnow())}},
        )


# Global admin store instance
admin_store = AdminStore()
