"""Queue of payments that have no matching order yet.

A record is written whenever money was taken but no order could be
created for it, either because the synchronous write failed or because
a success webhook arrived without enough data to rebuild the order.
Records are keyed by authorization id, so repeated reports of the same
payment update one record.
"""

import logging
from typing import Any, Optional

from app.database.mongodb import MongoDB, mongodb, to_storage_time, translate_storage_errors
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_RESOLVED = "resolved"


class ReconciliationStore:
    def __init__(self, db: MongoDB = mongodb) -> None:
        self._db = db

    @translate_storage_errors
    async def enqueue(
        self,
        authorization_id: str,
        reason: str,
        amount_minor: Optional[int] = None,
        snapshot: Optional[dict[str, Any]] = None,
    ) -> None:
        now = to_storage_time(utcnow())
        await self._db.reconciliation.update_one(
            {"authorizationId": authorization_id},
            {
                "$set": {
                    "reason": reason,
                    "amount": amount_minor,
                    "snapshot": snapshot,
                    "status": STATUS_OPEN,
                    "updatedAt": now,
                },
                "$setOnInsert": {"createdAt": now},
                "$inc": {"reports": 1},
            },
            upsert=True,
        )
        logger.warning(
            "Payment queued for reconciliation: %s (%s)",
            authorization_id,
            reason,
            extra={"authorization_id": authorization_id, "reason": reason},
        )

    @translate_storage_errors
    async def resolve(self, authorization_id: str, order_number: str) -> None:
        await self._db.reconciliation.update_one(
            {"authorizationId": authorization_id, "status": STATUS_OPEN},
            {
                "$set": {
                    "status": STATUS_RESOLVED,
                    "orderNumber": order_number,
                    "updatedAt": to_storage_time(utcnow()),
                }
            },
        )

    @translate_storage_errors
    async def get(self, authorization_id: str) -> Optional[dict[str, Any]]:
        return await self._db.reconciliation.find_one({"authorizationId": authorization_id}, {"_id": 0})

    @translate_storage_errors
    async def list_open(self, limit: int = 100) -> list[dict[str, Any]]:
        cursor = self._db.reconciliation.find({"status": STATUS_OPEN}, {"_id": 0}).limit(limit)
        return await cursor.to_list(length=limit)


# Global reconciliation store instance
reconciliation_store = ReconciliationStore()
