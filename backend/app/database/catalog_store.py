"""Product configuration catalog persistence."""

import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError

from app.database.mongodb import MongoDB, mongodb, to_storage_time, translate_storage_errors
from app.errors import FieldError
from app.models.order import LineItem
from app.models.product import DEFAULT_CATALOG, CatalogEntry, CatalogType, ProductConfig
from app.utils.helpers import from_minor_units, to_minor_units, utcnow

logger = logging.getLogger(__name__)

# Item attributes checked against the catalog
VALIDATED_ATTRIBUTES = {
    "device": CatalogType.DEVICES,
    "color": CatalogType.COLORS,
    "font": CatalogType.FONTS,
}


def _to_document(config: ProductConfig) -> dict[str, Any]:
    doc = config.model_dump(mode="python")
    doc["type"] = config.type.value
    doc["updatedAt"] = to_storage_time(config.updatedAt)
    for entry in doc["data"]:
        if entry.get("price") is not None:
            entry["price"] = to_minor_units(entry["price"])
    return doc


def _from_document(doc: dict[str, Any]) -> ProductConfig:
    data = [
        {**entry, "price": from_minor_units(entry["price"]) if entry.get("price") is not None else None}
        for entry in doc.get("data", [])
    ]
    return ProductConfig(type=doc["type"], data=data, updatedAt=doc.get("updatedAt") or utcnow())


class CatalogStore:
    """Catalog of selectable devices, colors, fonts, carriers and case types."""

    def __init__(self, db: MongoDB = mongodb) -> None:
        self._db = db

    @translate_storage_errors
    async def ensure_defaults(self) -> bool:
        """Seed the default catalog when the collection is empty.

        Returns True when defaults were inserted. Safe to call from several
        processes at once; the unique index on ``type`` rejects the loser.
        """
        if await self._db.catalog.count_documents({}) > 0:
            return False
        logger.info("Initializing product configurations...")
        try:
            await self._db.catalog.insert_many(
                [_to_document(config) for config in DEFAULT_CATALOG], ordered=False
            )
        except BulkWriteError as e:
            logger.info("Product configurations seeded concurrently: %s", e.details.get("nInserted"))
            return False
        logger.info("Product configurations initialized")
        return True

    @translate_storage_errors
    async def get(self, catalog_type: CatalogType) -> Optional[ProductConfig]:
        doc = await self._db.catalog.find_one({"type": catalog_type.value}, {"_id": 0})
        return _from_document(doc) if doc else None

    async def active_entries(self, catalog_type: CatalogType) -> list[CatalogEntry]:
        config = await self.get(catalog_type)
        return config.active_entries() if config else []

    async def active_names(self, catalog_type: CatalogType) -> list[str]:
        return [entry.name for entry in await self.active_entries(catalog_type)]

    @translate_storage_errors
    async def replace_entries(
        self, catalog_type: CatalogType, entries: list[CatalogEntry]
    ) -> ProductConfig:
        """Replace a catalog section (admin edit)."""
        config = ProductConfig(type=catalog_type, data=entries)
        doc = _to_document(config)
        stored = await self._db.catalog.find_one_and_update(
            {"type": catalog_type.value},
            {"$set": {"data": doc["data"], "updatedAt": doc["updatedAt"]}},
            upsert=True,
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Catalog %s updated with %d entries", catalog_type.value, len(entries))
        return _from_document(stored)

    async def unit_prices(self) -> dict[str, Decimal]:
        """Active case-type prices keyed by case type name."""
        return {
            entry.name: entry.price
            for entry in await self.active_entries(CatalogType.CASE_TYPES)
            if entry.price is not None
        }

    async def validate_items(self, items: Sequence[LineItem]) -> list[FieldError]:
        """Check each item's options are currently offered.

        A catalog section that is empty or missing does not restrict anything.
        """
        errors: list[FieldError] = []
        for attribute, catalog_type in VALIDATED_ATTRIBUTES.items():
            offered = set(await self.active_names(catalog_type))
            if not offered:
                continue
            for index, item in enumerate(items):
                value = getattr(item, attribute)
                if value not in offered:
                    errors.append(
                        FieldError(f"items[{index}].{attribute}", f"'{value}' is not currently offered")
                    )
        return errors


# Global catalog store instance
catalog_store = CatalogStore()
