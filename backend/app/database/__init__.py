"""Database package."""

from app.database.admin_store import AdminStore, admin_store
from app.database.catalog_store import CatalogStore, catalog_store
from app.database.mongodb import MongoDB, mongodb
from app.database.order_store import OrderStore, order_store
from app.database.reconciliation_store import ReconciliationStore, reconciliation_store

__all__ = [
    "MongoDB",
    "mongodb",
    "OrderStore",
    "order_store",
    "CatalogStore",
    "catalog_store",
    "AdminStore",
    "admin_store",
    "ReconciliationStore",
    "reconciliation_store",
]
