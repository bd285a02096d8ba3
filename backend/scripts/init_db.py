"""Database initialization script.

Creates indexes, seeds the default product catalog and, optionally, an
admin principal whose API key is printed once.

    python -m scripts.init_db --admin-email ops@example.com --first-name Ops --last-name Team
"""

import argparse
import asyncio
import logging

from app.database.admin_store import admin_store
from app.database.catalog_store import catalog_store
from app.database.mongodb import mongodb
from app.models.user import AdminBase, AdminRole
from app.utils.logger import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


async def init_databases(admin: AdminBase | None = None) -> str | None:
    """Initialize the database; returns the new admin's API key, if one was created."""
    try:
        logger.info("Initializing database...")
        await mongodb.connect()

        if await catalog_store.ensure_defaults():
            logger.info("Default catalog seeded")
        else:
            logger.info("Catalog already present, left unchanged")

        api_key = None
        if admin is not None:
            try:
                _, api_key = await admin_store.create_admin(admin)
            except ValueError as e:
                logger.warning("Admin not created: %s", e)

        logger.info("Database initialization completed successfully")
        return api_key

    except Exception as e:
        logger.error("Error initializing database: %s", e)
        raise

    finally:
        await mongodb.disconnect()


def main() -> None:
    parser = argparse.ArgumentParser(description="Initialize the storefront database")
    parser.add_argument("--admin-email", help="Create an admin with this email")
    parser.add_argument("--first-name", default="Store")
    parser.add_argument("--last-name", default="Admin")
    parser.add_argument(
        "--role",
        choices=[role.value for role in AdminRole],
        default=AdminRole.SUPER_ADMIN.value,
    )
    args = parser.parse_args()

    admin = None
    if args.admin_email:
        admin = AdminBase(
            email=args.admin_email,
            firstName=args.first_name,
            lastName=args.last_name,
            role=AdminRole(args.role),
        )

    api_key = asyncio.run(init_databases(admin))
    if api_key:
        print(f"Admin API key (shown once): {api_key}")


if __name__ == "__main__":
    main()
