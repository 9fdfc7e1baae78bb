"""
Seed script to populate the capability catalog.

Run this script after database initialization to create the default
capabilities admins can request (finance, announcement, events, ...).
It is idempotent: existing capabilities are left untouched.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import get_db, init_db
from app.features.permissions.catalog import DEFAULT_CAPABILITIES, seed_capabilities
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Main function to seed the capability catalog."""
    log.info("Starting capability seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            created = await seed_capabilities(db)

            log.info("Capability seeding completed successfully!")
            log.info("")
            log.info(f"Catalog ({created} new):")
            for key, display_name, description in DEFAULT_CAPABILITIES:
                log.info(f"  - {key}: {description}")

        except Exception as e:
            log.error(f"Error seeding capabilities: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
