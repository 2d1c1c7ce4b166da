"""
Seed script to populate default permissions and roles.

Run this script after database initialization to create:
- Default permissions (user, agent, category, address, booking, ...)
- Default roles (admin, agent, customer)
- Initial role-permission grants

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.constants import DEFAULT_ROLES
from app.features.permissions.seed import seed_catalog
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed_catalog(db)
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        catalog = await PermissionCatalog.load(db)

    log.info("Permission seeding completed successfully!")
    log.info("Roles in database:")
    for role_name in sorted(catalog.role_names):
        description = DEFAULT_ROLES.get(role_name, {}).get("description", "")
        log.info(f"  - {role_name}: {len(catalog.permissions_for_role(role_name))} permissions {description}")


if __name__ == "__main__":
    asyncio.run(main())
