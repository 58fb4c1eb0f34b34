"""
Seed Permissions and Role Defaults Script
This script populates the permissions and role_permissions tables using the config.
Existing role defaults are left untouched so edits made by administrators survive
a re-run; only missing (role, permission) pairs are inserted.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from app.config.permissions_config import PERMISSION_MATRIX
from app.database.supabase_client import get_supabase
from app.modules.permissions.schemas import is_valid_permission_key
from supabase import Client
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed_permissions(supabase: Client):
    """Seed the permission catalog from config"""
    logger.info("Seeding permissions...")

    permissions = PERMISSION_MATRIX["permissions"]
    created_count = 0
    updated_count = 0

    for perm in permissions:
        if not is_valid_permission_key(perm["permission_key"]):
            # Would be dropped at read time, for admins too
            logger.error(f"Refusing to seed malformed permission key {perm['permission_key']!r}")
            continue
        try:
            existing = supabase.table("permissions")\
                .select("id")\
                .eq("permission_key", perm["permission_key"])\
                .execute()

            if existing.data:
                supabase.table("permissions")\
                    .update({
                        "name": perm["name"],
                        "description": perm["description"],
                        "category": perm["category"]
                    })\
                    .eq("permission_key", perm["permission_key"])\
                    .execute()
                updated_count += 1
                logger.debug(f"Updated permission: {perm['permission_key']}")
            else:
                supabase.table("permissions").insert(perm).execute()
                created_count += 1
                logger.debug(f"Created permission: {perm['permission_key']}")
        except Exception as e:
            logger.error(f"Error processing permission {perm['permission_key']}: {e}")

    logger.info(f"Permissions seeded: {created_count} created, {updated_count} updated")
    return created_count + updated_count


def seed_role_defaults(supabase: Client):
    """Insert role defaults that do not exist yet"""
    logger.info("Seeding role defaults...")

    permission_result = supabase.table("permissions")\
        .select("id, permission_key")\
        .execute()
    permission_ids = {p["permission_key"]: p["id"] for p in permission_result.data or []}

    existing_result = supabase.table("role_permissions")\
        .select("role, permission_id")\
        .execute()
    existing = {(r["role"], r["permission_id"]) for r in existing_result.data or []}

    new_rows = []
    for row in PERMISSION_MATRIX["role_defaults"]:
        permission_id = permission_ids.get(row["permission_key"])
        if permission_id is None:
            logger.warning(f"Permission {row['permission_key']} missing; skipping default for {row['role']}")
            continue
        if (row["role"], permission_id) in existing:
            continue
        new_rows.append({
            "role": row["role"],
            "permission_id": permission_id,
            "granted": row["granted"]
        })

    if new_rows:
        supabase.table("role_permissions").insert(new_rows).execute()
    logger.info(f"Role defaults seeded: {len(new_rows)} created, {len(existing)} already present")
    return len(new_rows)


def main():
    """Main function to seed permissions and role defaults"""
    try:
        supabase = get_supabase()

        logger.info("Starting permission seeding...")

        # Seed permissions first
        perm_count = seed_permissions(supabase)

        # Then role defaults (which reference permissions)
        default_count = seed_role_defaults(supabase)

        logger.info("Seeding completed successfully!")
        logger.info(f"Total: {perm_count} permissions, {default_count} role defaults processed")

    except Exception as e:
        logger.error(f"Error during seeding: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
