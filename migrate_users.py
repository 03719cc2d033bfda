"""
One-time migration: mark users created before ``is_enabled`` existed as enabled.

Run with: python migrate_users.py
"""

import sys

from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import get_settings
from database import USERS, connect
from log import configure_logging, get_logger

logger = get_logger(__name__)


def backfill_is_enabled(db: Database) -> int:
    result = db[USERS].update_many({"is_enabled": {"$exists": False}}, {"$set": {"is_enabled": True}})
    return result.modified_count


def main() -> int:
    configure_logging(get_settings().log_level)
    try:
        updated = backfill_is_enabled(connect())
    except PyMongoError as exc:
        logger.error("migration_failed", error=str(exc))
        return 1
    logger.info("migration_complete", users_updated=updated)
    return 0


if __name__ == "__main__":
    sys.exit(main())
