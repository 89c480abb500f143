"""
Reconcile book copy counts against open borrow records.

available_copies is kept in step with borrows and returns as they happen, but
admin edits (or a crash between the two halves of a borrow) can leave it
drifting from total_copies minus the number of open records.  This script
reports such books and, with --fix, rewrites their counters.

Usage:
    python migration.py          # report only
    python migration.py --fix    # report and repair
"""

from motor.motor_asyncio import AsyncIOMotorClient
import argparse
import asyncio
import logging

import config
from models import OPEN_STATUSES

logger = logging.getLogger(__name__)


async def find_drift(db):
    """Return one entry per book whose stored counter disagrees with its open records."""
    open_values = [s.value for s in OPEN_STATUSES]
    drift = []
    async for book in db.books.find():
        open_records = await db.borrow_records.count_documents({
            "book_id": book["id"],
            "status": {"$in": open_values},
        })
        expected = book["total_copies"] - open_records
        if book.get("available_copies") != expected:
            drift.append({
                "book_id": book["id"],
                "title": book.get("title", "Unknown"),
                "total_copies": book["total_copies"],
                "available_copies": book.get("available_copies"),
                "open_records": open_records,
                "expected_available": expected,
            })
    return drift


async def reconcile(db):
    """Rewrite drifting counters.  Books with more open records than copies are reported, not changed."""
    fixed, skipped = [], []
    for entry in await find_drift(db):
        if entry["expected_available"] < 0:
            logger.error(
                "Book %s has %s open records but only %s copies; raise total_copies first",
                entry["book_id"], entry["open_records"], entry["total_copies"],
            )
            skipped.append(entry)
            continue
        result = await db.books.update_one(
            {"id": entry["book_id"], "available_copies": entry["available_copies"]},
            {"$set": {"available_copies": entry["expected_available"]}},
        )
        if result.modified_count:
            logger.info(
                "Updated book '%s' - Total: %s, Available: %s -> %s",
                entry["title"], entry["total_copies"], entry["available_copies"], entry["expected_available"],
            )
            fixed.append(entry)
        else:
            # Counter moved while we were looking; a later run will pick it up
            skipped.append(entry)
    return fixed, skipped


async def main(fix: bool):
    client = AsyncIOMotorClient(config.MONGO_URL)
    db = client[config.MONGO_DB_NAME]
    try:
        if fix:
            fixed, skipped = await reconcile(db)
            logger.info("Reconciliation completed: %d fixed, %d skipped", len(fixed), len(skipped))
        else:
            drift = await find_drift(db)
            if not drift:
                logger.info("All book counters match their open borrow records.")
            for entry in drift:
                logger.warning(
                    "Book %s '%s': available %s, expected %s (%s open of %s)",
                    entry["book_id"], entry["title"], entry["available_copies"],
                    entry["expected_available"], entry["open_records"], entry["total_copies"],
                )
    finally:
        client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Library Management System - copy count reconciliation")
    parser.add_argument("--fix", action="store_true", help="rewrite drifting counters")
    args = parser.parse_args()
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s: %(message)s")
    asyncio.run(main(args.fix))
