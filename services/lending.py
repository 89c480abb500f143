"""Borrow/return lifecycle.

A record starts ``borrowed``, may be promoted to ``overdue`` by the sweep, and
ends ``returned``.  Each transition is paired with a change to the book's
``available_copies`` so that, for every book::

    available_copies == total_copies - (number of open records)

MongoDB gives us single-document atomicity only, so the pairing is built from
conditional writes: the counter decrement is guarded by ``available_copies >
0``, the per-user rule by a unique index on open records, and status changes
are keyed on the status that was read.  Losing a race either retries (bounded)
or fails with a classified error.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pymongo.errors import PyMongoError

import config
from errors import Conflict, Forbidden, NotFound, Unavailable, WriteConflict
from models import (
    BorrowPage,
    BorrowRecord,
    BorrowResponse,
    BorrowStatus,
    OverdueNotice,
    Principal,
    utcnow,
)
from services.inventory import InventoryStore
from services.ledger import BorrowLedger
from services.notifier import LoggingNotifier
from utils.pagination import page_meta, page_window
from utils.policy import can_manage_record

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def compute_fine(due_date: datetime, returned_at: datetime, rate: int = config.FINE_PER_DAY) -> int:
    """Days past due, any part of a day counting as a whole one, times rate."""
    if returned_at <= due_date:
        return 0
    days = math.ceil((returned_at - due_date) / ONE_DAY)
    return max(0, days) * rate


class LendingService:
    def __init__(
        self,
        inventory: InventoryStore,
        ledger: BorrowLedger,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = config.MAX_WRITE_RETRIES,
        fine_per_day: int = config.FINE_PER_DAY,
    ):
        self.inventory = inventory
        self.ledger = ledger
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.max_retries = max_retries
        self.fine_per_day = fine_per_day

    async def borrow(self, user_id: str, book_id: int) -> BorrowResponse:
        book = await self.inventory.get(book_id)
        if not book:
            raise NotFound("Book not found")
        if book.available_copies <= 0:
            raise Unavailable("Book is currently not available")
        if await self.ledger.find_open(user_id, book_id):
            raise Conflict("You have already borrowed this book")

        if await self.inventory.take_copy(book_id) is None:
            # Lost the last copy to another borrower, or the book went away
            if await self.inventory.get(book_id) is None:
                raise NotFound("Book not found")
            raise Unavailable("Book is currently not available")

        record = BorrowRecord.open(user_id, book_id, self.clock())
        try:
            record = await self.ledger.insert(record)
        except Exception:
            await self.inventory.release_copy(book_id)
            raise

        logger.info("User %s borrowed book %s (record %s, due %s)",
                    user_id, book_id, record.id, record.due_date.isoformat())
        return await self.ledger.resolve_one(record)

    async def return_book(self, record_id: str, requester: Principal) -> BorrowResponse:
        for attempt in range(self.max_retries):
            record = await self.ledger.get(record_id)
            if not record:
                raise NotFound("Borrow record not found")
            if not can_manage_record(requester, record):
                raise Forbidden("Not authorized to return this book")
            if not record.is_open:
                raise Conflict("Book already returned")

            now = self.clock()
            fine = compute_fine(record.due_date, now, self.fine_per_day)
            closed = await self.ledger.close(record, now, fine)
            if closed is None:
                logger.debug("Borrow record %s changed during return (attempt %d)", record_id, attempt + 1)
                continue

            try:
                await self.inventory.release_copy(record.book_id)
            except Exception:
                await self.ledger.reopen(record)
                raise

            logger.info("Record %s returned by %s, fine %d", record_id, requester.id, fine)
            return await self.ledger.resolve_one(closed)

        raise WriteConflict(f"Borrow record {record_id} kept changing, please retry")

    async def get_record(self, record_id: str, requester: Principal) -> BorrowResponse:
        record = await self.ledger.get(record_id)
        if not record:
            raise NotFound("Borrow record not found")
        if not can_manage_record(requester, record):
            raise Forbidden("Not authorized to view this record")
        return await self.ledger.resolve_one(record)

    async def get_history(self, user_id: str) -> List[BorrowResponse]:
        records = await self.ledger.history(user_id)
        return await self.ledger.resolve(records, with_user=False)

    async def list_records(
        self,
        status: Optional[BorrowStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> BorrowPage:
        page, limit, skip = page_window(page, limit)
        records, total = await self.ledger.page(status, skip, limit)
        data = await self.ledger.resolve(records)
        return BorrowPage(data=data, **page_meta(total, page, limit, len(data)))

    async def sweep_overdue(self) -> List[BorrowResponse]:
        """Promote borrowed records past their due date to overdue, then notify.

        Transitions are committed before any notice goes out; a record that
        was returned in the meantime is skipped.  No fine is assessed here.
        """
        now = self.clock()
        affected = []
        for record in await self.ledger.find_due(now):
            try:
                updated = await self.ledger.mark_overdue(record.id, now)
            except PyMongoError:
                logger.exception("Could not mark borrow record %s overdue", record.id)
                continue
            if updated is None:
                logger.debug("Borrow record %s left borrowed state before the sweep reached it", record.id)
                continue
            affected.append(updated)

        resolved = await self.ledger.resolve(affected)
        sent = await self.dispatch_notices(resolved)
        logger.info("Overdue sweep marked %d record(s), %d notice(s) sent", len(resolved), sent)
        return resolved

    async def dispatch_notices(self, records: List[BorrowResponse]) -> int:
        sent = 0
        for record in records:
            if record.user is None or record.book is None:
                logger.warning("Skipping overdue notice for record %s: user or book missing", record.id)
                continue
            notice = OverdueNotice(
                username=record.user.username,
                book_title=record.book.title,
                due_date=record.due_date,
            )
            try:
                delivered = await self.notifier.notify_overdue(record.user.email, notice)
            except Exception:
                logger.exception("Notifier failed for borrow record %s", record.id)
                continue
            if delivered:
                sent += 1
            else:
                logger.warning("Overdue notice for record %s was not delivered", record.id)
        return sent
