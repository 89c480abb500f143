"""Data access for borrow records.

Every status change is a conditional ``find_one_and_update`` keyed on the
status the caller observed, so two writers racing on one record cannot both
succeed.  Open records carry an ``open_key`` (``"<user>:<book>"``) backed by a
unique partial index; it is removed on return.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import to_document, to_object_id
from errors import Conflict
from models import (
    BookSummary,
    BorrowRecord,
    BorrowResponse,
    BorrowStatus,
    OPEN_STATUSES,
    UserSummary,
)

logger = logging.getLogger(__name__)

OPEN_VALUES = [s.value for s in OPEN_STATUSES]
NEWEST_FIRST = [("borrow_date", DESCENDING), ("_id", DESCENDING)]


def open_key(user_id: str, book_id: int) -> str:
    return f"{user_id}:{book_id}"


def _to_record(doc) -> BorrowRecord:
    return BorrowRecord(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        book_id=doc["book_id"],
        borrow_date=doc["borrow_date"],
        due_date=doc["due_date"],
        return_date=doc.get("return_date"),
        status=doc["status"],
        fine=doc.get("fine", 0),
    )


class BorrowLedger:
    def __init__(self, db):
        self.db = db
        self.records = db.borrow_records

    async def get(self, record_id: str) -> Optional[BorrowRecord]:
        oid = to_object_id(record_id)
        if oid is None:
            return None
        doc = await self.records.find_one({"_id": oid})
        return _to_record(doc) if doc else None

    async def find_open(self, user_id: str, book_id: int) -> Optional[BorrowRecord]:
        doc = await self.records.find_one({"open_key": open_key(user_id, book_id)})
        return _to_record(doc) if doc else None

    async def insert(self, record: BorrowRecord) -> BorrowRecord:
        """Persist a new open record; Conflict if the user already holds one."""
        doc = to_document(record, exclude={"id"})
        doc["open_key"] = open_key(record.user_id, record.book_id)
        try:
            result = await self.records.insert_one(doc)
        except DuplicateKeyError:
            raise Conflict("You have already borrowed this book")
        return record.model_copy(update={"id": str(result.inserted_id)})

    async def close(self, record: BorrowRecord, returned_at: datetime, fine: int) -> Optional[BorrowRecord]:
        """Move an open record to returned, only if its status is still the one observed."""
        doc = await self.records.find_one_and_update(
            {"_id": to_object_id(record.id), "status": BorrowStatus(record.status).value},
            {
                "$set": {
                    "status": BorrowStatus.RETURNED.value,
                    "return_date": returned_at,
                    "fine": fine,
                },
                "$unset": {"open_key": ""},
            },
            return_document=ReturnDocument.AFTER,
        )
        return _to_record(doc) if doc else None

    async def reopen(self, previous: BorrowRecord) -> None:
        """Undo a close() whose inventory half could not be applied."""
        try:
            await self.records.update_one(
                {"_id": to_object_id(previous.id), "status": BorrowStatus.RETURNED.value},
                {
                    "$set": {
                        "status": BorrowStatus(previous.status).value,
                        "return_date": None,
                        "fine": previous.fine,
                        "open_key": open_key(previous.user_id, previous.book_id),
                    }
                },
            )
        except DuplicateKeyError:
            logger.error(
                "Could not reopen borrow record %s: user %s already holds another open record for book %s",
                previous.id, previous.user_id, previous.book_id,
            )

    async def mark_overdue(self, record_id: str, now: datetime) -> Optional[BorrowRecord]:
        doc = await self.records.find_one_and_update(
            {
                "_id": to_object_id(record_id),
                "status": BorrowStatus.BORROWED.value,
                "due_date": {"$lt": now},
            },
            {"$set": {"status": BorrowStatus.OVERDUE.value}},
            return_document=ReturnDocument.AFTER,
        )
        return _to_record(doc) if doc else None

    async def find_due(self, now: datetime) -> List[BorrowRecord]:
        records = []
        cursor = self.records.find(
            {"status": BorrowStatus.BORROWED.value, "due_date": {"$lt": now}}
        ).sort("due_date", 1)
        async for doc in cursor:
            records.append(_to_record(doc))
        return records

    async def history(self, user_id: str, open_only: bool = False) -> List[BorrowRecord]:
        query = {"user_id": user_id}
        if open_only:
            query["status"] = {"$in": OPEN_VALUES}
        records = []
        async for doc in self.records.find(query).sort(NEWEST_FIRST):
            records.append(_to_record(doc))
        return records

    async def page(self, status: Optional[BorrowStatus], skip: int, limit: int):
        query = {}
        if status is not None:
            query["status"] = BorrowStatus(status).value
        records = []
        async for doc in self.records.find(query).sort(NEWEST_FIRST).skip(skip).limit(limit):
            records.append(_to_record(doc))
        total = await self.records.count_documents(query)
        return records, total

    async def count_open_for_book(self, book_id: int) -> int:
        return await self.records.count_documents({"book_id": book_id, "status": {"$in": OPEN_VALUES}})

    async def count_open_for_user(self, user_id: str) -> int:
        return await self.records.count_documents({"user_id": user_id, "status": {"$in": OPEN_VALUES}})

    async def resolve(self, records: Iterable[BorrowRecord], with_user: bool = True) -> List[BorrowResponse]:
        """Attach user and book summaries for display."""
        records = list(records)
        users: Dict[str, UserSummary] = {}
        if with_user:
            user_ids = {to_object_id(r.user_id) for r in records} - {None}
            async for u in self.db.users.find({"_id": {"$in": list(user_ids)}}):
                users[str(u["_id"])] = UserSummary(
                    id=str(u["_id"]), username=u.get("username", ""), email=u.get("email", "")
                )
        books: Dict[int, BookSummary] = {}
        book_ids = list({r.book_id for r in records})
        async for b in self.db.books.find({"id": {"$in": book_ids}}):
            books[b["id"]] = BookSummary(id=b["id"], title=b["title"], author=b["author"], isbn=b["isbn"])
        return [
            BorrowResponse(**r.model_dump(), user=users.get(r.user_id), book=books.get(r.book_id))
            for r in records
        ]

    async def resolve_one(self, record: BorrowRecord) -> BorrowResponse:
        return (await self.resolve([record]))[0]
