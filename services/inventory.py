import logging
import re
from typing import Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from database import to_document
from errors import Conflict, InternalConsistency, NotFound, WriteConflict
from models import Book, BookCreate, BookPage, BookResponse, BookUpdate, Genre, utcnow
from services.ledger import BorrowLedger
from utils.pagination import page_meta, page_window

logger = logging.getLogger(__name__)


def _to_book(doc) -> Book:
    return Book(**{k: v for k, v in doc.items() if k != "_id"})


class InventoryStore:
    """Book documents plus the atomic counter primitives borrowing relies on."""

    def __init__(self, db, max_retries: int = config.MAX_WRITE_RETRIES):
        self.db = db
        self.books = db.books
        self.max_retries = max_retries

    # --- Auto Increment Function ---
    async def next_id(self, name: str = "bookid") -> int:
        counter = await self.db.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"sequence_value": 1}},
            return_document=ReturnDocument.AFTER,
            upsert=True
        )
        return counter["sequence_value"]

    async def get(self, book_id: int) -> Optional[Book]:
        doc = await self.books.find_one({"id": book_id})
        return _to_book(doc) if doc else None

    async def insert(self, book: Book) -> Book:
        try:
            await self.books.insert_one(to_document(book))
        except DuplicateKeyError:
            raise Conflict(f"A book with ISBN {book.isbn} already exists")
        return book

    async def take_copy(self, book_id: int) -> Optional[Book]:
        """Decrement available_copies by one if any copy is left."""
        doc = await self.books.find_one_and_update(
            {"id": book_id, "available_copies": {"$gt": 0}},
            {"$inc": {"available_copies": -1}},
            return_document=ReturnDocument.AFTER,
        )
        return _to_book(doc) if doc else None

    async def release_copy(self, book_id: int) -> Book:
        """Increment available_copies by one, never past total_copies.

        The write is conditional on the counters read just before it, so an
        interleaved borrow or admin edit makes it miss and retry.
        """
        for _ in range(self.max_retries):
            book = await self.get(book_id)
            if book is None:
                logger.error("Cannot release a copy of missing book %s", book_id)
                raise InternalConsistency(f"Book {book_id} referenced by a borrow record does not exist")
            if book.available_copies >= book.total_copies:
                logger.error(
                    "Book %s already has %s/%s copies available; refusing to increment",
                    book_id, book.available_copies, book.total_copies,
                )
                raise InternalConsistency(f"Available copies of book {book_id} would exceed total copies")
            doc = await self.books.find_one_and_update(
                {
                    "id": book_id,
                    "total_copies": book.total_copies,
                    "available_copies": book.available_copies,
                },
                {"$inc": {"available_copies": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if doc:
                return _to_book(doc)
        raise WriteConflict(f"Could not update copies of book {book_id}")

    async def swap_fields(self, book: Book, changes: dict) -> Optional[Book]:
        """Apply changes only if the counters still match the observed book."""
        doc = await self.books.find_one_and_update(
            {
                "id": book.id,
                "total_copies": book.total_copies,
                "available_copies": book.available_copies,
            },
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return _to_book(doc) if doc else None

    async def delete(self, book: Book) -> bool:
        """Delete the book only while every copy is on the shelf."""
        result = await self.books.delete_one({
            "id": book.id,
            "total_copies": book.total_copies,
            "available_copies": book.total_copies,
        })
        return result.deleted_count > 0

    async def search(self, query: dict, skip: int, limit: int) -> Tuple[list, int]:
        books = []
        cursor = self.books.find(query).sort([("created_at", DESCENDING), ("id", DESCENDING)])
        async for doc in cursor.skip(skip).limit(limit):
            books.append(_to_book(doc))
        total = await self.books.count_documents(query)
        return books, total


class InventoryService:
    def __init__(self, store: InventoryStore, ledger: BorrowLedger):
        self.store = store
        self.ledger = ledger

    async def create_book(self, data: BookCreate) -> Book:
        if data.available_copies is not None and data.available_copies > data.total_copies:
            raise Conflict("available_copies cannot exceed total_copies")
        if await self.store.books.find_one({"isbn": data.isbn}):
            raise Conflict(f"A book with ISBN {data.isbn} already exists")
        book = Book(id=await self.store.next_id(), created_at=utcnow(), **data.model_dump())
        await self.store.insert(book)
        logger.info("Created book %s (%s) with %s copies", book.id, book.isbn, book.total_copies)
        return book

    async def get_book(self, book_id: int) -> Book:
        book = await self.store.get(book_id)
        if not book:
            raise NotFound("Book not found")
        return book

    async def update_book(self, book_id: int, data: BookUpdate) -> Book:
        """Update descriptive fields and copy counts.

        A new total_copies shifts available_copies by the same amount so the
        number of copies on loan is unchanged; shrinking below that number is
        refused.  An explicit available_copies is only range-checked.
        """
        changes = to_document(data, exclude_unset=True)
        for _ in range(self.store.max_retries):
            book = await self.get_book(book_id)
            fields = dict(changes)
            total = fields.pop("total_copies", None) or book.total_copies
            available = fields.pop("available_copies", None)
            on_loan = book.total_copies - book.available_copies
            if available is None:
                if total < on_loan:
                    raise Conflict(
                        f"Cannot reduce total copies to {total}. {on_loan} copies are currently borrowed"
                    )
                available = total - on_loan
            elif available > total:
                raise Conflict("available_copies cannot exceed total_copies")
            fields.update(total_copies=total, available_copies=available)

            updated = await self.store.swap_fields(book, fields)
            if updated:
                logger.info("Updated book %s: %s", book_id, sorted(fields))
                return updated
        raise WriteConflict(f"Could not update book {book_id}")

    async def delete_book(self, book_id: int) -> Book:
        book = await self.get_book(book_id)
        open_records = await self.ledger.count_open_for_book(book_id)
        if open_records:
            raise Conflict(f"Cannot delete book. {open_records} copies are currently borrowed")
        if not await self.store.delete(book):
            # A borrow took a copy after the check above, or the book is gone
            if await self.store.get(book_id) is None:
                raise NotFound("Book not found")
            raise Conflict("Cannot delete book. Copies are currently borrowed")
        logger.info("Deleted book %s (%s)", book_id, book.isbn)
        return book

    async def search(
        self,
        text: Optional[str] = None,
        genre: Optional[Genre] = None,
        page: int = 1,
        limit: int = 10,
    ) -> BookPage:
        query = {}
        if text:
            pattern = re.escape(text)
            query["$or"] = [
                {"title": {"$regex": pattern, "$options": "i"}},
                {"author": {"$regex": pattern, "$options": "i"}},
                {"isbn": {"$regex": pattern, "$options": "i"}},
            ]
        if genre:
            query["genre"] = Genre(genre).value

        page, limit, skip = page_window(page, limit)
        books, total = await self.store.search(query, skip, limit)
        return BookPage(
            data=[BookResponse.from_book(b) for b in books],
            **page_meta(total, page, limit, len(books)),
        )
