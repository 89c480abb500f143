import asyncio
from datetime import datetime, timedelta

import mongomock
import pytest
from bson import ObjectId

from database import ensure_indexes
from models import BookCreate, Genre, OPEN_STATUSES, Principal, Role
from services.inventory import InventoryService, InventoryStore
from services.ledger import BorrowLedger
from services.lending import LendingService

T0 = datetime(2026, 3, 1, 9, 0, 0)


class AsyncCursor:
    """Awaitable view of a mongomock cursor, shaped like a Motor cursor."""

    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    def skip(self, count):
        self._cursor = self._cursor.skip(count)
        return self

    def limit(self, count):
        self._cursor = self._cursor.limit(count)
        return self

    async def _iterate(self):
        for doc in self._cursor:
            await asyncio.sleep(0)
            yield doc

    def __aiter__(self):
        return self._iterate()

    async def to_list(self, length=None):
        return list(self._cursor)


class AsyncCollection:
    """Runs each mongomock call as a coroutine that yields to the loop first,
    so concurrent tasks interleave between database operations."""

    def __init__(self, collection):
        self._collection = collection

    def find(self, *args, **kwargs):
        return AsyncCursor(self._collection.find(*args, **kwargs))

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return attr(*args, **kwargs)

        return call


class AsyncDatabase:
    def __init__(self, database):
        self._database = database
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = AsyncCollection(self._database[name])
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.raise_for = set()

    async def notify_overdue(self, email, notice):
        if email in self.raise_for:
            raise ConnectionError("SMTP server unreachable")
        if email in self.fail_for:
            return False
        self.sent.append((email, notice))
        return True


@pytest.fixture
async def db():
    database = AsyncDatabase(mongomock.MongoClient().library_test)
    await ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def inventory(db):
    return InventoryStore(db)


@pytest.fixture
def ledger(db):
    return BorrowLedger(db)


@pytest.fixture
def catalog(inventory, ledger):
    return InventoryService(inventory, ledger)


@pytest.fixture
def lending(inventory, ledger, notifier, clock):
    return LendingService(inventory, ledger, notifier, clock=clock)


@pytest.fixture
def make_book(catalog):
    counter = {"n": 0}

    async def _make(total_copies=2, title=None, author="Frank Herbert", genre=Genre.FICTION, **extra):
        counter["n"] += 1
        data = BookCreate(
            title=title or f"Dune {counter['n']}",
            author=author,
            isbn=extra.pop("isbn", f"97804411727{counter['n']:02d}"),
            publication_year=extra.pop("publication_year", 1965),
            genre=genre,
            total_copies=total_copies,
            **extra,
        )
        return await catalog.create_book(data)

    return _make


@pytest.fixture
def make_user(db):
    async def _make(username, role=Role.MEMBER, is_active=True):
        doc = {
            "_id": ObjectId(),
            "username": username,
            "email": f"{username}@example.com",
            "password": "not-a-real-hash",
            "role": role.value,
            "is_active": is_active,
            "created_at": T0,
        }
        await db.users.insert_one(doc)
        return Principal(
            id=str(doc["_id"]),
            role=role,
            is_active=is_active,
            username=username,
            email=doc["email"],
        )

    return _make


@pytest.fixture
def assert_counters(db):
    """Check available_copies against a full scan of open records."""

    async def _check(book_id):
        book = await db.books.find_one({"id": book_id})
        open_records = await db.borrow_records.count_documents(
            {"book_id": book_id, "status": {"$in": [s.value for s in OPEN_STATUSES]}}
        )
        assert 0 <= book["available_copies"] <= book["total_copies"]
        assert book["available_copies"] == book["total_copies"] - open_records
        return book["available_copies"]

    return _check
