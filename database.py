import logging
from enum import Enum

from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

import config

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(config.MONGO_URL)
db = client[config.MONGO_DB_NAME]


def get_db():
    """FastAPI dependency returning the active database handle."""
    return db


def obj_to_str(obj):
    return str(obj) if isinstance(obj, ObjectId) else obj


def to_document(model, **dump_kwargs):
    """Dump a pydantic model into a BSON-friendly dict (enums by value)."""
    doc = model.model_dump(**dump_kwargs)
    return {k: v.value if isinstance(v, Enum) else v for k, v in doc.items()}


def to_object_id(value):
    """Parse a string id, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


async def ensure_indexes(database=None):
    database = database if database is not None else db

    await database.books.create_index("id", unique=True)
    await database.books.create_index("isbn", unique=True)
    await database.books.create_index([("created_at", DESCENDING)])

    # One open record per (user, book); open_key is unset on return
    await database.borrow_records.create_index(
        "open_key",
        unique=True,
        partialFilterExpression={"open_key": {"$exists": True}},
    )
    await database.borrow_records.create_index([("user_id", ASCENDING), ("borrow_date", DESCENDING)])
    await database.borrow_records.create_index([("status", ASCENDING), ("due_date", ASCENDING)])
    await database.borrow_records.create_index("book_id")

    await database.users.create_index("email", unique=True)
    logger.info("MongoDB indexes ensured")
