# catalog/db.py
import os
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "bookstore")

_client = None
_db = None


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


def close_client():
    """Close the client and forget the cached database handle."""
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes(db=None):
    """
    Create the indexes the catalog relies on.

    bookId and slug are the two business keys used for single-book lookups,
    so both are unique. createdAt and price back the list sort options.
    """
    db = db if db is not None else get_db()
    await db.books.create_index([("bookId", ASCENDING)], unique=True)
    await db.books.create_index([("slug", ASCENDING)], unique=True)
    await db.books.create_index([("createdAt", ASCENDING)])
    await db.books.create_index([("price", ASCENDING)])
    await db.books.create_index([("genre", ASCENDING)])
    await db.orders.create_index([("products.product", ASCENDING)])
    await db.orphaned_assets.create_index([("publicId", ASCENDING)], unique=True)
