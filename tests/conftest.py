# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

import copy
import re
from datetime import datetime, timedelta, timezone
from bson import ObjectId
import pytest
from typing import List, Dict, Any
from httpx import ASGITransport, AsyncClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from api.main import app
from api.rate_limit import limiter


_MISSING = object()


def get_path(doc, path):
    """
    Resolve a dotted path the way MongoDB does for queries.

    Walking into a list fans out over its elements, so "author.name" on a
    document whose author is a list of dicts yields a list of names.
    """
    cur = doc
    for part in path.split("."):
        if isinstance(cur, list):
            cur = [c.get(part, _MISSING) for c in cur if isinstance(c, dict)]
            cur = [c for c in cur if c is not _MISSING]
        elif isinstance(cur, dict):
            cur = cur.get(part, _MISSING)
        else:
            return _MISSING
        if cur is _MISSING:
            return _MISSING
    return cur


def _candidates(value):
    if value is _MISSING:
        return []
    if isinstance(value, list):
        return value
    return [value]


def match_condition(value, cond):
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                if not any(v in arg for v in _candidates(value)):
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not any(
                    isinstance(v, str) and re.search(arg, v, flags)
                    for v in _candidates(value)
                ):
                    return False
            elif op == "$options":
                continue
            elif op == "$gte":
                if value is _MISSING or value is None or value < arg:
                    return False
            elif op == "$lte":
                if value is _MISSING or value is None or value > arg:
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if isinstance(value, list) and not isinstance(cond, list):
        return cond in value
    if value is _MISSING:
        return cond is None
    return value == cond


def matches(doc, q):
    """
    Evaluate a subset of MongoDB query syntax against one document.

    Supports equality (including array membership), $in, $regex/$options,
    $gte, $lte, and the logical $and/$or operators.
    """
    for k, v in (q or {}).items():
        if k == "$or":
            if not any(matches(doc, sub) for sub in v):
                return False
        elif k == "$and":
            if not all(matches(doc, sub) for sub in v):
                return False
        elif not match_condition(get_path(doc, k), v):
            return False
    return True


def _sort_key(value):
    # missing and null sort first in ascending order, as in MongoDB
    return (value is not None, value)


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._skip = 0
        self._limit = None

    def sort(self, order):
        """
        Sort by a list of (field, direction) tuples.

        Applied from the last key to the first, relying on sort stability, so
        the first tuple is the primary key.
        """
        for field, direction in reversed(order):
            self._docs.sort(
                key=lambda d: _sort_key(d.get(field)), reverse=(direction < 0)
            )
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        start = self._skip
        end = None if not self._limit else start + self._limit
        return [copy.deepcopy(d) for d in self._docs[start:end]]


class FakeCollection:
    def __init__(self, docs=None, db=None, unique=()):
        self.docs = [copy.deepcopy(d) for d in (docs or [])]
        self.db = db
        self.unique = tuple(unique)
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = ObjectId()

    def _find_stored(self, q):
        for d in self.docs:
            if matches(d, q):
                return d
        return None

    async def find_one(self, q=None):
        d = self._find_stored(q)
        return copy.deepcopy(d) if d is not None else None

    def find(self, q=None):
        return FakeCursor([d for d in self.docs if matches(d, q)])

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if matches(d, q))

    async def insert_one(self, doc):
        """Insert a copy of doc, enforcing the collection's unique fields."""
        doc = copy.deepcopy(doc)
        for field in self.unique:
            if doc.get(field) is not None and any(
                d.get(field) == doc[field] for d in self.docs
            ):
                raise DuplicateKeyError(
                    f"E11000 duplicate key error dup key: {{ {field}: {doc[field]!r} }}"
                )
        if "_id" not in doc:
            doc["_id"] = ObjectId()
        self.docs.append(doc)

        class R:
            inserted_id = doc["_id"]

        return R()

    def _apply_update(self, stored, u, inserted=False):
        for k, v in u.get("$set", {}).items():
            stored[k] = v
        if inserted:
            for k, v in u.get("$setOnInsert", {}).items():
                stored[k] = v
        for k, v in u.get("$inc", {}).items():
            stored[k] = stored.get(k, 0) + v

    async def update_one(self, q, u, upsert=False):
        stored = self._find_stored(q)
        if stored is not None:
            self._apply_update(stored, u)
            return {"matched_count": 1}
        if upsert:
            new = {k: v for k, v in q.items() if not k.startswith("$")}
            new["_id"] = ObjectId()
            self._apply_update(new, u, inserted=True)
            self.docs.append(new)
            return {"matched_count": 0, "upserted_id": new["_id"]}
        return {"matched_count": 0}

    async def find_one_and_update(
        self, q, u, return_document=ReturnDocument.BEFORE
    ):
        stored = self._find_stored(q)
        if stored is None:
            return None
        before = copy.deepcopy(stored)
        self._apply_update(stored, u)
        if return_document == ReturnDocument.AFTER:
            return copy.deepcopy(stored)
        return before

    async def find_one_and_delete(self, q):
        stored = self._find_stored(q)
        if stored is None:
            return None
        self.docs.remove(stored)
        return copy.deepcopy(stored)

    async def delete_one(self, q):
        stored = self._find_stored(q)
        if stored is not None:
            self.docs.remove(stored)

    def aggregate(self, pipeline):
        """
        Run a pipeline over the in-memory documents.

        Supported stages: $lookup, $unwind (plain path), $group (_id only),
        $match, $skip and $limit.
        """
        docs = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            (name, arg), = stage.items()
            if name == "$lookup":
                foreign = getattr(self.db, arg["from"]).docs
                for d in docs:
                    locals_ = _candidates(get_path(d, arg["localField"]))
                    d[arg["as"]] = [
                        copy.deepcopy(f)
                        for f in foreign
                        if f.get(arg["foreignField"]) in locals_
                    ]
            elif name == "$unwind":
                path = arg.lstrip("$")
                out = []
                for d in docs:
                    for item in d.get(path) or []:
                        nd = dict(d)
                        nd[path] = item
                        out.append(nd)
                docs = out
            elif name == "$group":
                path = arg["_id"].lstrip("$")
                seen = []
                for d in docs:
                    v = get_path(d, path)
                    if v is not _MISSING and v not in seen:
                        seen.append(v)
                docs = [{"_id": v} for v in seen]
            elif name == "$match":
                docs = [d for d in docs if matches(d, arg)]
            elif name == "$skip":
                docs = docs[arg:]
            elif name == "$limit":
                docs = docs[:arg]
            else:
                raise NotImplementedError(name)
        return FakeCursor(docs)


class FakeDB:
    def __init__(
        self,
        books=None,
        authors=None,
        publishers=None,
        genres=None,
        orders=None,
        orphaned_assets=None,
    ):
        self.books = FakeCollection(books, self, unique=("bookId", "slug"))
        self.authors = FakeCollection(authors, self)
        self.publishers = FakeCollection(publishers, self)
        self.genres = FakeCollection(genres, self)
        self.orders = FakeCollection(orders, self)
        self.orphaned_assets = FakeCollection(orphaned_assets, self, unique=("publicId",))


class FakeMedia:
    """Stands in for MediaClient; records every destroy() call."""

    def __init__(self, fail=False, result="ok"):
        self.calls = []
        self.fail = fail
        self.result = result

    async def destroy(self, public_id):
        self.calls.append(public_id)
        if self.fail:
            raise RuntimeError("media service unavailable")
        return {"result": self.result}


AUTHOR_IDS = {
    "herbert": ObjectId("64b000000000000000000001"),
    "asimov": ObjectId("64b000000000000000000002"),
    "leguin": ObjectId("64b000000000000000000003"),
    "tolkien": ObjectId("64b000000000000000000004"),
    "sanderson": ObjectId("64b000000000000000000005"),
}
PUBLISHER_ID = ObjectId("64c000000000000000000001")
BOOK_IDS = [ObjectId(f"64a00000000000000000000{i}") for i in range(1, 8)]


@pytest.fixture
def book_ids():
    return BOOK_IDS


@pytest.fixture
def sample_books():
    """
    Seven books: five science fiction (one also fantasy) and two fantasy.

    Prices are all distinct and createdAt increases with the index, so both
    sort options have a single correct order. Dune and The Hobbit carry a
    media publicId; Foundation has an empty one and Mistborn none at all.
    """
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    rows = [
        ("B001", "Dune", ["scifi"], "herbert", 12.0, "covers/dune"),
        ("B002", "Foundation", ["scifi"], "asimov", 9.0, ""),
        ("B003", "Hyperion", ["scifi"], "asimov", 15.0, None),
        ("B004", "Neuromancer", ["scifi"], "asimov", 11.0, None),
        ("B005", "The Left Hand of Darkness", ["scifi", "fantasy"], "leguin", 14.0, None),
        ("B006", "The Hobbit", ["fantasy"], "tolkien", 10.0, "covers/hobbit"),
        ("B007", "Mistborn", ["fantasy"], "sanderson", 13.0, _MISSING),
    ]
    books = []
    for i, (book_id, name, genre, author, price, public_id) in enumerate(rows):
        doc = {
            "_id": BOOK_IDS[i],
            "bookId": book_id,
            "name": name,
            "slug": name.lower().replace(" ", "-"),
            "genre": genre,
            "author": AUTHOR_IDS[author],
            "publisher": PUBLISHER_ID,
            "price": price,
            "imageUrl": f"https://img.example/{book_id}.jpg",
            "createdAt": base + timedelta(days=i),
        }
        if public_id is not _MISSING:
            doc["publicId"] = public_id
        books.append(doc)
    return books


@pytest.fixture
def fake_db(sample_books):
    """In-memory database with books, their relations and two orders."""
    return FakeDB(
        books=sample_books,
        authors=[
            {"_id": AUTHOR_IDS["herbert"], "name": "Frank Herbert"},
            {"_id": AUTHOR_IDS["asimov"], "name": "Isaac Asimov"},
            {"_id": AUTHOR_IDS["leguin"], "name": "Ursula K. Le Guin"},
            {"_id": AUTHOR_IDS["tolkien"], "name": "J. R. R. Tolkien"},
            {"_id": AUTHOR_IDS["sanderson"], "name": "Brandon Sanderson"},
        ],
        publishers=[{"_id": PUBLISHER_ID, "name": "Gollancz"}],
        genres=[
            {"_id": "scifi", "name": "Science Fiction"},
            {"_id": "fantasy", "name": "Fantasy"},
        ],
        orders=[
            {
                "_id": ObjectId(),
                "products": [
                    {"product": BOOK_IDS[0], "quantity": 1},
                    {"product": BOOK_IDS[5], "quantity": 2},
                ],
            },
            {"_id": ObjectId(), "products": [{"product": BOOK_IDS[0], "quantity": 3}]},
        ],
    )


@pytest.fixture
def fake_media():
    return FakeMedia()


@pytest.fixture
async def client(monkeypatch, fake_db, fake_media):
    """
    Async test client wired to the fake database and media client.

    get_db and get_media_client are patched in api.main so every request
    builds its CatalogService on the fakes. Rate-limit counters are reset so
    tests do not leak hits into each other.
    """
    monkeypatch.setattr("api.main.get_db", lambda: fake_db)
    monkeypatch.setattr("api.main.get_media_client", lambda: fake_media)
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_db():
    """Factory for an empty (or custom-seeded) FakeDB."""
    return FakeDB


@pytest.fixture
def make_media():
    """Factory for FakeMedia instances with custom failure behavior."""
    return FakeMedia
