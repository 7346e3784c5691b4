# catalog/service.py
import math
from datetime import datetime, timezone
import logging
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .media import MediaCleanup
from .models import BookCreate, BookUpdate, Pagination
from .queries import (
    book_filter,
    sort_spec,
    search_pipeline,
    ordered_pipeline,
    populate,
    populate_one,
)
from .results import Ok, NotFound, Failure
from .utils import to_object_id, coerce_id, slugify

logger = logging.getLogger("catalog")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

# store/driver, bad ids and body validation are reported as Failure results
HANDLED_ERRORS = (PyMongoError, InvalidId, ValidationError, ValueError)

IMAGE_FIELDS = ("imageUrl", "publicId")


def _now():
    return datetime.now(timezone.utc)


def _reference_ids(fields):
    """Store author/publisher/genre ids as ObjectIds where they parse as one."""
    for key in ("author", "publisher"):
        if fields.get(key) is not None:
            fields[key] = coerce_id(fields[key])
    if fields.get("genre") is not None:
        fields["genre"] = [coerce_id(g) for g in fields["genre"]]
    return fields


class CatalogService:
    def __init__(self, db, media):
        self.db = db
        self.cleanup = MediaCleanup(media, db)

    async def list_books(
        self,
        page=1,
        limit=2,
        genre=None,
        key=None,
        sort_by_price=None,
        sort_by_date=None,
    ):
        """
        Fetch one page of books with relations expanded.

        Args:
            page (int): 1-based page number
            limit (int): Page size, must be >= 1
            genre (list[str], optional): Match books having any of these genres
            key (str, optional): Case-insensitive substring of the book name
            sort_by_price (str, optional): "asc" or "desc"
            sort_by_date (str, optional): "asc" or "desc", sorts on createdAt

        Returns:
            Ok: data is the page, count the total number of matches and
            pagination {page, limit, totalPage}
            Failure: On store errors
        """
        try:
            q = book_filter(genre=genre, key=key).to_mongo()
            cursor = self.db.books.find(q)
            sort = sort_spec(sort_by_price, sort_by_date)
            if sort:
                cursor = cursor.sort(sort)
            skip = (page - 1) * limit
            docs = await cursor.skip(skip).limit(limit).to_list(length=limit)
            await populate(self.db, docs)
            count = await self.db.books.count_documents(q)
        except HANDLED_ERRORS as e:
            logger.exception(f"List books failed: {e}")
            return Failure(str(e))

        pagination = Pagination(
            page=page, limit=limit, totalPage=math.ceil(count / limit)
        )
        return Ok(docs, count=count, pagination=pagination.model_dump())

    async def _get_one(self, q, label):
        try:
            doc = await self.db.books.find_one(q)
            await populate_one(self.db, doc)
        except HANDLED_ERRORS as e:
            logger.exception(f"Lookup by {label} failed: {e}")
            return Failure(str(e))
        if doc is None:
            return NotFound()
        return Ok(doc)

    async def get_by_book_id(self, book_id):
        return await self._get_one({"bookId": book_id}, "bookId")

    async def get_by_id(self, id):
        try:
            oid = to_object_id(id)
        except InvalidId as e:
            return Failure(str(e))
        return await self._get_one({"_id": oid}, "id")

    async def get_by_slug(self, slug):
        return await self._get_one({"slug": slug}, "slug")

    async def check_is_ordered(self, book_id):
        """Always Ok: the aggregation yields a (possibly empty) list."""
        try:
            pipeline = ordered_pipeline(to_object_id(book_id))
            data = await self.db.orders.aggregate(pipeline).to_list(length=None)
        except HANDLED_ERRORS as e:
            logger.exception(f"Order check for {book_id} failed: {e}")
            return Failure(str(e))
        return Ok(data)

    async def search(self, key="", page=1, limit=0):
        try:
            pipeline = search_pipeline(key, page=page, limit=limit)
            data = await self.db.books.aggregate(pipeline).to_list(length=None)
        except HANDLED_ERRORS as e:
            logger.exception(f"Search for {key!r} failed: {e}")
            return Failure(str(e))
        return Ok(data)

    async def _unique_slug(self, name):
        base = slugify(name) or "book"
        slug, n = base, 1
        while await self.db.books.find_one({"slug": slug}) is not None:
            n += 1
            slug = f"{base}-{n}"
        return slug

    async def create(self, payload):
        """
        Validate and insert a new book.

        Args:
            payload (dict): Raw request body

        Returns:
            Ok: The stored document, including _id, slug and timestamps
            Failure: On validation errors or store constraint violations
            (duplicate bookId/slug)
        """
        try:
            book = BookCreate.model_validate(payload)
            doc = _reference_ids(book.model_dump())
            doc["slug"] = await self._unique_slug(book.name)
            doc["createdAt"] = doc["updatedAt"] = _now()
            res = await self.db.books.insert_one(doc)
            doc["_id"] = res.inserted_id
        except HANDLED_ERRORS as e:
            logger.exception(f"Create book failed: {e}")
            return Failure(str(e))
        logger.info(f"Created book {doc['bookId']} ({doc['_id']})")
        return Ok(doc)

    async def update_by_id(self, id, payload):
        """
        Apply the supplied fields to a book.

        When both imageUrl and publicId are supplied the image is replaced:
        the previous publicId is read before the write and its asset is
        discarded after the write commits. Otherwise the image fields are left
        untouched.

        Returns:
            Ok: The document after the update
            NotFound: No book with this id (key set to the id)
            Failure: On bad id, validation or store errors
        """
        try:
            oid = to_object_id(id)
            changes = BookUpdate.model_validate(payload)
            replace_image = changes.replaces_image()
            fields = changes.model_dump(
                exclude_unset=True, exclude=None if replace_image else set(IMAGE_FIELDS)
            )
            _reference_ids(fields)
            fields["updatedAt"] = _now()

            previous_public_id = None
            if replace_image:
                current = await self.db.books.find_one({"_id": oid})
                if current is None:
                    return NotFound(key=id)
                previous_public_id = current.get("publicId")

            result = await self.db.books.find_one_and_update(
                {"_id": oid}, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        except HANDLED_ERRORS as e:
            logger.exception(f"Update book {id} failed: {e}")
            return Failure(str(e))

        if result is None:
            return NotFound(key=id)
        if previous_public_id and previous_public_id != changes.publicId:
            await self.cleanup.discard(previous_public_id)
        logger.info(f"Updated book {id}")
        return Ok(result)

    async def delete_by_id(self, id):
        """
        Delete a book and discard its image, if it had one.

        The media delete happens after the store delete and only when the
        deleted document carried a non-empty publicId.
        """
        try:
            oid = to_object_id(id)
            result = await self.db.books.find_one_and_delete({"_id": oid})
        except HANDLED_ERRORS as e:
            logger.exception(f"Delete book {id} failed: {e}")
            return Failure(str(e))

        if result is None:
            return NotFound(key=id)
        await self.cleanup.discard(result.get("publicId"))
        logger.info(f"Deleted book {id}")
        return Ok(result)
