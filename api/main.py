# api/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI, Query, Request, Body
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional
import os
from dotenv import load_dotenv
from .rate_limit import register_rate_limit, limiter, RATE_LIMIT
from .responses import envelope
from catalog.db import get_db, ensure_indexes, close_client
from catalog.media import MediaClient
from catalog.service import CatalogService
import logging

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)

_media = None


def get_media_client():
    """Return the process-wide MediaClient, creating it on first use."""
    global _media
    if _media is None:
        _media = MediaClient()
    return _media


def get_service():
    return CatalogService(get_db(), get_media_client())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Ensure indexes on startup; release the Mongo client on shutdown.
    """
    await ensure_indexes(get_db())
    logger.info("Indexes ensured")
    yield
    close_client()


app = FastAPI(title="Bookstore Catalog API", version="1.0", lifespan=lifespan)

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def healthcheck():
    """Basic health check."""
    return {"status": "ok"}


@app.get("/books")
@limiter.limit(RATE_LIMIT)
async def list_books(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(2, ge=1),
    genre: Optional[List[str]] = Query(None),
    key: Optional[str] = Query(None),
    sort_by_price: Optional[str] = Query(None, alias="sortByPrice"),
    sort_by_date: Optional[str] = Query(None, alias="sortByDate"),
):
    """
    List books with optional filtering, sorting, and pagination.

    Args:
        request (Request): FastAPI request object (required for rate limiting)
        page (int): Page number, must be >= 1. Defaults to 1
        limit (int): Page size, must be >= 1. Defaults to 2
        genre (list[str], optional): Repeatable; books having any of these genres
        key (str, optional): Case-insensitive substring of the book name
        sortByPrice (str, optional): "asc" or "desc"
        sortByDate (str, optional): "asc" or "desc" on creation time

    Returns:
        JSONResponse: Envelope with data, count and
        pagination {page, limit, totalPage}
    """
    result = await get_service().list_books(
        page=page,
        limit=limit,
        genre=genre,
        key=key,
        sort_by_price=sort_by_price,
        sort_by_date=sort_by_date,
    )
    return envelope(result)


@app.get("/books/search")
@limiter.limit(RATE_LIMIT)
async def search_books(
    request: Request,
    key: str = Query(""),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0),
):
    """
    Typeahead search over book names and author names.

    At most five books are returned whatever the requested limit; limit only
    affects the skip, (page - 1) * limit.
    """
    result = await get_service().search(key=key, page=page, limit=limit)
    return envelope(result)


@app.get("/books/bookId/{book_id}")
@limiter.limit(RATE_LIMIT)
async def get_book_by_book_id(request: Request, book_id: str):
    """Fetch a book by its human-facing bookId."""
    return envelope(await get_service().get_by_book_id(book_id))


@app.get("/books/slug/{slug}")
@limiter.limit(RATE_LIMIT)
async def get_book_by_slug(request: Request, slug: str):
    """Fetch a book by its slug."""
    return envelope(await get_service().get_by_slug(slug))


@app.get("/books/ordered/{book_id}")
@limiter.limit(RATE_LIMIT)
async def check_is_ordered(request: Request, book_id: str):
    """
    Check whether any order contains the book.

    Returns:
        JSONResponse: data is [{"_id": book_id}] when ordered, [] otherwise
    """
    return envelope(await get_service().check_is_ordered(book_id))


@app.get("/books/{id}")
@limiter.limit(RATE_LIMIT)
async def get_book(request: Request, id: str):
    """
    Fetch a book by its internal id.

    A missing book is reported with error=1 and an empty object, status 200.
    """
    return envelope(await get_service().get_by_id(id))


@app.post("/books")
@limiter.limit(RATE_LIMIT)
async def create_book(request: Request, payload: dict = Body(...)):
    """Create a book. Validation and duplicate-key errors answer 400."""
    return envelope(await get_service().create(payload), mutation=True)


@app.put("/books/{id}")
@app.patch("/books/{id}")
@limiter.limit(RATE_LIMIT)
async def update_book(request: Request, id: str, payload: dict = Body(...)):
    """
    Update a book.

    Supplying both imageUrl and publicId replaces the image and discards the
    previous asset; otherwise image fields are ignored.
    """
    return envelope(await get_service().update_by_id(id, payload), mutation=True)


@app.delete("/books/{id}")
@limiter.limit(RATE_LIMIT)
async def delete_book(request: Request, id: str):
    """Delete a book and discard its image asset if it has one."""
    return envelope(await get_service().delete_by_id(id), mutation=True)


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
