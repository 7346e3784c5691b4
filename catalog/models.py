# catalog/models.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


def _as_list(value):
    """A single genre id is accepted and stored as a one-element list."""
    if isinstance(value, str):
        return [value]
    return value


class BookCreate(BaseModel):
    bookId: str = Field(..., min_length=1, description="Human-facing book code")
    name: str = Field(..., min_length=1)
    year: Optional[int] = None
    genre: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    pages: Optional[int] = None
    size: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)
    imageUrl: Optional[str] = None
    publicId: Optional[str] = None  # media asset handle

    @field_validator("genre", mode="before")
    @classmethod
    def wrap_single_genre(cls, v):
        return _as_list(v)


class BookUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    year: Optional[int] = None
    genre: Optional[List[str]] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    pages: Optional[int] = None
    size: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)
    imageUrl: Optional[str] = None
    publicId: Optional[str] = None

    @field_validator("genre", mode="before")
    @classmethod
    def wrap_single_genre(cls, v):
        return _as_list(v)

    def replaces_image(self):
        return bool(self.imageUrl and self.publicId)


class Pagination(BaseModel):
    page: int
    limit: int
    totalPage: int
