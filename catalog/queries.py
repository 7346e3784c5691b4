# catalog/queries.py
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from .utils import coerce_id

SEARCH_CAP = 5


class Op(str, Enum):
    EQ = "eq"
    IN = "in"
    CONTAINS = "contains"


@dataclass(frozen=True)
class Condition:
    field: str
    op: Op
    value: Any

    def to_mongo(self):
        if self.op is Op.EQ:
            return {self.field: self.value}
        if self.op is Op.IN:
            return {self.field: {"$in": list(self.value)}}
        if self.op is Op.CONTAINS:
            # user text is matched literally, never as a pattern
            return {self.field: {"$regex": re.escape(self.value), "$options": "i"}}
        raise ValueError(f"Unsupported operator: {self.op}")


@dataclass
class Filter:
    """A conjunction (or, with any_of, a disjunction) of conditions."""

    conditions: List[Condition] = field(default_factory=list)
    any_of: bool = False

    def add(self, condition):
        self.conditions.append(condition)
        return self

    def to_mongo(self):
        if not self.conditions:
            return {}
        parts = [c.to_mongo() for c in self.conditions]
        if self.any_of:
            return {"$or": parts}
        if len(parts) == 1:
            return parts[0]
        return {"$and": parts}


@dataclass(frozen=True)
class Relation:
    field: str
    collection: str
    many: bool = False


BOOK_RELATIONS = (
    Relation("author", "authors"),
    Relation("publisher", "publishers"),
    Relation("genre", "genres", many=True),
)


def book_filter(genre=None, key=None):
    """
    Build the List filter.

    Args:
        genre (list[str], optional): Genre ids, a book matches if it has any of them
        key (str, optional): Case-insensitive substring to look for in the book name

    Returns:
        Filter: AND of the supplied conditions (empty when nothing is supplied)
    """
    f = Filter()
    if genre:
        f.add(Condition("genre", Op.IN, [coerce_id(g) for g in genre]))
    if key:
        f.add(Condition("name", Op.CONTAINS, key))
    return f


def _direction(value):
    return 1 if value == "asc" else -1


def sort_spec(sort_by_price=None, sort_by_date=None) -> List[Tuple[str, int]]:
    """Price first, then creation date. Anything other than "asc" sorts descending."""
    spec = []
    if sort_by_price:
        spec.append(("price", _direction(sort_by_price)))
    if sort_by_date:
        spec.append(("createdAt", _direction(sort_by_date)))
    return spec


def search_pipeline(key, page=1, limit=0):
    """
    Typeahead pipeline: join authors, match book or author name, cap at five.

    The skip is (page - 1) * limit, so with the default limit of 0 it is always
    zero. The cap is applied regardless of the requested limit.
    """
    match = Filter(
        [
            Condition("name", Op.CONTAINS, key or ""),
            Condition("author.name", Op.CONTAINS, key or ""),
        ],
        any_of=True,
    )
    return [
        {
            "$lookup": {
                "from": "authors",
                "localField": "author",
                "foreignField": "_id",
                "as": "author",
            }
        },
        {"$match": match.to_mongo()},
        {"$skip": max(page - 1, 0) * limit},
        {"$limit": SEARCH_CAP},
    ]


def ordered_pipeline(book_oid):
    """Distinct products across all orders, narrowed to one book id."""
    return [
        {"$unwind": "$products"},
        {"$group": {"_id": "$products.product"}},
        {"$match": {"_id": book_oid}},
    ]


async def populate(db, docs, relations=BOOK_RELATIONS):
    """
    Replace reference ids with the referenced documents, in place.

    One `$in` query is issued per relation for the whole batch. A single
    reference that no longer resolves becomes None; unresolved entries of a
    many-reference are dropped.

    Args:
        db: Database handle exposing the related collections as attributes
        docs (list[dict]): Book documents to expand
        relations (Iterable[Relation]): Which fields to expand

    Returns:
        list[dict]: The same list, expanded
    """
    for rel in relations:
        ids = []
        for d in docs:
            ref = d.get(rel.field)
            if ref is None:
                continue
            ids.extend(ref if isinstance(ref, list) else [ref])
        if not ids:
            continue
        found = await getattr(db, rel.collection).find({"_id": {"$in": ids}}).to_list(
            length=None
        )
        by_id = {f["_id"]: f for f in found}
        for d in docs:
            ref = d.get(rel.field)
            if ref is None:
                continue
            if isinstance(ref, list):
                d[rel.field] = [by_id[r] for r in ref if r in by_id]
            else:
                d[rel.field] = by_id.get(ref)
    return docs


async def populate_one(db, doc: Optional[dict], relations=BOOK_RELATIONS):
    if doc is None:
        return None
    await populate(db, [doc], relations)
    return doc
