# catalog/results.py
from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass
class Ok:
    data: Any
    count: Optional[int] = None
    pagination: Optional[dict] = None


@dataclass
class NotFound:
    """The query ran but matched nothing. `key` is the identifier that was asked for."""

    key: Optional[str] = None
    empty: Any = field(default_factory=dict)


@dataclass
class Failure:
    reason: str


Result = Union[Ok, NotFound, Failure]
