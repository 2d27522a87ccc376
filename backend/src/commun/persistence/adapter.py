"""EntityDao Protocol: the data-access interface the request pipeline uses.

Filters are documents in a small query language:

- ``{"field": value}`` equality (``None`` matches missing values)
- ``{"field": {"$ne" | "$lt" | "$lte" | "$gt" | "$gte": value}}``
- ``{"field": {"$in" | "$nin": [values]}}``, ``{"field": {"$exists": bool}}``
- ``{"$and": [filters]}``, ``{"$or": [filters]}``
- ``{"$text": {"$search": "words", "$fields": [fields]}}`` text search over
  the given fields (the text-indexed fields when ``$fields`` is omitted)

Dotted field names address nested values.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from commun.metadata.types import IndexDefinition

# (field, direction) with direction 1 for ascending and -1 for descending
SortSpec = list[tuple[str, int]]


@dataclass
class FindOptions:
    """Options for a paginated query.

    Attributes:
        sort: Ordered sort keys; callers append ("id", dir) as tiebreaker
        limit: Maximum number of items to return
        skip: Number of matching items to skip
        after: Sort-key values; only items strictly after them match
        before: Sort-key values; only items strictly before them match
        count: Also count all items matching the filter
    """

    sort: SortSpec = field(default_factory=list)
    limit: int | None = None
    skip: int = 0
    after: dict[str, Any] | None = None
    before: dict[str, Any] | None = None
    count: bool = False


@dataclass
class QueryResult:
    """Items of one page plus the optional total count."""

    items: list[dict[str, Any]]
    count: int | None = None


@runtime_checkable
class EntityDao(Protocol):
    """Interface every entity data store must implement.

    Records are plain dicts carrying their identity under ``id``. Stores
    generate the identity and the ``createdAt``/``updatedAt`` timestamps.
    """

    async def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None: ...

    async def find_one_by_id(self, id: str) -> dict[str, Any] | None: ...

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def find_and_return_cursor(
        self,
        filter: dict[str, Any],
        options: FindOptions,
    ) -> QueryResult: ...

    async def count(self, filter: dict[str, Any] | None = None) -> int: ...

    async def insert_one(self, data: dict[str, Any]) -> dict[str, Any]: ...

    async def update_one(
        self, id: str, data: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def delete_one(self, id: str) -> bool: ...

    async def create_indexes(self, indexes: list[IndexDefinition]) -> None: ...
