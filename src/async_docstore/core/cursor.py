# src/async_docstore/core/cursor.py

import logging
from contextlib import aclosing
from typing import (TYPE_CHECKING, Any, AsyncIterator, Dict, Iterable, List,
                    Mapping, Optional, Tuple, Union)

from pymongo import ASCENDING, DESCENDING

from async_docstore.base.exceptions import InvalidArgument
from async_docstore.base.expression import Expression
from async_docstore.base.utils import to_json

if TYPE_CHECKING:
    from async_docstore.core.collection import Collection
    from async_docstore.core.document import Document

log = logging.getLogger(__name__)

SortSpec = Union[Mapping[str, int], Iterable[Tuple[str, int]]]


class Cursor(Expression):
    """
    A filter plus read options, bound to a collection.

    Nothing is read until the cursor is iterated. Each `async for` pass
    issues a fresh read, so a cursor can be iterated again and sees writes
    made in between.
    """

    def __init__(self, collection: "Collection", criteria: Optional[Mapping[str, Any]] = None):
        super().__init__(criteria)
        self._collection = collection
        self._sort: List[Tuple[str, int]] = []
        self._skip = 0
        self._limit = 0
        self._projection: Optional[Dict[str, Any]] = None

    # --- read options ---
    def sort(self, spec: SortSpec) -> "Cursor":
        items = spec.items() if isinstance(spec, Mapping) else spec
        self._sort = []
        for path, direction in items:
            self._check_direction(path, direction)
            self._sort.append((path, direction))
        return self

    def sort_by(self, path: str, descending: bool = False) -> "Cursor":
        self._sort = [(p, d) for p, d in self._sort if p != path]
        self._sort.append((path, DESCENDING if descending else ASCENDING))
        return self

    def skip(self, count: int) -> "Cursor":
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidArgument("skip must be a non-negative integer")
        self._skip = count
        return self

    def limit(self, count: int) -> "Cursor":
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidArgument("limit must be a non-negative integer")
        self._limit = count
        return self

    def include_fields(self, paths: Iterable[str]) -> "Cursor":
        """Return only the given fields (plus _id)."""
        self._projection = {path: 1 for path in paths}
        return self

    def skip_fields(self, paths: Iterable[str]) -> "Cursor":
        """Return everything except the given fields."""
        self._projection = {path: 0 for path in paths}
        return self

    def projection(self, spec: Optional[Mapping[str, Any]]) -> "Cursor":
        self._projection = dict(spec) if spec else None
        return self

    @staticmethod
    def _check_direction(path: str, direction: Any) -> None:
        if direction not in (ASCENDING, DESCENDING):
            raise InvalidArgument(
                f"Sort direction for '{path}' must be {ASCENDING} or {DESCENDING}"
            )

    # --- execution ---
    async def _raw(self, limit: Optional[int] = None) -> AsyncIterator[Dict[str, Any]]:
        criteria = self.to_dict()
        log.debug(f"{self._collection.name}: Filter: {to_json(criteria)}")
        records = self._collection.driver.find(
            criteria,
            sort=list(self._sort) or None,
            skip=self._skip,
            limit=self._limit if limit is None else limit,
            projection=self._projection,
        )
        async for record in records:
            yield record

    async def __aiter__(self) -> AsyncIterator["Document"]:
        async for record in self._raw():
            yield self._collection.hydrate(record, intern=self._projection is None)

    async def to_list(self) -> List["Document"]:
        return [document async for document in self]

    async def find_one(self) -> Optional["Document"]:
        """First matching document, leaving this cursor's own limit untouched."""
        async with aclosing(self._raw(limit=1)) as records:
            async for record in records:
                return self._collection.hydrate(record, intern=self._projection is None)
        return None

    async def count(self, apply_skip_limit: bool = False) -> int:
        if apply_skip_limit:
            return await self._collection.driver.count(
                self.to_dict(), skip=self._skip, limit=self._limit
            )
        return await self._collection.driver.count(self.to_dict())

    def __repr__(self) -> str:
        return (
            f"Cursor(collection={self._collection.name!r}, filter={self._filter!r}, "
            f"sort={self._sort!r}, skip={self._skip}, limit={self._limit})"
        )
