# src/async_docstore/core/registry.py

import logging
import threading
from typing import Dict, Tuple, Type

from async_docstore.base.exceptions import InvalidArgument
from async_docstore.core.collection import Collection

log = logging.getLogger(__name__)

CollectionFactory = Type[Collection]


class CollectionRegistry:
    """
    Maps (database name, collection name) to the Collection class that
    should serve it. Unmapped names fall back to the default class.
    """

    def __init__(self, default: CollectionFactory = Collection):
        self._default = default
        self._mapping: Dict[Tuple[str, str], CollectionFactory] = {}
        self._lock = threading.Lock()

    def map(self, database: str, collection: str, factory: CollectionFactory) -> None:
        if not (isinstance(factory, type) and issubclass(factory, Collection)):
            raise InvalidArgument(
                f"Collection factory for '{collection}' must be a Collection class"
            )
        with self._lock:
            self._mapping[(database, collection)] = factory
        log.debug(f"Mapped {database}.{collection} to {factory.__name__}")

    def resolve(self, database: str, collection: str) -> CollectionFactory:
        with self._lock:
            factory = self._mapping.get((database, collection))
        return factory if factory is not None else self._default

    def __contains__(self, key: Tuple[str, str]) -> bool:
        with self._lock:
            return key in self._mapping
