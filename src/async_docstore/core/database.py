# src/async_docstore/core/database.py

import logging
import threading
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from bson import DBRef
from motor.motor_asyncio import AsyncIOMotorClient

from async_docstore.base.config import Settings
from async_docstore.base.exceptions import (CommandError, ConfigurationError,
                                            InvalidArgument)
from async_docstore.base.interfaces import (READ_PREFERENCE_MODES, READ_PRIMARY,
                                            DatabaseDriver, TagSets)
from async_docstore.core.collection import Collection
from async_docstore.core.document import Document
from async_docstore.core.persistence import Persistence
from async_docstore.core.read_preference import ReadPreferenceMixin
from async_docstore.core.registry import CollectionFactory, CollectionRegistry
from async_docstore.db_implementations.motor_driver import MotorDatabaseDriver

log = logging.getLogger(__name__)


def parse_version(version: str) -> Tuple[int, ...]:
    """'4.4.1-rc0' -> (4, 4, 1)"""
    parts = []
    for part in version.split("."):
        digits = ""
        for char in part:
            if not char.isdigit():
                break
            digits += char
        if not digits:
            break
        parts.append(int(digits))
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


class Database(ReadPreferenceMixin):
    """
    Entry point: hands out Collection instances and runs commands.

    Collections are cached per name, so their document pools live as long
    as the Database.
    """

    def __init__(
        self,
        driver: DatabaseDriver,
        registry: Optional[CollectionRegistry] = None,
        document_pool_enabled: bool = True,
        write_concern: Optional[Tuple[Union[int, str], int]] = None,
    ):
        self._driver = driver
        self._write_concern = write_concern
        self._registry = registry or CollectionRegistry()
        self._document_pool_enabled = document_pool_enabled
        self._read_preference: Optional[Tuple[str, TagSets]] = None
        self._collections: Dict[str, Collection] = {}
        self._lock = threading.Lock()
        self._server_version: Optional[Tuple[int, ...]] = None
        self._client: Optional[AsyncIOMotorClient] = None

    @classmethod
    def from_settings(cls, settings: Settings, registry: Optional[CollectionRegistry] = None) -> "Database":
        """Build a motor-backed Database from settings."""
        client = AsyncIOMotorClient(settings.uri, **settings.client_options())
        database = cls(
            MotorDatabaseDriver(client, settings.database),
            registry=registry,
            document_pool_enabled=settings.document_pool_enabled,
            write_concern=(
                (settings.write_concern_w, settings.write_concern_timeout_ms)
                if settings.write_concern_w is not None
                else None
            ),
        )
        database._client = client
        return database

    @property
    def name(self) -> str:
        return self._driver.name

    @property
    def driver(self) -> DatabaseDriver:
        return self._driver

    @property
    def registry(self) -> CollectionRegistry:
        return self._registry

    def map(self, collection: str, factory: CollectionFactory) -> "Database":
        """Serve collection with factory from now on."""
        self._registry.map(self.name, collection, factory)
        with self._lock:
            self._collections.pop(collection, None)
        return self

    def get_collection(self, name: str) -> Collection:
        if not isinstance(name, str) or not name:
            raise InvalidArgument("Collection name must be a non-empty string")
        with self._lock:
            collection = self._collections.get(name)
            if collection is None:
                factory = self._registry.resolve(self.name, name)
                collection = factory(
                    self,
                    self._driver.get_collection(name),
                    document_pool_enabled=self._document_pool_enabled,
                )
                if self._write_concern is not None:
                    collection.set_write_concern(*self._write_concern)
                if self._read_preference is not None:
                    collection.set_read_preference(*self._read_preference)
                self._collections[name] = collection
                log.debug(f"Created {factory.__name__} for '{self.name}.{name}'")
            return collection

    def __getitem__(self, name: str) -> Collection:
        return self.get_collection(name)

    async def create_collection(self, name: str, **options: Any) -> Collection:
        """
        Explicitly create a collection with server options such as
        `capped`, `size` and `max`. Fails if the collection already exists.
        """
        if not isinstance(name, str) or not name:
            raise InvalidArgument("Collection name must be a non-empty string")
        reply = await self._driver.run_command({"create": name, **options})
        if not reply.get("ok"):
            message = reply.get("errmsg") or "unknown error"
            log.error(f"Creating collection '{self.name}.{name}' failed: {message}")
            raise CommandError(f"Error creating collection {name}: {message}", code=reply.get("code"))
        log.info(f"Created collection '{self.name}.{name}' with options {options}")
        return self.get_collection(name)

    async def create_capped_collection(
        self, name: str, size: int, max_documents: Optional[int] = None
    ) -> Collection:
        if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
            raise InvalidArgument("Capped collection size must be a positive integer")
        options: Dict[str, Any] = {"capped": True, "size": size}
        if max_documents is not None:
            if not isinstance(max_documents, int) or isinstance(max_documents, bool) or max_documents <= 0:
                raise InvalidArgument("Capped collection max must be a positive integer")
            options["max"] = max_documents
        return await self.create_collection(name, **options)

    def create_persistence(self) -> Persistence:
        return Persistence()

    # --- read preference ---
    def set_read_preference(self, mode: str, tag_sets: TagSets = None) -> "Database":
        """Set the default for collections of this database, including ones already handed out."""
        if mode not in READ_PREFERENCE_MODES or (mode == READ_PRIMARY and tag_sets):
            raise ConfigurationError("Error setting read preference")
        preference = (mode, [dict(tags) for tags in tag_sets] if tag_sets else None)
        with self._lock:
            self._read_preference = preference
            collections = list(self._collections.values())
        for collection in collections:
            collection.set_read_preference(*preference)
        return self

    def get_read_preference(self) -> Dict[str, Any]:
        if self._read_preference is None:
            return {"type": READ_PRIMARY}
        mode, tag_sets = self._read_preference
        result: Dict[str, Any] = {"type": mode}
        if tag_sets:
            result["tagsets"] = [dict(tags) for tags in tag_sets]
        return result

    async def run_command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._driver.run_command(command)

    async def get_server_version(self) -> Tuple[int, ...]:
        if self._server_version is None:
            self._server_version = parse_version(await self._driver.server_version())
        return self._server_version

    async def resolve_reference(self, reference: DBRef) -> Optional[Document]:
        if not isinstance(reference, DBRef):
            raise InvalidArgument("Expected a DBRef")
        if reference.database is not None and reference.database != self.name:
            raise InvalidArgument(
                f"Reference points to database '{reference.database}', not '{self.name}'"
            )
        return await self.get_collection(reference.collection).get_document(reference.id)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __repr__(self) -> str:
        return f"Database(name={self.name!r})"
