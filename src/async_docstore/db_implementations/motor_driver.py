# src/async_docstore/db_implementations/motor_driver.py

import logging
from typing import (Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence,
                    Tuple, Union)

from motor.motor_asyncio import (AsyncIOMotorClient, AsyncIOMotorCollection,
                                 AsyncIOMotorDatabase)
from pymongo import WriteConcern
from pymongo.errors import (BulkWriteError, ConfigurationError,
                            OperationFailure)
from pymongo.read_preferences import (Nearest, Primary, PrimaryPreferred,
                                      Secondary, SecondaryPreferred)

from async_docstore.base.interfaces import (DEFAULT_WRITE_CONCERN_TIMEOUT_MS,
                                            READ_NEAREST, READ_PRIMARY,
                                            READ_PRIMARY_PREFERRED,
                                            READ_SECONDARY,
                                            READ_SECONDARY_PREFERRED,
                                            Acknowledgement, CollectionDriver,
                                            DatabaseDriver, TagSets)

log = logging.getLogger(__name__)

_READ_PREFERENCES = {
    READ_PRIMARY_PREFERRED: PrimaryPreferred,
    READ_SECONDARY: Secondary,
    READ_SECONDARY_PREFERRED: SecondaryPreferred,
    READ_NEAREST: Nearest,
}


def _failure_from(error: OperationFailure) -> Dict[str, Any]:
    """Convert a driver exception into the store's raw failure reply."""
    details = dict(error.details or {})
    if isinstance(error, BulkWriteError):
        write_errors = details.get("writeErrors") or [{}]
        first = write_errors[0]
        return {
            "ok": 0.0,
            "n": details.get("nInserted", 0),
            "err": first.get("codeName") or "BulkWriteError",
            "errmsg": first.get("errmsg", str(error)),
            "code": first.get("code", error.code),
        }
    return {
        "ok": 0.0,
        "err": details.get("codeName") or type(error).__name__,
        "errmsg": details.get("errmsg", str(error)),
        "code": error.code,
    }


class MotorCollectionDriver(CollectionDriver):
    """Collection primitives on top of a motor collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        if not isinstance(collection, AsyncIOMotorCollection):
            raise TypeError("collection must be an instance of AsyncIOMotorCollection")
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    def _acknowledged(self) -> bool:
        return self._collection.write_concern.acknowledged

    def _failed(self, operation: str, error: OperationFailure) -> Acknowledgement:
        log.error(
            f"{operation} on '{self.name}' failed: {error}",
            exc_info=True,
        )
        return _failure_from(error) if self._acknowledged() else False

    @staticmethod
    def _reply(raw: Mapping[str, Any], acknowledged: bool) -> Acknowledgement:
        if not acknowledged:
            return True
        reply = dict(raw)
        reply.setdefault("ok", 1.0)
        reply.setdefault("err", None)
        return reply

    # --- writes ---
    async def insert(self, document: Dict[str, Any]) -> Acknowledgement:
        try:
            result = await self._collection.insert_one(document)
        except OperationFailure as e:
            return self._failed("Insert", e)
        return self._reply({"n": 0}, result.acknowledged)

    async def batch_insert(self, documents: List[Dict[str, Any]]) -> Acknowledgement:
        try:
            result = await self._collection.insert_many(documents, ordered=True)
        except OperationFailure as e:
            return self._failed("Batch insert", e)
        return self._reply({"n": len(result.inserted_ids)}, result.acknowledged)

    async def update(
        self,
        criteria: Mapping[str, Any],
        update: Mapping[str, Any],
        multiple: bool = False,
        upsert: bool = False,
    ) -> Acknowledgement:
        try:
            if multiple:
                result = await self._collection.update_many(criteria, update, upsert=upsert)
            else:
                result = await self._collection.update_one(criteria, update, upsert=upsert)
        except OperationFailure as e:
            return self._failed("Update", e)
        return self._reply(result.raw_result or {}, result.acknowledged)

    async def remove(self, criteria: Mapping[str, Any], just_one: bool = False) -> Acknowledgement:
        try:
            if just_one:
                result = await self._collection.delete_one(criteria)
            else:
                result = await self._collection.delete_many(criteria)
        except OperationFailure as e:
            return self._failed("Remove", e)
        return self._reply(result.raw_result or {}, result.acknowledged)

    # --- reads ---
    async def find(
        self,
        criteria: Mapping[str, Any],
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        cursor = self._collection.find(
            dict(criteria), projection=projection, skip=skip, limit=limit
        )
        if sort:
            cursor = cursor.sort(list(sort))
        async for record in cursor:
            yield record

    async def count(self, criteria: Mapping[str, Any], skip: int = 0, limit: int = 0) -> int:
        options: Dict[str, int] = {}
        if skip:
            options["skip"] = skip
        if limit:
            options["limit"] = limit
        return await self._collection.count_documents(dict(criteria), **options)

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            result = await self._collection.aggregate(pipeline).to_list(length=None)
        except OperationFailure as e:
            log.error(f"Aggregate on '{self.name}' failed: {e}", exc_info=True)
            failure = _failure_from(e)
            failure.pop("err", None)
            return failure
        return {"ok": 1.0, "result": result}

    # --- indexes ---
    async def ensure_index(self, keys: Mapping[str, Any], options: Mapping[str, Any]) -> Acknowledgement:
        try:
            name = await self._collection.create_index(list(keys.items()), **options)
        except OperationFailure as e:
            return self._failed("Ensure index", e)
        log.debug(f"Index '{name}' ensured on '{self.name}'")
        return self._reply({"n": 0, "name": name}, True)

    async def get_indexes(self) -> List[Dict[str, Any]]:
        return [dict(index) async for index in self._collection.list_indexes()]

    # --- write concern ---
    def set_write_concern(
        self, w: Union[int, str], timeout_ms: int = DEFAULT_WRITE_CONCERN_TIMEOUT_MS
    ) -> bool:
        try:
            concern = WriteConcern(w=w, wtimeout=timeout_ms)
        except (ConfigurationError, TypeError, ValueError) as e:
            log.warning(f"Rejected write concern w={w!r} wtimeout={timeout_ms!r}: {e}")
            return False
        self._collection = self._collection.with_options(write_concern=concern)
        return True

    def get_write_concern(self) -> Dict[str, Any]:
        document = self._collection.write_concern.document
        return {
            "w": document.get("w", 1),
            "wtimeout": document.get("wtimeout", DEFAULT_WRITE_CONCERN_TIMEOUT_MS),
        }

    # --- read preference ---
    def set_read_preference(self, mode: str, tag_sets: TagSets = None) -> bool:
        if mode == READ_PRIMARY:
            if tag_sets:
                log.warning("Rejected read preference: primary mode takes no tags")
                return False
            preference = Primary()
        elif mode in _READ_PREFERENCES:
            try:
                preference = _READ_PREFERENCES[mode](
                    tag_sets=[dict(tags) for tags in tag_sets] if tag_sets else None
                )
            except (ConfigurationError, TypeError, ValueError) as e:
                log.warning(f"Rejected read preference {mode!r} tags={tag_sets!r}: {e}")
                return False
        else:
            log.warning(f"Rejected read preference mode {mode!r}")
            return False
        self._collection = self._collection.with_options(read_preference=preference)
        return True

    def get_read_preference(self) -> Dict[str, Any]:
        preference = self._collection.read_preference
        result: Dict[str, Any] = {"type": preference.mongos_mode}
        tag_sets = [dict(tags) for tags in preference.tag_sets or []]
        if tag_sets and tag_sets != [{}]:
            result["tagsets"] = tag_sets
        return result


class MotorDatabaseDriver(DatabaseDriver):
    """Database primitives on top of a motor client."""

    def __init__(self, client: AsyncIOMotorClient, database_name: str):
        if not isinstance(client, AsyncIOMotorClient):
            raise TypeError("client must be an instance of AsyncIOMotorClient")
        self._client = client
        self._db: AsyncIOMotorDatabase = client[database_name]

    @property
    def name(self) -> str:
        return self._db.name

    def get_collection(self, name: str) -> MotorCollectionDriver:
        return MotorCollectionDriver(self._db[name])

    async def run_command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return dict(await self._db.command(dict(command)))
        except OperationFailure as e:
            log.debug(f"Command {next(iter(command), '')!r} failed: {e}")
            details = dict(e.details or {})
            details.setdefault("ok", 0.0)
            details.setdefault("errmsg", str(e))
            details.setdefault("code", e.code)
            return details

    async def server_version(self) -> str:
        info = await self._client.server_info()
        return info["version"]
