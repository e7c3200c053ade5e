# src/async_docstore/memory/driver.py

import copy
import logging
from typing import (Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence,
                    Tuple, Union)

from bson import ObjectId

from async_docstore.base.interfaces import (DEFAULT_WRITE_CONCERN_TIMEOUT_MS,
                                            READ_PREFERENCE_MODES,
                                            READ_PRIMARY, Acknowledgement,
                                            CollectionDriver, DatabaseDriver,
                                            TagSets)
from async_docstore.base.utils import get_nested_value
from async_docstore.memory.matching import (QueryError, aggregate,
                                            apply_update, distinct, match,
                                            project, reference_key,
                                            sort_documents, upsert_seed)

log = logging.getLogger(__name__)

NAMESPACE_NOT_FOUND = 26
NAMESPACE_EXISTS = 48
INVALID_OPTIONS = 72
DUPLICATE_KEY = 11000
INDEX_OPTIONS_CONFLICT = 85
COMMAND_NOT_FOUND = 59


def _failure(errmsg: str, code: int, code_name: str = "") -> Dict[str, Any]:
    return {"ok": 0.0, "errmsg": errmsg, "code": code, "codeName": code_name}


def _index_name(keys: Mapping[str, Any]) -> str:
    return "_".join(f"{path}_{direction}" for path, direction in keys.items())


class MemoryCollectionDriver(CollectionDriver):
    """
    In-process collection storage. Documents are deep-copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self, database: "MemoryDatabaseDriver", name: str):
        self._database = database
        self._name = name
        self._write_concern: Dict[str, Any] = {
            "w": 1,
            "wtimeout": DEFAULT_WRITE_CONCERN_TIMEOUT_MS,
        }
        self._read_preference: Dict[str, Any] = {"type": READ_PRIMARY}

    @property
    def name(self) -> str:
        return self._name

    @property
    def _documents(self) -> Dict[Any, Dict[str, Any]]:
        return self._database.storage_for(self._name)

    @property
    def _stored(self) -> Dict[Any, Dict[str, Any]]:
        """Read-only view that does not create the collection."""
        return self._database.storage_for(self._name, create=False)

    @property
    def _indexes(self) -> Dict[str, Dict[str, Any]]:
        return self._database.indexes_for(self._name)

    def _acknowledged(self) -> bool:
        return self._write_concern.get("w") != 0

    def _reply(self, ack: Dict[str, Any]) -> Acknowledgement:
        """Shape a reply according to the active write concern."""
        if self._acknowledged():
            ack.setdefault("err", None)
            return ack
        return ack.get("ok") == 1.0 and ack.get("err") is None

    # --- unique index enforcement ---
    def _duplicate_error(self, candidate: Mapping[str, Any], ignore_key: Any = None) -> Optional[Dict[str, Any]]:
        for name, index in self._indexes.items():
            if not index.get("unique"):
                continue
            keys = list(index["key"])
            if index.get("sparse") and not all(
                match(candidate, {k: {"$exists": True}}) for k in keys
            ):
                continue
            wanted = {k: get_nested_value(candidate, k) for k in keys}
            for key, existing in self._documents.items():
                if key == ignore_key:
                    continue
                if all(get_nested_value(existing, k) == v for k, v in wanted.items()):
                    return {
                        "ok": 0.0,
                        "err": "DuplicateKey",
                        "errmsg": (
                            f"E11000 duplicate key error collection: "
                            f"{self._database.name}.{self._name} index: {name} dup key: {wanted}"
                        ),
                        "code": DUPLICATE_KEY,
                    }
        if ignore_key is None and "_id" in candidate:
            if reference_key(candidate["_id"]) in self._documents:
                return {
                    "ok": 0.0,
                    "err": "DuplicateKey",
                    "errmsg": (
                        f"E11000 duplicate key error collection: "
                        f"{self._database.name}.{self._name} index: _id_ dup key: "
                        f"{{ _id: {candidate['_id']!r} }}"
                    ),
                    "code": DUPLICATE_KEY,
                }
        return None

    # --- writes ---
    async def insert(self, document: Dict[str, Any]) -> Acknowledgement:
        document.setdefault("_id", ObjectId())
        error = self._duplicate_error(document)
        if error:
            return self._reply(error)
        self._documents[reference_key(document["_id"])] = copy.deepcopy(document)
        self._database.trim_capped(self._name)
        return self._reply({"ok": 1.0, "n": 0})

    async def batch_insert(self, documents: List[Dict[str, Any]]) -> Acknowledgement:
        inserted = 0
        for document in documents:
            document.setdefault("_id", ObjectId())
            error = self._duplicate_error(document)
            if error:
                error["n"] = inserted
                return self._reply(error)
            self._documents[reference_key(document["_id"])] = copy.deepcopy(document)
            self._database.trim_capped(self._name)
            inserted += 1
        return self._reply({"ok": 1.0, "n": inserted})

    async def update(
        self,
        criteria: Mapping[str, Any],
        update: Mapping[str, Any],
        multiple: bool = False,
        upsert: bool = False,
    ) -> Acknowledgement:
        matched = 0
        modified = 0
        try:
            for key, existing in list(self._documents.items()):
                if not match(existing, criteria):
                    continue
                matched += 1
                changed = apply_update(existing, update)
                error = self._duplicate_error(changed, ignore_key=key)
                if error:
                    error["n"] = matched - 1
                    return self._reply(error)
                if changed != existing:
                    self._documents[key] = changed
                    modified += 1
                if not multiple:
                    break
            if matched == 0 and upsert:
                seed = upsert_seed(criteria)
                created = apply_update(seed, update)
                created.setdefault("_id", ObjectId())
                error = self._duplicate_error(created)
                if error:
                    return self._reply(error)
                self._documents[reference_key(created["_id"])] = created
                return self._reply(
                    {
                        "ok": 1.0,
                        "n": 1,
                        "nModified": 0,
                        "updatedExisting": False,
                        "upserted": created["_id"],
                    }
                )
        except QueryError as e:
            log.debug(f"Update rejected by memory store: {e}")
            return self._reply({"ok": 0.0, "err": "BadValue", "errmsg": str(e), "code": e.code})
        return self._reply(
            {"ok": 1.0, "n": matched, "nModified": modified, "updatedExisting": matched > 0}
        )

    async def remove(self, criteria: Mapping[str, Any], just_one: bool = False) -> Acknowledgement:
        removed = 0
        try:
            for key, existing in list(self._documents.items()):
                if match(existing, criteria):
                    del self._documents[key]
                    removed += 1
                    if just_one:
                        break
        except QueryError as e:
            return self._reply({"ok": 0.0, "err": "BadValue", "errmsg": str(e), "code": e.code})
        return self._reply({"ok": 1.0, "n": removed})

    # --- reads ---
    def _select(
        self,
        criteria: Mapping[str, Any],
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        selected = [
            copy.deepcopy(d) for d in self._stored.values() if match(d, criteria)
        ]
        if sort:
            selected = sort_documents(selected, sort)
        if skip:
            selected = selected[skip:]
        if limit:
            selected = selected[:abs(limit)]
        return selected

    async def find(
        self,
        criteria: Mapping[str, Any],
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        for document in self._select(criteria, sort, skip, limit):
            yield project(document, projection)

    async def count(self, criteria: Mapping[str, Any], skip: int = 0, limit: int = 0) -> int:
        return len(self._select(criteria, skip=skip, limit=limit))

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            result = aggregate(list(self._stored.values()), pipeline)
        except QueryError as e:
            return _failure(str(e), e.code, f"Location{e.code}")
        return {"ok": 1.0, "result": result}

    # --- indexes ---
    async def ensure_index(self, keys: Mapping[str, Any], options: Mapping[str, Any]) -> Acknowledgement:
        name = options.get("name") or _index_name(keys)
        spec = {"v": 2, "key": dict(keys), "name": name}
        spec.update({k: v for k, v in options.items() if k not in ("name", "background", "dropDups")})
        existing = self._indexes.get(name)
        if existing is not None:
            if existing != spec:
                return self._reply(
                    {
                        "ok": 0.0,
                        "err": "IndexOptionsConflict",
                        "errmsg": f"Index with name: {name} already exists with different options",
                        "code": INDEX_OPTIONS_CONFLICT,
                    }
                )
            return self._reply({"ok": 1.0, "n": 0})
        if spec.get("unique"):
            seen: Dict[str, Any] = {}
            for key, document in list(self._documents.items()):
                marker = repr([get_nested_value(document, k) for k in keys])
                if marker in seen:
                    if options.get("dropDups"):
                        del self._documents[key]
                        continue
                    return self._reply(
                        {
                            "ok": 0.0,
                            "err": "DuplicateKey",
                            "errmsg": f"E11000 duplicate key error index: {name}",
                            "code": DUPLICATE_KEY,
                        }
                    )
                seen[marker] = key
        # creating an index creates the collection
        self._database.storage_for(self._name)
        self._indexes[name] = spec
        return self._reply({"ok": 1.0, "n": 0})

    async def get_indexes(self) -> List[Dict[str, Any]]:
        return [{"v": 2, "key": {"_id": 1}, "name": "_id_"}] + [
            copy.deepcopy(spec) for spec in self._indexes.values()
        ]

    # --- write concern ---
    def set_write_concern(
        self, w: Union[int, str], timeout_ms: int = DEFAULT_WRITE_CONCERN_TIMEOUT_MS
    ) -> bool:
        if isinstance(w, bool) or not isinstance(w, (int, str)):
            return False
        if isinstance(w, int) and w < 0:
            return False
        if isinstance(w, str) and not w:
            return False
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms < 0:
            return False
        self._write_concern = {"w": w, "wtimeout": timeout_ms}
        return True

    def get_write_concern(self) -> Dict[str, Any]:
        return dict(self._write_concern)

    # --- read preference ---
    def set_read_preference(self, mode: str, tag_sets: TagSets = None) -> bool:
        if mode not in READ_PREFERENCE_MODES:
            return False
        if tag_sets and mode == READ_PRIMARY:
            return False
        preference: Dict[str, Any] = {"type": mode}
        if tag_sets:
            preference["tagsets"] = [dict(tags) for tags in tag_sets]
        self._read_preference = preference
        return True

    def get_read_preference(self) -> Dict[str, Any]:
        return copy.deepcopy(self._read_preference)


class MemoryDatabaseDriver(DatabaseDriver):
    """
    In-process database: a set of named collections plus a handful of
    commands (create, drop, distinct, aggregate with explain, collStats,
    validate, buildInfo, ping, count). Capped collections honour `max`;
    their byte `size` is recorded but not enforced.
    """

    def __init__(self, name: str = "test", server_version: str = "6.0.0"):
        self._name = name
        self._server_version = server_version
        self._storage: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self._indexes: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._options: Dict[str, Dict[str, Any]] = {}

    @property
    def name(self) -> str:
        return self._name

    def storage_for(self, collection: str, create: bool = True) -> Dict[Any, Dict[str, Any]]:
        if not create and collection not in self._storage:
            return {}
        return self._storage.setdefault(collection, {})

    def indexes_for(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._indexes.setdefault(collection, {})

    def trim_capped(self, collection: str) -> None:
        """Evict the oldest documents of a capped collection beyond its `max`."""
        limit = self._options.get(collection, {}).get("max")
        documents = self._storage.get(collection)
        if not limit or documents is None:
            return
        while len(documents) > limit:
            del documents[next(iter(documents))]

    def collection_names(self) -> List[str]:
        return sorted(self._storage)

    def get_collection(self, name: str) -> MemoryCollectionDriver:
        return MemoryCollectionDriver(self, name)

    async def server_version(self) -> str:
        return self._server_version

    async def run_command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        if not command:
            return _failure("no such command: ''", COMMAND_NOT_FOUND, "CommandNotFound")
        name, target = next(iter(command.items()))
        handler = getattr(self, f"_command_{name.lower()}", None)
        if handler is None:
            return _failure(f"no such command: '{name}'", COMMAND_NOT_FOUND, "CommandNotFound")
        try:
            return handler(target, command)
        except QueryError as e:
            return _failure(str(e), e.code, f"Location{e.code}")

    def _command_ping(self, target: Any, command: Mapping[str, Any]) -> Dict[str, Any]:
        return {"ok": 1.0}

    def _command_buildinfo(self, target: Any, command: Mapping[str, Any]) -> Dict[str, Any]:
        parts = [int(p) for p in self._server_version.split(".") if p.isdigit()]
        return {"ok": 1.0, "version": self._server_version, "versionArray": parts + [0]}

    def _command_drop(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        if target not in self._storage:
            return _failure("ns not found", NAMESPACE_NOT_FOUND, "NamespaceNotFound")
        del self._storage[target]
        self._indexes.pop(target, None)
        self._options.pop(target, None)
        return {"ok": 1.0, "ns": f"{self._name}.{target}"}

    def _command_create(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        if target in self._storage:
            return _failure(
                f"Collection {self._name}.{target} already exists.",
                NAMESPACE_EXISTS,
                "NamespaceExists",
            )
        options = {k: v for k, v in command.items() if k != "create"}
        if options.get("capped") and not options.get("size"):
            return _failure(
                "the 'size' field is required when 'capped' is true",
                INVALID_OPTIONS,
                "InvalidOptions",
            )
        self._storage[target] = {}
        self._options[target] = options
        return {"ok": 1.0}

    def _command_distinct(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        criteria = command.get("query") or {}
        documents = [d for d in self._storage.get(target, {}).values() if match(d, criteria)]
        return {"ok": 1.0, "values": distinct(documents, command["key"])}

    def _command_count(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        criteria = command.get("query") or {}
        documents = self._storage.get(target, {}).values()
        return {"ok": 1.0, "n": sum(1 for d in documents if match(d, criteria))}

    def _command_aggregate(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        pipeline = command.get("pipeline") or []
        if command.get("explain"):
            return {
                "ok": 1.0,
                "stages": [
                    {name: spec for name, spec in stage.items()} for stage in pipeline
                ],
            }
        documents = list(self._storage.get(target, {}).values())
        return {"ok": 1.0, "cursor": {"firstBatch": aggregate(documents, pipeline)}}

    def _command_collstats(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        documents = self._storage.get(target, {})
        options = self._options.get(target, {})
        size = sum(len(repr(d)) for d in documents.values())
        stats = {
            "ok": 1.0,
            "ns": f"{self._name}.{target}",
            "count": len(documents),
            "size": size,
            "avgObjSize": size // len(documents) if documents else 0,
            "nindexes": 1 + len(self._indexes.get(target, {})),
            "capped": bool(options.get("capped")),
        }
        if options.get("max"):
            stats["max"] = options["max"]
        return stats

    def _command_validate(self, target: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        if target not in self._storage:
            return _failure("ns not found", NAMESPACE_NOT_FOUND, "NamespaceNotFound")
        return {
            "ok": 1.0,
            "ns": f"{self._name}.{target}",
            "nrecords": len(self._storage[target]),
            "valid": True,
            "errors": [],
        }
