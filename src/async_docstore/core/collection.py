# src/async_docstore/core/collection.py

import logging
import threading
from contextlib import aclosing
from typing import (TYPE_CHECKING, Any, Callable, Dict, Iterable, List,
                    Mapping, Optional, Sequence, Set, Type, Union)

from async_docstore.base.exceptions import (CommandError, ConfigurationError,
                                            InvalidArgument, Unsupported,
                                            ValidationFailed, WriteError)
from async_docstore.base.expression import Condition, Expression
from async_docstore.base.index import IndexDefinition
from async_docstore.base.interfaces import (DEFAULT_WRITE_CONCERN_TIMEOUT_MS,
                                            Acknowledgement, CollectionDriver,
                                            TagSets)
from async_docstore.base.operator import Operator
from async_docstore.base.utils import (normalize_id, prepare_for_storage,
                                       to_json)
from async_docstore.core.cursor import Cursor
from async_docstore.core.document import SET, Document
from async_docstore.core.pipeline import Pipeline
from async_docstore.core.pool import DocumentPool
from async_docstore.core.read_preference import ReadPreferenceMixin

if TYPE_CHECKING:
    from async_docstore.core.database import Database

Criteria = Union[Expression, Condition, Mapping[str, Any], Callable[[Expression], Any], None]
Stages = Union[Pipeline, Sequence[Mapping[str, Any]]]

NAMESPACE_NOT_FOUND = 26
AGGREGATE_EXPLAIN_MIN_VERSION = (2, 6, 0)


class Collection(ReadPreferenceMixin):
    """
    CRUD, aggregation and index management for one collection.

    Subclasses customise the document class and declare indexes:

        class Users(Collection):
            document_class = User
            indexes = (
                IndexDefinition(keys={"email": 1}, unique=True),
                {"keys": {"created": 1}, "expire_after_seconds": 3600},
            )

    Every write translates the store's acknowledgement into success or a
    WriteError. Reads consult the document pool first when it is enabled.
    """

    document_class: Type[Document] = Document
    indexes: Sequence[Union[IndexDefinition, Mapping[str, Any]]] = ()

    def __init__(
        self,
        database: "Database",
        driver: CollectionDriver,
        document_pool_enabled: bool = True,
    ):
        self._database = database
        self._driver = driver
        self._pool = DocumentPool(enabled=document_pool_enabled)
        self._index_lock = threading.Lock()
        self._applied_indexes: Set[str] = set()
        self._logger = logging.getLogger(
            f"{__name__}.{type(self).__name__}[{driver.name}]"
        )

    # --- properties ---
    @property
    def name(self) -> str:
        return self._driver.name

    @property
    def database(self) -> "Database":
        return self._database

    @property
    def driver(self) -> CollectionDriver:
        return self._driver

    # --- builders ---
    def expression(self) -> Expression:
        return Expression()

    def operator(self) -> Operator:
        return Operator()

    def create_pipeline(self) -> Pipeline:
        return Pipeline(self)

    def find(self, criteria: Criteria = None) -> Cursor:
        """
        Build a lazy cursor. criteria may be an Expression, a field-proxy
        condition, a mapping, or a callable that receives the cursor.
        """
        cursor = Cursor(self)
        if criteria is None:
            return cursor
        if isinstance(criteria, Condition):
            cursor.filter(criteria)
        elif isinstance(criteria, (Expression, Mapping)):
            cursor.merge(criteria)
        elif callable(criteria):
            criteria(cursor)
        else:
            raise InvalidArgument(
                f"Unsupported criteria type {type(criteria).__name__}"
            )
        return cursor

    # --- documents ---
    def get_document_class(self, record: Mapping[str, Any]) -> Type[Document]:
        """Pick the Document class for a record. Override for polymorphic data."""
        return self.document_class

    def create_document(self, data: Optional[Mapping[str, Any]] = None) -> Document:
        data = dict(data or {})
        return self.get_document_class(data)(self, data)

    def hydrate(self, record: Mapping[str, Any], intern: bool = True) -> Document:
        """Turn a raw record into a Document, preferring the pooled instance."""
        document_id = record.get("_id")
        if document_id is not None:
            pooled = self._pool.get(document_id)
            if pooled is not None:
                return pooled
        document = self.get_document_class(record)(self, record, hydrated=True)
        return self._pool.intern(document) if intern else document

    # --- error translation ---
    def _check_write_result(self, operation: str, result: Acknowledgement) -> Dict[str, Any]:
        """
        Acknowledged writes fail when `ok` is not 1 or an err/errmsg value is
        present. Unacknowledged writes only report False.
        """
        if isinstance(result, bool) or result is None:
            if not result:
                self._logger.error(f"{operation} failed without diagnostics")
                raise WriteError(f"{operation} error")
            return {}
        err = result.get("err")
        errmsg = result.get("errmsg")
        if result.get("ok") == 1 and err is None and errmsg is None:
            return dict(result)
        details = ": ".join(str(part) for part in (err, errmsg) if part is not None)
        message = f"{operation} error: {details}" if details else f"{operation} error"
        self._logger.error(message)
        raise WriteError(message, code=result.get("code"))

    def _check_command_result(self, operation: str, reply: Mapping[str, Any]) -> Dict[str, Any]:
        if reply.get("ok") == 1:
            return dict(reply)
        errmsg = reply.get("errmsg") or reply.get("err")
        message = f"{operation} error: {errmsg}" if errmsg else f"{operation} error"
        self._logger.error(message)
        raise CommandError(message, code=reply.get("code"))

    def _render_criteria(self, criteria: Criteria) -> Dict[str, Any]:
        if criteria is None:
            return {}
        if isinstance(criteria, Expression):
            return criteria.to_dict()
        if isinstance(criteria, Condition):
            return Expression().filter(criteria).to_dict()
        if isinstance(criteria, Mapping):
            return prepare_for_storage(dict(criteria))
        if callable(criteria):
            expression = Expression()
            criteria(expression)
            return expression.to_dict()
        raise InvalidArgument(f"Unsupported criteria type {type(criteria).__name__}")

    @staticmethod
    def _render_update(operator: Union[Operator, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(operator, Operator):
            update = operator.to_dict()
        elif isinstance(operator, Mapping):
            update = Operator.from_dict(operator).to_dict()
        else:
            raise InvalidArgument(
                f"Expected an Operator or mapping, got {type(operator).__name__}"
            )
        if not update:
            raise InvalidArgument("Update operator is empty")
        return update

    # --- inserts ---
    async def insert(self, data: Union[Document, Mapping[str, Any]]) -> Document:
        """Validate and insert one document, returning it persisted."""
        document = data if isinstance(data, Document) else self.create_document(data)
        if document.is_saved():
            raise InvalidArgument("Document is already saved")
        document.validate()
        await self._insert_document(document)
        return document

    async def _insert_document(self, document: Document) -> None:
        record = document.to_dict()
        self._logger.debug(f"{type(self).__name__}: Insert: {to_json(record)}")
        result = await self._driver.insert(record)
        self._check_write_result("Insert", result)
        document._set_id(record["_id"])
        document._mark_persisted()
        self._pool.intern(document)
        self._logger.info(f"Inserted document {record['_id']}")

    async def insert_multiple(
        self, rows: Iterable[Union[Document, Mapping[str, Any]]]
    ) -> List[Document]:
        """
        Validate every row first and insert the batch only when all are
        valid. Violations of all rows are reported together.
        """
        documents = [
            row if isinstance(row, Document) else self.create_document(row)
            for row in rows
        ]
        if not documents:
            raise InvalidArgument("No documents to insert")
        violations = []
        for document in documents:
            if document.is_saved():
                raise InvalidArgument("Document is already saved")
            violations.extend(document.get_violations())
        if violations:
            raise ValidationFailed(violations)

        records = [document.to_dict() for document in documents]
        result = await self._driver.batch_insert(records)
        self._check_write_result("Batch insert", result)
        for document, record in zip(documents, records):
            document._set_id(record["_id"])
            document._mark_persisted()
            self._pool.intern(document)
        self._logger.info(f"Inserted {len(documents)} documents")
        return documents

    # --- document persistence ---
    async def save_document(self, document: Document) -> Document:
        """Insert an unsaved document, or write only its changed fields."""
        if document.collection is not self:
            raise InvalidArgument(
                f"Document belongs to collection '{document.collection.name}'"
            )
        document.validate()
        if not document.is_saved():
            await self._insert_document(document)
            return document
        if not document.is_dirty():
            return document

        operator = Operator()
        for field, intent in document.dirty.items():
            if intent == SET and document.has(field):
                operator.set(field, document.get(field))
            else:
                operator.unset(field)
        update = operator.to_dict()
        self._logger.debug(f"{type(self).__name__}: Update: {to_json(update)}")
        result = await self._driver.update({"_id": document.id}, update)
        self._check_write_result("Update", result)
        document._mark_persisted()
        self._logger.info(f"Updated document {document.id}")
        return document

    async def refresh_document(self, document: Document) -> Document:
        if document.id is None:
            raise InvalidArgument("Cannot refresh an unsaved document")
        async with aclosing(self._driver.find({"_id": document.id}, limit=1)) as records:
            async for record in records:
                document._replace_data(record)
                return document
        self._logger.warning(f"Document {document.id} no longer exists")
        return document

    # --- updates ---
    async def update(
        self,
        criteria: Criteria,
        operator: Union[Operator, Mapping[str, Any]],
        multiple: bool = False,
        upsert: bool = False,
    ) -> Dict[str, Any]:
        """
        Apply operator to documents matching criteria. Returns the store's
        acknowledgement (empty for unacknowledged writes).
        """
        operation = "Multiple update" if multiple else "Update"
        return await self._update(operation, criteria, operator, multiple, upsert)

    async def _update(
        self,
        operation: str,
        criteria: Criteria,
        operator: Union[Operator, Mapping[str, Any]],
        multiple: bool,
        upsert: bool,
    ) -> Dict[str, Any]:
        update = self._render_update(operator)
        criteria_dict = self._render_criteria(criteria)
        self._logger.debug(f"{type(self).__name__}: Filter: {to_json(criteria_dict)}")
        self._logger.debug(f"{type(self).__name__}: Update: {to_json(update)}")
        result = await self._driver.update(
            criteria_dict, update, multiple=multiple, upsert=upsert
        )
        return self._check_write_result(operation, result)

    async def update_multiple(
        self, criteria: Criteria, operator: Union[Operator, Mapping[str, Any]]
    ) -> Dict[str, Any]:
        return await self.update(criteria, operator, multiple=True)

    async def update_all(self, operator: Union[Operator, Mapping[str, Any]]) -> Dict[str, Any]:
        """Multiple update with an empty filter; failures are labelled "Update"."""
        return await self._update("Update", None, operator, multiple=True, upsert=False)

    # --- deletes ---
    async def delete_document(self, document: Document) -> None:
        if document.id is None:
            raise InvalidArgument("Cannot delete an unsaved document")
        result = await self._driver.remove({"_id": document.id}, just_one=True)
        self._check_write_result("Delete document", result)
        self._pool.remove(document.id)
        document._mark_deleted()
        self._logger.info(f"Deleted document {document.id}")

    async def delete_documents(self, criteria: Criteria = None) -> Dict[str, Any]:
        criteria_dict = self._render_criteria(criteria)
        self._logger.debug(f"{type(self).__name__}: Filter: {to_json(criteria_dict)}")
        pooled_ids: List[Any] = []
        if not self._pool.is_empty():
            records = self._driver.find(criteria_dict, projection={"_id": 1})
            pooled_ids = [record["_id"] async for record in records]
        result = await self._driver.remove(criteria_dict, just_one=False)
        ack = self._check_write_result("Delete documents", result)
        for document_id in pooled_ids:
            self._pool.remove(document_id)
        return ack

    async def delete(self) -> None:
        """Drop the collection. Dropping a collection that does not exist succeeds."""
        reply = await self._database.run_command({"drop": self.name})
        if reply.get("ok") != 1:
            errmsg = reply.get("errmsg")
            if reply.get("code") == NAMESPACE_NOT_FOUND or errmsg == "ns not found":
                self._logger.info(f"Collection '{self.name}' did not exist")
            else:
                self._logger.error(f"Error deleting collection {self.name}: {errmsg}")
                raise CommandError(
                    f"Error deleting collection {self.name}: {errmsg}",
                    code=reply.get("code"),
                )
        self._pool.clear()
        with self._index_lock:
            self._applied_indexes.clear()

    # --- reads ---
    async def get_document(self, document_id: Any) -> Optional[Document]:
        """Return the document with this id, or None."""
        document_id = normalize_id(document_id)
        pooled = self._pool.get(document_id)
        if pooled is not None:
            return pooled
        return await self.find().where("_id", document_id).find_one()

    async def get_documents(self, document_ids: Iterable[Any]) -> Dict[str, Document]:
        """Return found documents keyed by str(id); missing ids are left out."""
        ids = [normalize_id(i) for i in document_ids]
        if not ids:
            return {}
        found = self._pool.get_many(ids)
        missing = [i for i in ids if str(i) not in found]
        if missing:
            async for document in self.find().where_in("_id", missing):
                found[str(document.id)] = document
        return {str(i): found[str(i)] for i in ids if str(i) in found}

    async def count(self, criteria: Criteria = None) -> int:
        return await self._driver.count(self._render_criteria(criteria))

    async def get_distinct(self, path: str, criteria: Criteria = None) -> List[Any]:
        command: Dict[str, Any] = {"distinct": self.name, "key": path}
        criteria_dict = self._render_criteria(criteria)
        if criteria_dict:
            command["query"] = criteria_dict
        reply = await self._database.run_command(command)
        return list(self._check_command_result("Distinct", reply).get("values", []))

    # --- aggregation ---
    @staticmethod
    def _render_pipeline(pipeline: Stages) -> List[Dict[str, Any]]:
        if isinstance(pipeline, Pipeline):
            return pipeline.to_list()
        if (
            isinstance(pipeline, (list, tuple))
            and pipeline
            and all(isinstance(stage, Mapping) for stage in pipeline)
        ):
            return [dict(stage) for stage in pipeline]
        raise InvalidArgument("Wrong pipelines specified")

    async def aggregate(self, pipeline: Stages) -> List[Dict[str, Any]]:
        stages = self._render_pipeline(pipeline)
        self._logger.debug(f"{type(self).__name__}: Pipelines: {to_json(stages)}")
        reply = await self._driver.aggregate(stages)
        return list(self._check_command_result("Aggregate", reply).get("result", []))

    async def explain_aggregate(self, pipeline: Stages) -> Dict[str, Any]:
        version = await self._database.get_server_version()
        if version < AGGREGATE_EXPLAIN_MIN_VERSION:
            raise Unsupported("Explain of aggregation implemented only from 2.6.0")
        stages = self._render_pipeline(pipeline)
        self._logger.debug(f"{type(self).__name__}: Pipelines: {to_json(stages)}")
        reply = await self._database.run_command(
            {"aggregate": self.name, "pipeline": stages, "explain": True}
        )
        return self._check_command_result("Explain aggregate", reply)

    # --- indexes ---
    async def ensure_index(
        self,
        keys: Union[str, Sequence[str], Mapping[str, Any]],
        unique: bool = False,
        sparse: bool = False,
        ttl: Optional[int] = None,
        background: bool = False,
        drop_dups: bool = False,
        name: Optional[str] = None,
    ) -> None:
        if not keys:
            raise InvalidArgument("Keys not specified")
        definition = IndexDefinition.from_declaration(
            {
                "keys": keys,
                "unique": unique,
                "sparse": sparse,
                "expire_after_seconds": ttl,
                "background": background,
                "drop_dups": drop_dups,
                "name": name,
            }
        )
        await self._apply_index(definition)

    async def ensure_unique_index(
        self, keys: Union[str, Sequence[str], Mapping[str, Any]], drop_dups: bool = False
    ) -> None:
        await self.ensure_index(keys, unique=True, drop_dups=drop_dups)

    async def ensure_sparse_index(self, keys: Union[str, Sequence[str], Mapping[str, Any]]) -> None:
        await self.ensure_index(keys, sparse=True)

    async def ensure_ttl_index(
        self, keys: Union[str, Sequence[str], Mapping[str, Any]], seconds: int = 0
    ) -> None:
        await self.ensure_index(keys, ttl=seconds)

    async def init_indexes(self) -> None:
        """Apply every index declared on the class."""
        for declaration in type(self).indexes:
            await self._apply_index(IndexDefinition.from_declaration(declaration))

    async def _apply_index(self, definition: IndexDefinition) -> None:
        keys, options = definition.render()
        marker = repr((list(keys.items()), sorted(options.items())))
        with self._index_lock:
            if marker in self._applied_indexes:
                return
        result = await self._driver.ensure_index(keys, options)
        self._check_write_result("Ensure index", result)
        with self._index_lock:
            self._applied_indexes.add(marker)
        self._logger.info(f"Ensured index {keys} with options {options}")

    async def get_indexes(self) -> List[Dict[str, Any]]:
        return await self._driver.get_indexes()

    # --- write concern ---
    def set_write_concern(
        self, w: Union[int, str], timeout_ms: int = DEFAULT_WRITE_CONCERN_TIMEOUT_MS
    ) -> "Collection":
        if not self._driver.set_write_concern(w, timeout_ms):
            raise ConfigurationError("Error setting write concern")
        return self

    def set_unacknowledged_write_concern(
        self, timeout_ms: int = DEFAULT_WRITE_CONCERN_TIMEOUT_MS
    ) -> "Collection":
        return self.set_write_concern(0, timeout_ms)

    def set_majority_write_concern(
        self, timeout_ms: int = DEFAULT_WRITE_CONCERN_TIMEOUT_MS
    ) -> "Collection":
        return self.set_write_concern("majority", timeout_ms)

    def get_write_concern(self) -> Dict[str, Any]:
        return self._driver.get_write_concern()

    def is_acknowledged(self) -> bool:
        return self.get_write_concern().get("w") != 0

    # --- read preference ---
    def set_read_preference(self, mode: str, tag_sets: TagSets = None) -> "Collection":
        if not self._driver.set_read_preference(mode, tag_sets):
            raise ConfigurationError("Error setting read preference")
        return self

    def get_read_preference(self) -> Dict[str, Any]:
        return self._driver.get_read_preference()

    # --- document pool ---
    def enable_document_pool(self) -> "Collection":
        self._pool.enable()
        return self

    def disable_document_pool(self) -> "Collection":
        self._pool.disable()
        return self

    def clear_document_pool(self) -> "Collection":
        self._pool.clear()
        return self

    def is_document_pool_enabled(self) -> bool:
        return self._pool.enabled

    def is_document_pool_empty(self) -> bool:
        return self._pool.is_empty()

    # --- maintenance ---
    async def stats(self) -> Dict[str, Any]:
        reply = await self._database.run_command({"collStats": self.name})
        return self._check_command_result("Stats", reply)

    async def validate(self, full: bool = False) -> Dict[str, Any]:
        reply = await self._database.run_command({"validate": self.name, "full": full})
        return self._check_command_result("Validate collection", reply)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
