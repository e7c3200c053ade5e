# src/async_docstore/core/document.py

import copy
import logging
import weakref
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from bson import DBRef

from async_docstore.base.exceptions import (DocumentStoreError,
                                            InvalidArgument, ValidationFailed)
from async_docstore.base.utils import (is_reference, lookup_nested_value,
                                       prepare_for_storage, set_nested_value,
                                       unset_nested_value)
from async_docstore.base.validation import Rule, RuleSetValidator, Violation

if TYPE_CHECKING:
    from async_docstore.core.collection import Collection

log = logging.getLogger(__name__)

SET = "set"
UNSET = "unset"


class DocumentState(Enum):
    UNSAVED = "unsaved"
    HYDRATED = "hydrated"
    PERSISTED = "persisted"


class Document:
    """
    A mutable record with identity, a dirty-field delta and declared
    validation rules.

    Subclasses declare their rules once as a class attribute:

        class User(Document):
            rules = (Required("email"), Email("email"), Range("age", min=0))

    Field access goes through get/set/unset (or `doc["a.b"]`); every change
    records its top-level field in the delta so a save of a persisted
    document only writes what changed.
    """

    rules: Tuple[Rule, ...] = ()

    def __init__(
        self,
        collection: "Collection",
        data: Optional[Mapping[str, Any]] = None,
        hydrated: bool = False,
    ):
        self._collection_ref = weakref.ref(collection)
        self._data: Dict[str, Any] = prepare_for_storage(dict(data or {}))
        self._dirty: Dict[str, str] = {}
        self._state = DocumentState.HYDRATED if hydrated else DocumentState.UNSAVED

    # --- collection link ---
    @property
    def collection(self) -> "Collection":
        collection = self._collection_ref()
        if collection is None:
            raise DocumentStoreError("The collection of this document no longer exists")
        return collection

    @classmethod
    def validator(cls) -> RuleSetValidator:
        return RuleSetValidator(cls.rules)

    # --- identity and state ---
    @property
    def id(self) -> Any:
        return self._data.get("_id")

    @property
    def state(self) -> DocumentState:
        return self._state

    def is_saved(self) -> bool:
        return self._state is not DocumentState.UNSAVED

    @property
    def dirty(self) -> Dict[str, str]:
        return dict(self._dirty)

    def is_dirty(self) -> bool:
        return bool(self._dirty)

    # --- field access ---
    def get(self, path: str, default: Any = None) -> Any:
        found, value = lookup_nested_value(self._data, path)
        return value if found else default

    def has(self, path: str) -> bool:
        return lookup_nested_value(self._data, path)[0]

    def set(self, path: str, value: Any) -> "Document":
        self._check_writable(path)
        if isinstance(value, Document) and value.id is None:
            raise InvalidArgument(
                f"Cannot reference an unsaved document from field '{path}'"
            )
        if not set_nested_value(self._data, path, prepare_for_storage(value)):
            raise InvalidArgument(f"Cannot set '{path}': a parent field cannot hold it")
        self._dirty[self._top(path)] = SET
        return self

    def unset(self, path: str) -> "Document":
        self._check_writable(path)
        if unset_nested_value(self._data, path):
            top = self._top(path)
            self._dirty[top] = UNSET if top == path else SET
        return self

    def append(self, path: str, value: Any) -> "Document":
        """Append value to the list at path, creating the list if absent."""
        current = self.get(path)
        if current is None:
            current = []
        elif not isinstance(current, list):
            raise InvalidArgument(f"Field '{path}' is not a list")
        return self.set(path, list(current) + [value])

    def merge(self, values: Mapping[str, Any]) -> "Document":
        for path, value in values.items():
            self.set(path, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of all fields."""
        return copy.deepcopy(self._data)

    def __getitem__(self, path: str) -> Any:
        found, value = lookup_nested_value(self._data, path)
        if not found:
            raise KeyError(path)
        return value

    def __setitem__(self, path: str, value: Any) -> None:
        self.set(path, value)

    def __delitem__(self, path: str) -> None:
        if not self.has(path):
            raise KeyError(path)
        self.unset(path)

    def __contains__(self, path: str) -> bool:
        return self.has(path)

    # --- validation ---
    def get_violations(self) -> List[Violation]:
        return self.validator().validate(self._data)

    def validate(self) -> None:
        """Raise ValidationFailed when any declared rule is violated."""
        violations = self.get_violations()
        if violations:
            raise ValidationFailed(violations)

    # --- persistence ---
    async def save(self) -> "Document":
        await self.collection.save_document(self)
        return self

    async def delete(self) -> None:
        await self.collection.delete_document(self)

    async def refresh(self) -> "Document":
        """Reload fields from the store, discarding unsaved changes."""
        await self.collection.refresh_document(self)
        return self

    # --- references ---
    def to_reference(self) -> DBRef:
        if self.id is None:
            raise InvalidArgument("Cannot reference an unsaved document")
        return DBRef(self.collection.name, self.id)

    async def get_reference(self, path: str) -> Optional["Document"]:
        """Resolve the reference stored at path into a Document."""
        value = self.get(path)
        if value is None:
            return None
        if not is_reference(value):
            raise InvalidArgument(f"Field '{path}' does not hold a reference")
        return await self.collection.database.resolve_reference(value)

    # --- hooks used by Collection ---
    def _mark_persisted(self) -> None:
        self._state = DocumentState.PERSISTED
        self._dirty.clear()

    def _mark_deleted(self) -> None:
        self._state = DocumentState.UNSAVED
        self._dirty.clear()

    def _replace_data(self, data: Mapping[str, Any]) -> None:
        self._data = copy.deepcopy(dict(data))
        self._dirty.clear()

    def _set_id(self, document_id: Any) -> None:
        self._data["_id"] = document_id

    @staticmethod
    def _top(path: str) -> str:
        return path.split(".", 1)[0]

    def _check_writable(self, path: str) -> None:
        if not isinstance(path, str) or not path:
            raise InvalidArgument("Field path must be a non-empty string")
        if self._top(path) == "_id" and self.is_saved():
            raise InvalidArgument("The identity of a saved document cannot change")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, state={self._state.value})"
