# src/async_docstore/core/pool.py

import logging
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from async_docstore.core.document import Document

log = logging.getLogger(__name__)


class DocumentPool:
    """
    Identity map from stringified document id to the Document instance.

    While enabled, the pooled instance wins over freshly fetched records.
    Disabling stops lookups and interning but keeps existing entries;
    clearing leaves the enabled flag alone. All access is lock-protected so
    pooled documents can be shared across threads.
    """

    def __init__(self, enabled: bool = True):
        self._documents: Dict[str, "Document"] = {}
        self._enabled = enabled
        self._lock = threading.RLock()

    @staticmethod
    def _key(document_id: Any) -> str:
        return str(document_id)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        with self._lock:
            self._enabled = True

    def disable(self) -> None:
        with self._lock:
            self._enabled = False

    def get(self, document_id: Any) -> Optional["Document"]:
        with self._lock:
            if not self._enabled:
                return None
            return self._documents.get(self._key(document_id))

    def get_many(self, document_ids: List[Any]) -> Dict[str, "Document"]:
        with self._lock:
            if not self._enabled:
                return {}
            return {
                self._key(i): self._documents[self._key(i)]
                for i in document_ids
                if self._key(i) in self._documents
            }

    def intern(self, document: "Document") -> "Document":
        """
        Store document unless its id is already pooled; return the instance
        callers should use.
        """
        with self._lock:
            if not self._enabled or document.id is None:
                return document
            key = self._key(document.id)
            existing = self._documents.get(key)
            if existing is not None:
                return existing
            self._documents[key] = document
            log.debug(f"Interned document {key}")
            return document

    def remove(self, document_id: Any) -> None:
        with self._lock:
            self._documents.pop(self._key(document_id), None)

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()

    def is_empty(self) -> bool:
        with self._lock:
            return not self._documents

    def __contains__(self, document_id: Any) -> bool:
        with self._lock:
            return self._key(document_id) in self._documents

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
