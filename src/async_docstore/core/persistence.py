# src/async_docstore/core/persistence.py

import logging
import threading
from typing import Dict, List, Tuple

from async_docstore.base.exceptions import InvalidArgument
from async_docstore.core.document import Document

log = logging.getLogger(__name__)

SAVE = "save"
REMOVE = "remove"


class Persistence:
    """
    Unit of work over documents from any collection of a database.

    `persist()` and `remove()` only queue; `flush()` writes the queue in the
    order documents were last queued. Queuing a document again replaces its
    earlier action. Used as an async context manager it flushes when the
    block exits cleanly and discards the queue when it raises:

        async with database.create_persistence() as unit:
            unit.persist(user)
            unit.remove(stale)
    """

    def __init__(self):
        self._queue: Dict[int, Tuple[str, Document]] = {}
        self._lock = threading.Lock()

    def _enqueue(self, action: str, document: Document) -> "Persistence":
        if not isinstance(document, Document):
            raise InvalidArgument(f"Expected a Document, got {type(document).__name__}")
        with self._lock:
            self._queue.pop(id(document), None)
            self._queue[id(document)] = (action, document)
        return self

    def persist(self, document: Document) -> "Persistence":
        return self._enqueue(SAVE, document)

    def remove(self, document: Document) -> "Persistence":
        return self._enqueue(REMOVE, document)

    def detach(self, document: Document) -> "Persistence":
        with self._lock:
            self._queue.pop(id(document), None)
        return self

    def contains(self, document: Document) -> bool:
        with self._lock:
            return id(document) in self._queue

    def clear(self) -> "Persistence":
        with self._lock:
            self._queue.clear()
        return self

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    async def flush(self) -> None:
        """
        Write every queued action. On failure the failed action and the ones
        after it stay queued and the error propagates.
        """
        with self._lock:
            queued: List[Tuple[str, Document]] = list(self._queue.values())
            self._queue.clear()
        for position, (action, document) in enumerate(queued):
            try:
                if action == SAVE:
                    await document.save()
                elif document.is_saved():
                    await document.delete()
                else:
                    log.debug("Skipping removal of a document that was never saved")
            except Exception:
                with self._lock:
                    for pending_action, pending in queued[position:]:
                        self._queue.setdefault(id(pending), (pending_action, pending))
                raise
        log.debug(f"Flushed {len(queued)} queued action(s)")

    async def __aenter__(self) -> "Persistence":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            await self.flush()
        else:
            self.clear()
        return False
