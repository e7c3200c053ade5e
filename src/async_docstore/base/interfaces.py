# src/async_docstore/base/interfaces.py

from abc import ABC, abstractmethod
from typing import (Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence,
                    Tuple, Union)

# Raw acknowledgement returned by write primitives: a mapping with "ok",
# "n", "err", "errmsg" and "code" when the write concern is acknowledged,
# True/False when it is not.
Acknowledgement = Union[Dict[str, Any], bool]

DEFAULT_WRITE_CONCERN_TIMEOUT_MS = 10000

READ_PRIMARY = "primary"
READ_PRIMARY_PREFERRED = "primaryPreferred"
READ_SECONDARY = "secondary"
READ_SECONDARY_PREFERRED = "secondaryPreferred"
READ_NEAREST = "nearest"
READ_PREFERENCE_MODES = (
    READ_PRIMARY,
    READ_PRIMARY_PREFERRED,
    READ_SECONDARY,
    READ_SECONDARY_PREFERRED,
    READ_NEAREST,
)

TagSets = Optional[Sequence[Mapping[str, str]]]


class CollectionDriver(ABC):
    """
    Storage primitives for a single collection.

    Implementations talk to the actual store. They never raise for errors the
    store reports about a request; those come back in the acknowledgement
    (or as a failed command reply). Transport failures propagate unchanged.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The collection name."""
        pass

    # --- Writes ---

    @abstractmethod
    async def insert(self, document: Dict[str, Any]) -> Acknowledgement:
        """
        Insert one document. Sets `_id` on the passed mapping when absent.
        """
        pass

    @abstractmethod
    async def batch_insert(self, documents: List[Dict[str, Any]]) -> Acknowledgement:
        """Insert documents in order. Sets `_id` on each passed mapping."""
        pass

    @abstractmethod
    async def update(
        self,
        criteria: Mapping[str, Any],
        update: Mapping[str, Any],
        multiple: bool = False,
        upsert: bool = False,
    ) -> Acknowledgement:
        pass

    @abstractmethod
    async def remove(
        self, criteria: Mapping[str, Any], just_one: bool = False
    ) -> Acknowledgement:
        pass

    # --- Reads ---

    @abstractmethod
    def find(
        self,
        criteria: Mapping[str, Any],
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Return an async iterator over raw records. `limit=0` means no limit."""
        pass

    @abstractmethod
    async def count(
        self, criteria: Mapping[str, Any], skip: int = 0, limit: int = 0
    ) -> int:
        pass

    @abstractmethod
    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Run a pipeline, returning `{"ok": 1, "result": [...]}` or a failed reply."""
        pass

    # --- Indexes ---

    @abstractmethod
    async def ensure_index(
        self, keys: Mapping[str, Any], options: Mapping[str, Any]
    ) -> Acknowledgement:
        pass

    @abstractmethod
    async def get_indexes(self) -> List[Dict[str, Any]]:
        pass

    # --- Write concern ---

    @abstractmethod
    def set_write_concern(
        self, w: Union[int, str], timeout_ms: int = DEFAULT_WRITE_CONCERN_TIMEOUT_MS
    ) -> bool:
        """Apply a write concern; return False when the driver rejects it."""
        pass

    @abstractmethod
    def get_write_concern(self) -> Dict[str, Any]:
        """Return the active write concern as `{"w": ..., "wtimeout": ...}`."""
        pass

    # --- Read preference ---

    @abstractmethod
    def set_read_preference(self, mode: str, tag_sets: TagSets = None) -> bool:
        """
        Route reads by mode (one of READ_PREFERENCE_MODES), optionally
        restricted to tagged members. Return False when the driver rejects it;
        the primary mode takes no tags.
        """
        pass

    @abstractmethod
    def get_read_preference(self) -> Dict[str, Any]:
        """Return `{"type": mode}` plus `"tagsets"` when tags are set."""
        pass


class DatabaseDriver(ABC):
    """Database-level primitives: collection handles and raw commands."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def get_collection(self, name: str) -> CollectionDriver:
        pass

    @abstractmethod
    async def run_command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Run a database command and return its reply. A command the server
        rejects returns its reply (`ok` 0 with `errmsg`/`code`) instead of
        raising.
        """
        pass

    @abstractmethod
    async def server_version(self) -> str:
        """The server version string, e.g. "6.0.5"."""
        pass
