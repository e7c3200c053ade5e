# src/async_docstore/core/read_preference.py

from typing import Any, Dict

from async_docstore.base.interfaces import (READ_NEAREST, READ_PRIMARY,
                                            READ_PRIMARY_PREFERRED,
                                            READ_SECONDARY,
                                            READ_SECONDARY_PREFERRED, TagSets)


class ReadPreferenceMixin:
    """
    Named read preference setters. The host class supplies
    `set_read_preference(mode, tag_sets)` and `get_read_preference()`.
    Tag sets are tried in order, e.g. `[{"dc": "kyiv"}, {"dc": "lviv"}]`.
    """

    def set_read_preference(self, mode: str, tag_sets: TagSets = None) -> Any:
        raise NotImplementedError

    def get_read_preference(self) -> Dict[str, Any]:
        raise NotImplementedError

    def read_primary_only(self) -> Any:
        return self.set_read_preference(READ_PRIMARY)

    def read_primary_preferred(self, tag_sets: TagSets = None) -> Any:
        return self.set_read_preference(READ_PRIMARY_PREFERRED, tag_sets)

    def read_secondary_only(self, tag_sets: TagSets = None) -> Any:
        return self.set_read_preference(READ_SECONDARY, tag_sets)

    def read_secondary_preferred(self, tag_sets: TagSets = None) -> Any:
        return self.set_read_preference(READ_SECONDARY_PREFERRED, tag_sets)

    def read_nearest(self, tag_sets: TagSets = None) -> Any:
        return self.set_read_preference(READ_NEAREST, tag_sets)
