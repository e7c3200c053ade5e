import logging
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bson import DBRef, ObjectId, json_util

logger = logging.getLogger(__name__)


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, documents and sets to
    values the store accepts.

    It handles:
    - Document instances (converted to a DBRef pointing at them)
    - Pydantic BaseModel instances with field aliases
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (processing each item)

    Args:
        data: The data to convert

    Returns:
        The converted data, ready for storage
    """
    if data is None:
        return None

    # Documents are stored by reference
    to_reference = getattr(data, "to_reference", None)
    if callable(to_reference) and not isinstance(data, type):
        return to_reference()

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        try:
            serialized = data.model_dump(by_alias=True)
        except TypeError as e:
            logger.debug(f"Error using model_dump(by_alias=True): {e}")
            serialized = data.model_dump()
        return prepare_for_storage(serialized)

    if isinstance(data, Mapping):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, (list, tuple, set, frozenset)):
        return [prepare_for_storage(item) for item in data]

    return data


def is_comparable(value: Any) -> bool:
    """Return True when value has a total order the store can range-compare."""
    if isinstance(value, bool):
        return False
    return isinstance(
        value, (int, float, Decimal, str, bytes, datetime, date, ObjectId)
    )


def get_nested_value(document: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """
    Get a value from a nested field using dot notation.

    Numeric path parts index into lists.
    """
    found, value = lookup_nested_value(document, path)
    return value if found else default


def lookup_nested_value(document: Any, path: str) -> Tuple[bool, Any]:
    """Resolve a dot path, returning (found, value)."""
    curr = document
    for part in path.split("."):
        if isinstance(curr, Mapping):
            if part not in curr:
                return False, None
            curr = curr[part]
        elif isinstance(curr, list) and part.isdigit():
            index = int(part)
            if index >= len(curr):
                return False, None
            curr = curr[index]
        else:
            return False, None
    return True, curr


def _pad_list(array: List[Any], index: int) -> None:
    if index >= len(array):
        array.extend([None] * (index + 1 - len(array)))


def set_nested_value(document: Dict[str, Any], path: str, value: Any) -> bool:
    """
    Set a value at a nested field using dot notation, creating intermediate
    dictionaries as needed. Numeric parts index into lists, which are padded
    with None up to that index. Returns False when the path runs through a
    scalar or uses a non-numeric part on a list.
    """
    parts = path.split(".")
    curr: Any = document
    for part in parts[:-1]:
        if isinstance(curr, list):
            if not part.isdigit():
                return False
            key: Any = int(part)
            _pad_list(curr, key)
        else:
            key = part
            if key not in curr:
                curr[key] = None
        if curr[key] is None:
            curr[key] = {}
        elif not isinstance(curr[key], (dict, list)):
            return False
        curr = curr[key]
    last = parts[-1]
    if isinstance(curr, list):
        if not last.isdigit():
            return False
        _pad_list(curr, int(last))
        curr[int(last)] = value
    else:
        curr[last] = value
    return True


def unset_nested_value(document: Dict[str, Any], path: str) -> bool:
    """Remove a value at a nested field using dot notation."""
    parts = path.split(".")
    curr = document
    for part in parts[:-1]:
        if not isinstance(curr, dict) or not isinstance(curr.get(part), dict):
            return False
        curr = curr[part]
    if parts[-1] in curr:
        del curr[parts[-1]]
        return True
    return False


def paths_overlap(first: str, second: str) -> Optional[str]:
    """
    Describe how two dot paths relate: "exact match", "child" (first is below
    second), "parent" (first is above second) or None.
    """
    if first == second:
        return "exact match"
    if first.startswith(second + "."):
        return "child"
    if second.startswith(first + "."):
        return "parent"
    return None


def to_json(payload: Any) -> str:
    """Render a filter, update or pipeline for debug traces."""
    return json_util.dumps(payload, sort_keys=False)


def normalize_id(value: Any) -> Any:
    """Convert 24-character hex strings to ObjectId; leave anything else as is."""
    if isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def is_reference(value: Any) -> bool:
    return isinstance(value, DBRef)


__all__ = [
    "prepare_for_storage",
    "is_comparable",
    "get_nested_value",
    "lookup_nested_value",
    "set_nested_value",
    "unset_nested_value",
    "paths_overlap",
    "to_json",
    "normalize_id",
    "is_reference",
]
