# src/async_docstore/base/operator.py

import copy
import logging
from numbers import Number
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .exceptions import InvalidArgument
from .utils import paths_overlap, prepare_for_storage

log = logging.getLogger(__name__)

UPDATE_OPERATORS = (
    "$set",
    "$unset",
    "$inc",
    "$mul",
    "$min",
    "$max",
    "$push",
    "$pull",
    "$pullAll",
    "$addToSet",
    "$pop",
    "$rename",
)

# set/unset on the same path replace each other instead of conflicting
_REPLACEABLE = {"$set": "$unset", "$unset": "$set"}


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


class Operator:
    """
    Fluent builder for an update document.

    Calls for the same operator accumulate into one sub-mapping. A path may
    only be touched by one operator per update; `set` and `unset` on the
    same path are resolved in favour of the later call.

    Example:
        >>> Operator().set("name", "A").increment("visits").to_dict()
        {'$set': {'name': 'A'}, '$inc': {'visits': 1}}
    """

    def __init__(self):
        self._operations: Dict[str, Dict[str, Any]] = {}
        self._logger = log

    # --- bookkeeping ---
    def _check_field_conflict(self, operator: str, field_path: str) -> None:
        """
        Reject a path already claimed by another operator, or whose parent or
        child path is claimed by any operator.
        """
        for existing_operator, paths in list(self._operations.items()):
            for existing_path, operand in list(paths.items()):
                claimed = [existing_path]
                if existing_operator == "$rename":
                    claimed.append(operand)
                for claimed_path in claimed:
                    conflict_type = paths_overlap(field_path, claimed_path)
                    if conflict_type is None:
                        continue
                    if conflict_type == "exact match":
                        if existing_operator == operator and operator != "$rename":
                            continue
                        if _REPLACEABLE.get(operator) == existing_operator:
                            self._logger.debug(
                                f"'{operator}' on '{field_path}' replaces earlier '{existing_operator}'"
                            )
                            del paths[existing_path]
                            if not paths:
                                del self._operations[existing_operator]
                            continue
                        message = (
                            f"Field '{field_path}' already has a '{existing_operator}' operation. "
                            f"Multiple operators on the same field are not allowed in a single update."
                        )
                    elif conflict_type == "child":
                        message = (
                            f"Field '{field_path}' conflicts with existing '{existing_operator}' "
                            f"operation on parent field '{claimed_path}'."
                        )
                    else:
                        message = (
                            f"Field '{field_path}' conflicts with existing '{existing_operator}' "
                            f"operation on child field '{claimed_path}'."
                        )
                    self._logger.warning(f"Field conflict detected: {message}")
                    raise InvalidArgument(message)

    def _add(self, operator: str, field_path: str, operand: Any) -> "Operator":
        if not isinstance(field_path, str) or not field_path:
            raise InvalidArgument("Field path must be a non-empty string")
        if field_path.startswith("$"):
            raise InvalidArgument(f"Field path '{field_path}' must not start with '$'")
        self._check_field_conflict(operator, field_path)
        self._operations.setdefault(operator, {})[field_path] = operand
        return self

    def _current(self, operator: str, field_path: str) -> Optional[Any]:
        return self._operations.get(operator, {}).get(field_path)

    @staticmethod
    def _require_number(operator: str, field_path: str, value: Any) -> None:
        if not _is_number(value):
            raise InvalidArgument(
                f"'{operator}' on field '{field_path}' requires a numeric operand, "
                f"got {type(value).__name__}"
            )

    @staticmethod
    def _require_sequence(operator: str, field_path: str, values: Any) -> List[Any]:
        if not isinstance(values, (list, tuple)):
            raise InvalidArgument(
                f"'{operator}' on field '{field_path}' requires a list or tuple, "
                f"got {type(values).__name__}"
            )
        return [prepare_for_storage(v) for v in values]

    # --- field operators ---
    def set(self, field_path: str, value: Any) -> "Operator":
        return self._add("$set", field_path, prepare_for_storage(value))

    def unset(self, field_path: str) -> "Operator":
        return self._add("$unset", field_path, "")

    def increment(self, field_path: str, amount: Union[int, float] = 1) -> "Operator":
        """Add amount to a numeric field; repeated calls on a path sum up."""
        self._require_number("$inc", field_path, amount)
        previous = self._current("$inc", field_path)
        return self._add("$inc", field_path, amount if previous is None else previous + amount)

    def decrement(self, field_path: str, amount: Union[int, float] = 1) -> "Operator":
        self._require_number("$inc", field_path, amount)
        return self.increment(field_path, -amount)

    def multiply(self, field_path: str, factor: Union[int, float]) -> "Operator":
        self._require_number("$mul", field_path, factor)
        return self._add("$mul", field_path, factor)

    def min(self, field_path: str, value: Any) -> "Operator":
        return self._add("$min", field_path, prepare_for_storage(value))

    def max(self, field_path: str, value: Any) -> "Operator":
        return self._add("$max", field_path, prepare_for_storage(value))

    def rename(self, field_path: str, new_path: str) -> "Operator":
        if not isinstance(new_path, str) or not new_path:
            raise InvalidArgument(
                f"'$rename' on field '{field_path}' requires a non-empty target name"
            )
        if paths_overlap(field_path, new_path):
            raise InvalidArgument(
                f"Cannot rename '{field_path}' onto overlapping path '{new_path}'"
            )
        self._check_field_conflict("$rename", new_path)
        return self._add("$rename", field_path, new_path)

    # --- array operators ---
    def push(self, field_path: str, value: Any) -> "Operator":
        """Append a single value; further pushes to the path collect in `$each`."""
        return self._push_values("$push", field_path, [prepare_for_storage(value)], False)

    def push_each(self, field_path: str, values: Iterable[Any]) -> "Operator":
        return self._push_values(
            "$push", field_path, self._require_sequence("$push", field_path, values), True
        )

    def add_to_set(self, field_path: str, value: Any) -> "Operator":
        return self._push_values(
            "$addToSet", field_path, [prepare_for_storage(value)], False
        )

    def add_to_set_each(self, field_path: str, values: Iterable[Any]) -> "Operator":
        return self._push_values(
            "$addToSet",
            field_path,
            self._require_sequence("$addToSet", field_path, values),
            True,
        )

    def _push_values(
        self, operator: str, field_path: str, values: List[Any], force_each: bool
    ) -> "Operator":
        previous = self._current(operator, field_path)
        if previous is None:
            operand = {"$each": values} if force_each else values[0]
        elif isinstance(previous, dict) and "$each" in previous:
            operand = copy.deepcopy(previous)
            operand["$each"].extend(values)
        else:
            operand = {"$each": [previous] + values}
        return self._add(operator, field_path, operand)

    def pull(self, field_path: str, value: Any) -> "Operator":
        """Remove matching elements; value may be a literal or an Expression."""
        to_dict = getattr(value, "to_dict", None)
        operand = to_dict() if callable(to_dict) else prepare_for_storage(value)
        return self._add("$pull", field_path, operand)

    def pull_all(self, field_path: str, values: Iterable[Any]) -> "Operator":
        return self._add(
            "$pullAll", field_path, self._require_sequence("$pullAll", field_path, values)
        )

    def pop_first(self, field_path: str) -> "Operator":
        return self._add("$pop", field_path, -1)

    def pop_last(self, field_path: str) -> "Operator":
        return self._add("$pop", field_path, 1)

    # --- rendering ---
    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Render the canonical update document (a fresh copy every call)."""
        return copy.deepcopy(self._operations)

    @classmethod
    def from_dict(cls, update: Mapping[str, Mapping[str, Any]]) -> "Operator":
        operator = cls()
        for name, paths in update.items():
            if name not in UPDATE_OPERATORS:
                raise InvalidArgument(f"Unknown update operator '{name}'")
            if not isinstance(paths, Mapping):
                raise InvalidArgument(f"Operand of '{name}' must be a mapping")
            for field_path, operand in paths.items():
                operator._add(name, field_path, copy.deepcopy(operand))
        return operator

    def is_empty(self) -> bool:
        return not self._operations

    def __bool__(self) -> bool:
        return bool(self._operations)

    def __len__(self) -> int:
        return sum(len(paths) for paths in self._operations.values())

    def __repr__(self) -> str:
        return f"Operator({self._operations!r})"
