# src/async_docstore/base/expression.py
import copy
import logging
import re
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from .exceptions import InvalidArgument
from .utils import is_comparable, prepare_for_storage

log = logging.getLogger(__name__)

LOGICAL_OPERATORS = ("$and", "$or", "$nor")

# Mongo "$type" aliases accepted by where_type
TYPE_ALIASES = {
    "double", "string", "object", "array", "binData", "objectId", "bool",
    "date", "null", "regex", "int", "timestamp", "long", "decimal", "number",
}


def _is_operator_mapping(value: Any) -> bool:
    """True for sub-mappings like {"$gt": 1}, False for literal equality values."""
    return (
        isinstance(value, dict)
        and bool(value)
        and all(isinstance(k, str) and k.startswith("$") for k in value)
    )


# --- Field Proxy Conditions ---
class Condition:
    """Base class for conditions produced through the field proxy."""

    def __and__(self, other: "Condition") -> "CombinedCondition":
        log.debug(f"Combining conditions with AND: {self!r} & {other!r}")
        return CombinedCondition("$and", self, other)

    def __or__(self, other: "Condition") -> "CombinedCondition":
        log.debug(f"Combining conditions with OR: {self!r} | {other!r}")
        return CombinedCondition("$or", self, other)

    def apply(self, expression: "Expression") -> None:
        raise NotImplementedError


class FieldCondition(Condition):
    """A single `path <operator> value` condition."""

    def __init__(self, field_path: str, operator: str, value: Any):
        self.field_path = field_path
        self.operator = operator
        self.value = value

    def apply(self, expression: "Expression") -> None:
        if self.operator == "$eq":
            expression.where(self.field_path, self.value)
        else:
            expression.add_operator(self.field_path, self.operator, self.value)

    def __repr__(self) -> str:
        return (
            f"FieldCondition({self.field_path!r}, {self.operator!r}, "
            f"{self.value!r})"
        )


class CombinedCondition(Condition):
    """Combines two conditions with $and or $or."""

    def __init__(self, logical_operator: str, left: Condition, right: Condition):
        if logical_operator not in ("$and", "$or"):
            raise ValueError("logical_operator must be '$and' or '$or'")
        self.logical_operator = logical_operator
        self.left = left
        self.right = right

    def apply(self, expression: "Expression") -> None:
        left, right = Expression(), Expression()
        self.left.apply(left)
        self.right.apply(right)
        expression.add_logical(self.logical_operator, [left, right])

    def __repr__(self) -> str:
        return (
            f"CombinedCondition({self.logical_operator!r}, {self.left!r}, "
            f"{self.right!r})"
        )


class Field:
    """Represents a queryable field path."""

    _path: str

    def __init__(self, path: str):
        object.__setattr__(self, "_path", path)

    @property
    def path(self) -> str:
        return self._path

    def _op(self, operator: str, other: Any) -> FieldCondition:
        return FieldCondition(self._path, operator, other)

    def __eq__(self, other: Any) -> FieldCondition:  # type: ignore[override]
        return self._op("$eq", other)

    def __ne__(self, other: Any) -> FieldCondition:  # type: ignore[override]
        return self._op("$ne", other)

    def __gt__(self, other: Any) -> FieldCondition:
        return self._op("$gt", other)

    def __ge__(self, other: Any) -> FieldCondition:
        return self._op("$gte", other)

    def __lt__(self, other: Any) -> FieldCondition:
        return self._op("$lt", other)

    def __le__(self, other: Any) -> FieldCondition:
        return self._op("$lte", other)

    __hash__ = None  # type: ignore[assignment]

    def in_(self, values: Union[List, Set, Tuple]) -> FieldCondition:
        return self._op("$in", values)

    def nin(self, values: Union[List, Set, Tuple]) -> FieldCondition:
        return self._op("$nin", values)

    def all_(self, values: Union[List, Set, Tuple]) -> FieldCondition:
        return self._op("$all", values)

    def exists(self, exists_value: bool = True) -> FieldCondition:
        return self._op("$exists", exists_value)

    def size(self, length: int) -> FieldCondition:
        return self._op("$size", length)

    def __getattr__(self, name: str) -> "Field":
        if name.startswith("_"):
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            )
        return Field(f"{self._path}.{name}")

    def __getitem__(self, key: Union[int, str]) -> "Field":
        if isinstance(key, int) and key < 0:
            raise IndexError("Negative indexing is not supported for field paths")
        if not isinstance(key, (int, str)):
            raise TypeError(
                f"Field index must be an integer or string, got {type(key).__name__}"
            )
        return Field(f"{self._path}.{key}")

    def __setattr__(self, name: str, value: Any):
        raise AttributeError(f"Cannot set attribute '{name}' on Field object.")

    def __repr__(self) -> str:
        return f"Field(path={self._path!r})"


class FieldsProxy:
    """Hands out Field objects for any attribute name."""

    def __getattr__(self, name: str) -> Field:
        if name.startswith("_"):
            raise AttributeError(name)
        return Field(name)

    def __getitem__(self, path: str) -> Field:
        return Field(path)


Criteria = Union["Expression", Mapping[str, Any], Callable[["Expression"], Any]]


# --- Expression Builder ---
class Expression:
    """
    Fluent builder for a filter document.

    Comparison calls on the same path merge into one operator sub-mapping,
    `where()` replaces whatever the path held, and logical combinators append
    nested filters to their list. All builder methods return `self`.

    Example:
        >>> expr = Expression().where_greater("age", 18).where_less("age", 65)
        >>> expr.to_dict()
        {'age': {'$gt': 18, '$lt': 65}}
    """

    def __init__(self, criteria: Optional[Mapping[str, Any]] = None):
        self._filter: Dict[str, Any] = {}
        self.fields = FieldsProxy()
        if criteria:
            self.merge(criteria)

    # --- core mutators ---
    def where(self, path: str, value: Any) -> "Expression":
        """Set implicit equality on path, replacing any previous constraint."""
        self._check_path(path)
        self._filter[path] = prepare_for_storage(value)
        return self

    def add_operator(self, path: str, operator: str, value: Any) -> "Expression":
        """Merge `{operator: value}` into the sub-mapping for path."""
        self._check_path(path)
        if operator in ("$gt", "$gte", "$lt", "$lte"):
            self._check_comparable(path, operator, value)
        elif operator in ("$in", "$nin", "$all"):
            value = self._check_sequence(path, operator, value)
        elif operator == "$exists" and not isinstance(value, bool):
            raise InvalidArgument(
                f"Operator '$exists' on field '{path}' requires a boolean value"
            )

        value = prepare_for_storage(value)
        existing = self._filter.get(path)
        if path not in self._filter:
            self._filter[path] = {operator: value}
        elif _is_operator_mapping(existing):
            existing[operator] = value
        else:
            # Literal equality set earlier is kept as $eq
            self._filter[path] = {"$eq": existing, operator: value}
        log.debug(f"Filter on '{path}' is now {self._filter[path]!r}")
        return self

    def add_logical(
        self, operator: str, criteria: Iterable[Criteria]
    ) -> "Expression":
        if operator not in LOGICAL_OPERATORS:
            raise InvalidArgument(f"Unknown logical operator '{operator}'")
        rendered = [self._render_criteria(c) for c in criteria]
        if not rendered:
            raise InvalidArgument(f"'{operator}' requires at least one expression")
        self._filter.setdefault(operator, []).extend(rendered)
        return self

    # --- comparison ---
    def where_not_equal(self, path: str, value: Any) -> "Expression":
        return self.add_operator(path, "$ne", value)

    def where_greater(self, path: str, value: Any) -> "Expression":
        return self.add_operator(path, "$gt", value)

    def where_greater_or_equal(self, path: str, value: Any) -> "Expression":
        return self.add_operator(path, "$gte", value)

    def where_less(self, path: str, value: Any) -> "Expression":
        return self.add_operator(path, "$lt", value)

    def where_less_or_equal(self, path: str, value: Any) -> "Expression":
        return self.add_operator(path, "$lte", value)

    def where_between(self, path: str, low: Any, high: Any) -> "Expression":
        """Inclusive range on path."""
        return self.where_greater_or_equal(path, low).where_less_or_equal(path, high)

    # --- membership ---
    def where_in(self, path: str, values: Iterable[Any]) -> "Expression":
        return self.add_operator(path, "$in", values)

    def where_not_in(self, path: str, values: Iterable[Any]) -> "Expression":
        return self.add_operator(path, "$nin", values)

    def where_all(self, path: str, values: Iterable[Any]) -> "Expression":
        return self.add_operator(path, "$all", values)

    # --- existence and type ---
    def where_exists(self, path: str) -> "Expression":
        return self.add_operator(path, "$exists", True)

    def where_not_exists(self, path: str) -> "Expression":
        return self.add_operator(path, "$exists", False)

    def where_null(self, path: str) -> "Expression":
        return self.where(path, None)

    def where_type(self, path: str, type_name: Union[str, int]) -> "Expression":
        if isinstance(type_name, str) and type_name not in TYPE_ALIASES:
            raise InvalidArgument(f"Unknown type '{type_name}' for field '{path}'")
        return self.add_operator(path, "$type", type_name)

    # --- strings ---
    def where_like(
        self, path: str, pattern: str, case_insensitive: bool = True
    ) -> "Expression":
        """Match strings containing pattern, where '%' is a wildcard."""
        if not isinstance(pattern, str):
            raise InvalidArgument(f"Pattern for field '{path}' must be a string")
        regex = ".*".join(re.escape(part) for part in pattern.split("%"))
        return self.where_regex(path, regex, "i" if case_insensitive else "")

    def where_regex(self, path: str, pattern: str, options: str = "") -> "Expression":
        if not isinstance(pattern, str):
            raise InvalidArgument(f"Pattern for field '{path}' must be a string")
        try:
            re.compile(pattern)
        except re.error as e:
            raise InvalidArgument(f"Invalid pattern for field '{path}': {e}") from e
        self.add_operator(path, "$regex", pattern)
        if options:
            self.add_operator(path, "$options", options)
        else:
            sub = self._filter[path]
            sub.pop("$options", None)
        return self

    # --- arrays and numbers ---
    def where_size(self, path: str, length: int) -> "Expression":
        if isinstance(length, bool) or not isinstance(length, int) or length < 0:
            raise InvalidArgument(
                f"Size for field '{path}' must be a non-negative integer"
            )
        return self.add_operator(path, "$size", length)

    def where_mod(self, path: str, divisor: int, remainder: int) -> "Expression":
        if isinstance(divisor, bool) or not isinstance(divisor, int) or divisor == 0:
            raise InvalidArgument(f"Divisor for field '{path}' must be a non-zero integer")
        return self.add_operator(path, "$mod", [divisor, remainder])

    def where_elem_match(self, path: str, criteria: Criteria) -> "Expression":
        """Require at least one array element of path to match criteria."""
        return self.add_operator(path, "$elemMatch", self._render_criteria(criteria))

    # --- logical ---
    def where_or(self, *criteria: Criteria) -> "Expression":
        return self.add_logical("$or", self._flatten(criteria))

    def where_and(self, *criteria: Criteria) -> "Expression":
        return self.add_logical("$and", self._flatten(criteria))

    def where_nor(self, *criteria: Criteria) -> "Expression":
        return self.add_logical("$nor", self._flatten(criteria))

    def filter(self, condition: Condition) -> "Expression":
        """Apply a condition built with the field proxy (e.g. `fields.age > 3`)."""
        if not isinstance(condition, Condition):
            raise InvalidArgument(
                f"filter() expects a condition built from fields, got {type(condition).__name__}"
            )
        condition.apply(self)
        return self

    def merge(self, other: Union["Expression", Mapping[str, Any]]) -> "Expression":
        """Merge another filter in, path by path."""
        rendered = other.to_dict() if isinstance(other, Expression) else dict(other)
        for path, value in rendered.items():
            if path in LOGICAL_OPERATORS:
                self._filter.setdefault(path, []).extend(copy.deepcopy(value))
            elif _is_operator_mapping(value):
                for operator, operand in value.items():
                    self.add_operator(path, operator, operand)
            else:
                self.where(path, value)
        return self

    # --- rendering ---
    def to_dict(self) -> Dict[str, Any]:
        """Render the canonical filter document (a fresh copy every call)."""
        return copy.deepcopy(self._filter)

    @classmethod
    def from_dict(cls, criteria: Mapping[str, Any]) -> "Expression":
        expression = cls()
        expression._filter = copy.deepcopy(dict(criteria))
        return expression

    def is_empty(self) -> bool:
        return not self._filter

    def __bool__(self) -> bool:
        return bool(self._filter)

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Expression):
            return self._filter == other._filter
        if isinstance(other, Mapping):
            return self._filter == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._filter!r})"

    # --- helpers ---
    @staticmethod
    def _flatten(criteria: Tuple[Any, ...]) -> List[Criteria]:
        flat: List[Criteria] = []
        for item in criteria:
            if isinstance(item, (list, tuple)):
                flat.extend(item)
            else:
                flat.append(item)
        return flat

    @staticmethod
    def _render_criteria(criteria: Criteria) -> Dict[str, Any]:
        if isinstance(criteria, Expression):
            return criteria.to_dict()
        if isinstance(criteria, Condition):
            return Expression().filter(criteria).to_dict()
        if isinstance(criteria, Mapping):
            return prepare_for_storage(dict(criteria))
        if callable(criteria):
            nested = Expression()
            criteria(nested)
            return nested.to_dict()
        raise InvalidArgument(
            f"Expected an Expression, mapping or callable, got {type(criteria).__name__}"
        )

    @staticmethod
    def _check_path(path: str) -> None:
        if not isinstance(path, str) or not path:
            raise InvalidArgument("Field path must be a non-empty string")
        if path.startswith("$"):
            raise InvalidArgument(f"Field path '{path}' must not start with '$'")

    @staticmethod
    def _check_comparable(path: str, operator: str, value: Any) -> None:
        if not is_comparable(value):
            raise InvalidArgument(
                f"Field '{path}': value {value!r} of type {type(value).__name__} "
                f"cannot be used with '{operator}'"
            )

    @staticmethod
    def _check_sequence(path: str, operator: str, value: Any) -> List[Any]:
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise InvalidArgument(
                f"Operator '{operator}' on field '{path}' requires a list, set or tuple"
            )
        return list(value)
