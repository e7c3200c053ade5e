# src/async_docstore/memory/matching.py

"""
Filter evaluation, update application and aggregation over plain dicts,
following the store's semantics closely enough for tests and embedding.
"""

import copy
import logging
import re
from datetime import date, datetime
from decimal import Decimal
from numbers import Number
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from bson import DBRef, ObjectId

from async_docstore.base.utils import (lookup_nested_value, set_nested_value,
                                       unset_nested_value)

log = logging.getLogger(__name__)


class QueryError(Exception):
    """Raised for filters, updates or stages the in-memory engine rejects."""

    def __init__(self, message: str, code: int = 2):
        self.code = code
        super().__init__(message)


PATH_NOT_VIABLE = 28

_MISSING = object()

_TYPE_NAMES = {
    "double": lambda v: isinstance(v, float),
    "string": lambda v: isinstance(v, str),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "binData": lambda v: isinstance(v, bytes),
    "objectId": lambda v: isinstance(v, ObjectId),
    "bool": lambda v: isinstance(v, bool),
    "date": lambda v: isinstance(v, datetime),
    "null": lambda v: v is None,
    "int": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "long": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "decimal": lambda v: isinstance(v, Decimal),
    "number": lambda v: isinstance(v, Number) and not isinstance(v, bool),
}


# --- Ordering ---
def _type_rank(value: Any) -> int:
    if value is _MISSING or value is None:
        return 1
    if isinstance(value, bool):
        return 8
    if isinstance(value, (Number, Decimal)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, dict):
        return 4
    if isinstance(value, list):
        return 5
    if isinstance(value, bytes):
        return 6
    if isinstance(value, ObjectId):
        return 7
    if isinstance(value, (datetime, date)):
        return 9
    return 10


def sort_key(value: Any) -> Tuple[int, Any]:
    """Key that orders mixed values by type first, like the store does."""
    rank = _type_rank(value)
    if rank in (1,):
        return rank, 0
    if rank in (4, 5, 10):
        return rank, repr(value)
    return rank, value


def _compare(left: Any, right: Any) -> Optional[int]:
    """Three-way compare of same-typed values; None when not comparable."""
    if _type_rank(left) != _type_rank(right) or left is _MISSING:
        return None
    try:
        return (left > right) - (left < right)
    except TypeError:
        return None


# --- Path resolution ---
def resolve(document: Any, path: str) -> List[Any]:
    """
    Resolve a dot path to every candidate value, fanning out over arrays of
    sub-documents. Returns an empty list when nothing exists at the path.
    """
    return list(_resolve(document, path.split(".")))


def _resolve(current: Any, parts: List[str]) -> Iterable[Any]:
    if not parts:
        yield current
        return
    head, rest = parts[0], parts[1:]
    if isinstance(current, dict):
        if head in current:
            yield from _resolve(current[head], rest)
    elif isinstance(current, list):
        if head.isdigit():
            index = int(head)
            if index < len(current):
                yield from _resolve(current[index], rest)
        else:
            for element in current:
                if isinstance(element, dict):
                    yield from _resolve(element, parts)


# --- Matching ---
def match(document: Mapping[str, Any], criteria: Mapping[str, Any]) -> bool:
    if not isinstance(criteria, Mapping):
        raise QueryError("Filter must be a mapping")
    for key, condition in criteria.items():
        if key == "$and":
            if not all(match(document, c) for c in _clauses(key, condition)):
                return False
        elif key == "$or":
            if not any(match(document, c) for c in _clauses(key, condition)):
                return False
        elif key == "$nor":
            if any(match(document, c) for c in _clauses(key, condition)):
                return False
        elif key.startswith("$"):
            raise QueryError(f"unknown top level operator: {key}")
        elif not _match_field(document, key, condition):
            return False
    return True


def _clauses(operator: str, clauses: Any) -> List[Mapping[str, Any]]:
    if not isinstance(clauses, list) or not clauses:
        raise QueryError(f"{operator} must be a nonempty array")
    return clauses


def _is_operator_mapping(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def _match_field(document: Mapping[str, Any], path: str, condition: Any) -> bool:
    return _match_values(resolve(document, path), condition)


def _match_values(values: List[Any], condition: Any) -> bool:
    if _is_operator_mapping(condition):
        for operator, operand in condition.items():
            if operator == "$options":
                continue
            if not _apply_operator(values, operator, operand, condition):
                return False
        return True
    return _equals_any(values, condition)


def _candidates(values: List[Any]) -> List[Any]:
    """Values plus the elements of array values (implicit array matching)."""
    out: List[Any] = []
    for value in values:
        out.append(value)
        if isinstance(value, list):
            out.extend(value)
    return out


def _equals_any(values: List[Any], operand: Any) -> bool:
    if not values:
        return operand is None
    return any(_equal(c, operand) for c in _candidates(values))


def _equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _apply_operator(values: List[Any], operator: str, operand: Any, condition: Mapping[str, Any]) -> bool:
    if operator == "$eq":
        return _equals_any(values, operand)
    if operator == "$ne":
        return not _equals_any(values, operand)
    if operator in ("$gt", "$gte", "$lt", "$lte"):
        for candidate in _candidates(values):
            result = _compare(candidate, operand)
            if result is None:
                continue
            if (
                (operator == "$gt" and result > 0)
                or (operator == "$gte" and result >= 0)
                or (operator == "$lt" and result < 0)
                or (operator == "$lte" and result <= 0)
            ):
                return True
        return False
    if operator == "$in":
        if not isinstance(operand, list):
            raise QueryError("$in needs an array")
        return any(_equals_any(values, item) for item in operand)
    if operator == "$nin":
        if not isinstance(operand, list):
            raise QueryError("$nin needs an array")
        return not any(_equals_any(values, item) for item in operand)
    if operator == "$exists":
        return bool(values) == bool(operand)
    if operator == "$all":
        if not isinstance(operand, list):
            raise QueryError("$all needs an array")
        arrays = [v for v in values if isinstance(v, list)]
        return bool(operand) and any(
            all(any(_equal(e, item) for e in array) for item in operand)
            for array in arrays
        )
    if operator == "$size":
        return any(isinstance(v, list) and len(v) == operand for v in values)
    if operator == "$regex":
        flags = _regex_flags(condition.get("$options", ""))
        pattern = re.compile(operand, flags)
        return any(
            isinstance(c, str) and pattern.search(c) is not None
            for c in _candidates(values)
        )
    if operator == "$type":
        check = _TYPE_NAMES.get(operand) if isinstance(operand, str) else None
        if check is None:
            raise QueryError(f"Unknown type name alias: {operand}")
        return any(check(c) for c in _candidates(values))
    if operator == "$mod":
        divisor, remainder = operand
        return any(
            isinstance(c, Number) and not isinstance(c, bool) and c % divisor == remainder
            for c in _candidates(values)
        )
    if operator == "$elemMatch":
        for value in values:
            if not isinstance(value, list):
                continue
            for element in value:
                if _is_operator_mapping(operand):
                    if all(
                        _apply_operator([element], op, arg, operand)
                        for op, arg in operand.items()
                        if op != "$options"
                    ):
                        return True
                elif isinstance(element, dict) and match(element, operand):
                    return True
        return False
    if operator == "$not":
        return not _match_values(values, operand)
    raise QueryError(f"unknown operator: {operator}")


def _regex_flags(options: str) -> int:
    flags = 0
    if "i" in options:
        flags |= re.IGNORECASE
    if "m" in options:
        flags |= re.MULTILINE
    if "s" in options:
        flags |= re.DOTALL
    if "x" in options:
        flags |= re.VERBOSE
    return flags


# --- Updates ---
def apply_update(document: Dict[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a new document with the update operators applied."""
    if not update:
        raise QueryError("Update document requires atomic operators", code=9)
    new_doc = copy.deepcopy(document)
    for operator, changes in update.items():
        if not isinstance(changes, Mapping):
            raise QueryError(f"Modifiers operate on fields but we found {changes!r}", code=9)
        for path, operand in changes.items():
            if path == "_id" or path.startswith("_id."):
                raise QueryError(
                    "Performing an update on the path '_id' would modify the immutable field '_id'",
                    code=66,
                )
            _apply_one(new_doc, operator, path, operand)
    return new_doc


def _apply_one(doc: Dict[str, Any], operator: str, path: str, operand: Any) -> None:
    found, current = lookup_nested_value(doc, path)
    if operator == "$set":
        if not set_nested_value(doc, path, copy.deepcopy(operand)):
            raise QueryError(f"Cannot create field along path '{path}'", code=PATH_NOT_VIABLE)
    elif operator == "$unset":
        unset_nested_value(doc, path)
    elif operator in ("$inc", "$mul"):
        if found and not _is_number(current):
            raise QueryError(
                f"Cannot apply {operator} to a value of non-numeric type", code=14
            )
        base = current if found else 0
        set_nested_value(doc, path, base + operand if operator == "$inc" else base * operand)
    elif operator in ("$min", "$max"):
        if not found:
            set_nested_value(doc, path, operand)
        else:
            result = _compare(operand, current)
            if result is None:
                result = (sort_key(operand) > sort_key(current)) - (sort_key(operand) < sort_key(current))
            if (operator == "$min" and result < 0) or (operator == "$max" and result > 0):
                set_nested_value(doc, path, operand)
    elif operator == "$rename":
        if found:
            unset_nested_value(doc, path)
            set_nested_value(doc, operand, current)
    elif operator in ("$push", "$addToSet"):
        array = _array_at(operator, path, found, current)
        items = operand["$each"] if isinstance(operand, dict) and "$each" in operand else [operand]
        for item in items:
            if operator == "$push" or not any(_equal(e, item) for e in array):
                array.append(copy.deepcopy(item))
        set_nested_value(doc, path, array)
    elif operator in ("$pull", "$pullAll"):
        if not found:
            return
        array = _array_at(operator, path, found, current)
        if operator == "$pullAll":
            kept = [e for e in array if not any(_equal(e, v) for v in operand)]
        elif _is_operator_mapping(operand):
            kept = [e for e in array if not _match_values([e], operand)]
        elif isinstance(operand, dict):
            kept = [e for e in array if not (isinstance(e, dict) and match(e, operand))]
        else:
            kept = [e for e in array if not _equal(e, operand)]
        set_nested_value(doc, path, kept)
    elif operator == "$pop":
        if not found:
            return
        array = _array_at(operator, path, found, current)
        if array:
            array.pop(0 if operand == -1 else -1)
        set_nested_value(doc, path, array)
    else:
        raise QueryError(f"Unknown modifier: {operator}", code=9)


def _array_at(operator: str, path: str, found: bool, current: Any) -> List[Any]:
    if not found or current is None:
        return []
    if not isinstance(current, list):
        raise QueryError(
            f"The field '{path}' must be an array to apply {operator}", code=2
        )
    return list(current)


def _is_number(value: Any) -> bool:
    return isinstance(value, (Number, Decimal)) and not isinstance(value, bool)


def upsert_seed(criteria: Mapping[str, Any]) -> Dict[str, Any]:
    """Equality parts of a filter, used as the base of an upserted document."""
    seed: Dict[str, Any] = {}
    for path, condition in criteria.items():
        if path.startswith("$"):
            continue
        if _is_operator_mapping(condition):
            if "$eq" in condition:
                set_nested_value(seed, path, copy.deepcopy(condition["$eq"]))
        else:
            set_nested_value(seed, path, copy.deepcopy(condition))
    return seed


# --- Projection and sorting ---
def project(document: Dict[str, Any], projection: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not projection:
        return document
    include = [k for k, v in projection.items() if v and k != "_id"]
    exclude = [k for k, v in projection.items() if not v]
    if include and [k for k in exclude if k != "_id"]:
        raise QueryError("Cannot do exclusion and inclusion in the same projection", code=31254)
    if include or not exclude:
        out: Dict[str, Any] = {}
        if projection.get("_id", 1) and "_id" in document:
            out["_id"] = document["_id"]
        for path in include:
            found, value = lookup_nested_value(document, path)
            if found:
                set_nested_value(out, path, value)
        return out
    out = copy.deepcopy(document)
    for path in exclude:
        unset_nested_value(out, path)
    return out


def sort_documents(documents: List[Dict[str, Any]], sort: Sequence[Tuple[str, int]]) -> List[Dict[str, Any]]:
    for path, direction in reversed(list(sort)):
        documents.sort(
            key=lambda d: sort_key(lookup_nested_value(d, path)[1]),
            reverse=direction < 0,
        )
    return documents


# --- Aggregation ---
def aggregate(documents: List[Dict[str, Any]], pipeline: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    out = [copy.deepcopy(d) for d in documents]
    for stage in pipeline:
        if not isinstance(stage, Mapping) or len(stage) != 1:
            raise QueryError(
                "A pipeline stage specification object must contain exactly one field.",
                code=40323,
            )
        name, spec = next(iter(stage.items()))
        if name == "$match":
            out = [d for d in out if match(d, spec)]
        elif name == "$project":
            out = [_project_stage(d, spec) for d in out]
        elif name == "$addFields" or name == "$set":
            for d in out:
                for path, expr in spec.items():
                    set_nested_value(d, path, evaluate(d, expr))
        elif name == "$sort":
            out = sort_documents(out, list(spec.items()))
        elif name == "$skip":
            out = out[spec:]
        elif name == "$limit":
            out = out[:spec]
        elif name == "$group":
            out = _group(out, spec)
        elif name == "$count":
            out = [{spec: len(out)}] if out else []
        elif name == "$unwind":
            out = _unwind(out, spec)
        else:
            raise QueryError(f"Unrecognized pipeline stage name: '{name}'", code=40324)
    return out


def evaluate(document: Mapping[str, Any], expression: Any) -> Any:
    """Evaluate a small subset of aggregation expressions."""
    if isinstance(expression, str) and expression.startswith("$"):
        return lookup_nested_value(document, expression[1:])[1]
    if isinstance(expression, dict) and len(expression) == 1:
        operator, arg = next(iter(expression.items()))
        if operator == "$literal":
            return arg
        if operator in ("$add", "$multiply", "$subtract", "$concat"):
            values = [evaluate(document, a) for a in arg]
            if operator == "$concat":
                return "".join(str(v) for v in values)
            if operator == "$subtract":
                return values[0] - values[1]
            result = 0 if operator == "$add" else 1
            for v in values:
                result = result + v if operator == "$add" else result * v
            return result
        if operator == "$size":
            value = evaluate(document, arg)
            return len(value) if isinstance(value, list) else None
    if isinstance(expression, dict):
        return {k: evaluate(document, v) for k, v in expression.items()}
    return expression


def _project_stage(document: Dict[str, Any], spec: Mapping[str, Any]) -> Dict[str, Any]:
    flags = {k: v for k, v in spec.items() if isinstance(v, (bool, int))}
    computed = {k: v for k, v in spec.items() if k not in flags}
    if not computed:
        return project(document, flags)
    out: Dict[str, Any] = {}
    if flags.get("_id", 1) and "_id" in document:
        out["_id"] = document["_id"]
    for path, flag in flags.items():
        found, value = lookup_nested_value(document, path)
        if flag and path != "_id" and found:
            set_nested_value(out, path, value)
    for path, expr in computed.items():
        set_nested_value(out, path, evaluate(document, expr))
    return out


def _unwind(documents: List[Dict[str, Any]], spec: Any) -> List[Dict[str, Any]]:
    path = spec if isinstance(spec, str) else spec.get("path")
    preserve = isinstance(spec, dict) and spec.get("preserveNullAndEmptyArrays", False)
    if not isinstance(path, str) or not path.startswith("$"):
        raise QueryError("$unwind requires a path prefixed with '$'", code=28818)
    path = path[1:]
    out = []
    for d in documents:
        found, array = lookup_nested_value(d, path)
        if isinstance(array, list) and array:
            for item in array:
                nd = copy.deepcopy(d)
                set_nested_value(nd, path, item)
                out.append(nd)
        elif found and array is not None and not isinstance(array, list):
            out.append(d)
        elif preserve:
            out.append(d)
    return out


def _group(documents: List[Dict[str, Any]], spec: Mapping[str, Any]) -> List[Dict[str, Any]]:
    if "_id" not in spec:
        raise QueryError("a group specification must include an _id", code=15955)
    accumulators = {k: v for k, v in spec.items() if k != "_id"}
    buckets: Dict[str, Dict[str, Any]] = {}
    counts: Dict[str, int] = {}
    for d in documents:
        group_id = evaluate(d, spec["_id"])
        key = repr(sort_key(group_id))
        if key not in buckets:
            buckets[key] = {"_id": group_id}
            counts[key] = 0
            for field, acc in accumulators.items():
                operator = next(iter(acc))
                buckets[key][field] = [] if operator in ("$push", "$addToSet") else None
        counts[key] += 1
        bucket = buckets[key]
        for field, acc in accumulators.items():
            operator, arg = next(iter(acc.items()))
            value = evaluate(d, arg)
            current = bucket[field]
            if operator in ("$sum", "$avg"):
                addend = value if _is_number(value) else 0
                bucket[field] = addend if current is None else current + addend
            elif operator == "$min":
                if value is not None and (current is None or sort_key(value) < sort_key(current)):
                    bucket[field] = value
            elif operator == "$max":
                if value is not None and (current is None or sort_key(value) > sort_key(current)):
                    bucket[field] = value
            elif operator == "$first":
                if counts[key] == 1:
                    bucket[field] = value
            elif operator == "$last":
                bucket[field] = value
            elif operator == "$push":
                current.append(value)
            elif operator == "$addToSet":
                if not any(_equal(e, value) for e in current):
                    current.append(value)
            else:
                raise QueryError(f"unknown group operator '{operator}'", code=15952)
    for key, bucket in buckets.items():
        for field, acc in accumulators.items():
            if next(iter(acc)) == "$avg" and bucket[field] is not None:
                bucket[field] = bucket[field] / counts[key]
    return list(buckets.values())


def distinct(documents: Iterable[Mapping[str, Any]], path: str) -> List[Any]:
    values: List[Any] = []
    for d in documents:
        for value in resolve(d, path):
            for item in (value if isinstance(value, list) else [value]):
                if not any(_equal(item, v) and type(item) is type(v) for v in values):
                    values.append(item)
    return values


def reference_key(value: Any) -> Any:
    """Hashable identity for _id values, including DBRefs and dicts."""
    if isinstance(value, (dict, list)):
        return repr(sort_key(value))
    if isinstance(value, DBRef):
        return repr(value)
    return value
