# src/async_docstore/base/validation.py

"""
Rule-based document validation.

Rules are immutable declarations attached to a document class. The
RuleSetValidator evaluates every rule against a snapshot of the document's
fields and returns all violations found; it never mutates the snapshot.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from numbers import Number
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bson import DBRef, ObjectId

from .exceptions import InvalidArgument
from .utils import lookup_nested_value

log = logging.getLogger(__name__)

Fields = Union[str, Tuple[str, ...]]

TYPE_NUMERIC = "numeric"
TYPE_STRING = "string"
TYPE_BOOLEAN = "boolean"
TYPE_ARRAY = "array"
TYPE_DATE = "date"
TYPE_DOCUMENT = "document"
TYPE_REFERENCE = "reference"

_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    TYPE_NUMERIC: lambda v: isinstance(v, (Number, Decimal)) and not isinstance(v, bool),
    TYPE_STRING: lambda v: isinstance(v, str),
    TYPE_BOOLEAN: lambda v: isinstance(v, bool),
    TYPE_ARRAY: lambda v: isinstance(v, (list, tuple)),
    TYPE_DATE: lambda v: isinstance(v, (datetime, date)),
    TYPE_DOCUMENT: lambda v: isinstance(v, Mapping),
    TYPE_REFERENCE: lambda v: isinstance(v, (DBRef, ObjectId)),
}

# Pragmatic address check, not a full RFC 5322 parser
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# --- Rules ---
@dataclass(frozen=True)
class Rule:
    """Base rule: one field path or a tuple of paths."""

    fields: Fields

    @property
    def kind(self) -> str:
        return type(self).__name__.lower()

    def field_paths(self) -> Tuple[str, ...]:
        return (self.fields,) if isinstance(self.fields, str) else tuple(self.fields)

    def params(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class Required(Rule):
    pass


@dataclass(frozen=True)
class TypeCheck(Rule):
    type: str = TYPE_STRING

    def __post_init__(self):
        if self.type not in _TYPE_CHECKS:
            raise InvalidArgument(
                f"Unknown type '{self.type}', expected one of {sorted(_TYPE_CHECKS)}"
            )

    def params(self) -> Dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class Regexp(Rule):
    pattern: str = ""

    def params(self) -> Dict[str, Any]:
        return {"pattern": self.pattern}


@dataclass(frozen=True)
class Email(Rule):
    pass


@dataclass(frozen=True)
class Range(Rule):
    min: Optional[Any] = None
    max: Optional[Any] = None

    def params(self) -> Dict[str, Any]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class Length(Rule):
    min: Optional[int] = None
    max: Optional[int] = None

    def params(self) -> Dict[str, Any]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class Membership(Rule):
    values: Tuple[Any, ...] = ()

    def params(self) -> Dict[str, Any]:
        return {"values": list(self.values)}


@dataclass(frozen=True)
class CrossField(Rule):
    """The field must equal another field of the same document."""

    other: str = ""

    def params(self) -> Dict[str, Any]:
        return {"other": self.other}


@dataclass(frozen=True)
class Predicate(Rule):
    """User-supplied check receiving (value, snapshot)."""

    check: Callable[[Any, Mapping[str, Any]], bool] = field(default=lambda v, d: True)
    message: str = "is invalid"


@dataclass(frozen=True)
class Violation:
    field: str
    rule: str
    params: Dict[str, Any]
    message: str


class RuleSetValidator:
    """Evaluates a fixed rule set against document snapshots."""

    def __init__(self, rules: Sequence[Rule]):
        for rule in rules:
            if not isinstance(rule, Rule):
                raise InvalidArgument(
                    f"Validation rules must be Rule instances, got {type(rule).__name__}"
                )
        self._rules: Tuple[Rule, ...] = tuple(rules)

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def validate(self, snapshot: Mapping[str, Any]) -> List[Violation]:
        violations: List[Violation] = []
        for rule in self._rules:
            for path in rule.field_paths():
                found, value = lookup_nested_value(snapshot, path)
                violation = self._check(rule, path, found, value, snapshot)
                if violation is not None:
                    violations.append(violation)
        if violations:
            log.debug(f"Validation produced {len(violations)} violation(s)")
        return violations

    def _check(
        self,
        rule: Rule,
        path: str,
        found: bool,
        value: Any,
        snapshot: Mapping[str, Any],
    ) -> Optional[Violation]:
        if isinstance(rule, Required):
            if not found or value is None:
                return self._violation(rule, path, "is required")
            return None

        # Absent fields satisfy every other rule
        if not found or value is None:
            return None

        if isinstance(rule, TypeCheck):
            if not _TYPE_CHECKS[rule.type](value):
                return self._violation(
                    rule, path, f"must be of type {rule.type}",
                    actual=type(value).__name__,
                )
        elif isinstance(rule, Email):
            if not isinstance(value, str) or not _EMAIL_PATTERN.match(value):
                return self._violation(rule, path, "must be a valid email address")
        elif isinstance(rule, Regexp):
            if not isinstance(value, str) or not re.search(rule.pattern, value):
                return self._violation(rule, path, f"must match {rule.pattern}")
        elif isinstance(rule, Range):
            return self._check_bounds(rule, path, value, value, "must be")
        elif isinstance(rule, Length):
            try:
                size = len(value)
            except TypeError:
                return self._violation(rule, path, "has no length", actual=None)
            return self._check_bounds(rule, path, value, size, "length must be")
        elif isinstance(rule, Membership):
            if value not in rule.values:
                return self._violation(
                    rule, path, f"must be one of {list(rule.values)!r}", actual=value
                )
        elif isinstance(rule, CrossField):
            _, other_value = lookup_nested_value(snapshot, rule.other)
            if value != other_value:
                return self._violation(rule, path, f"must be equal to {rule.other}")
        elif isinstance(rule, Predicate):
            if not rule.check(value, snapshot):
                return self._violation(rule, path, rule.message)
        return None

    def _check_bounds(
        self, rule: Union[Range, Length], path: str, value: Any, measured: Any, prefix: str
    ) -> Optional[Violation]:
        try:
            too_low = rule.min is not None and measured < rule.min
            too_high = rule.max is not None and measured > rule.max
        except TypeError:
            return self._violation(rule, path, f"{prefix} comparable", actual=measured)
        if too_low or too_high:
            if rule.min is not None and rule.max is not None:
                bound = f"between {rule.min} and {rule.max}"
            elif rule.min is not None:
                bound = f"at least {rule.min}"
            else:
                bound = f"at most {rule.max}"
            return self._violation(rule, path, f"{prefix} {bound}", actual=measured)
        return None

    @staticmethod
    def _violation(rule: Rule, path: str, text: str, **extra: Any) -> Violation:
        params = rule.params()
        params.update(extra)
        return Violation(
            field=path, rule=rule.kind, params=params, message=f"{path} {text}"
        )
