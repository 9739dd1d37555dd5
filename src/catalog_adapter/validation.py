"""Compile OpenAPI schema fragments into runtime validators.

``compile_schema`` is total: every schema maps to one of the validator
variants below, and shapes it does not understand become ``AnyValidator``.
Validators are immutable and safe to share between concurrent calls.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Tuple, Union

from pydantic import AnyUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError


logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_URL_ADAPTER = TypeAdapter(AnyUrl)
ROOT_PATH = "$"
_COMPOSITION_KEYWORDS = ("allOf", "anyOf", "oneOf")


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str
    expected: Optional[str] = None
    received: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "message": self.message,
            "expected": self.expected,
            "received": self.received,
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    data: Any = None
    errors: List[ValidationIssue] = field(default_factory=list)

    def error_dicts(self) -> List[Dict[str, Any]]:
        return [issue.to_dict() for issue in self.errors]


def json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _child(path: Tuple[Union[str, int], ...], key: Union[str, int]) -> Tuple[Union[str, int], ...]:
    return (*path, key)


def _issue(path: Tuple[Union[str, int], ...], message: str, expected: str, received: Any) -> ValidationIssue:
    dotted = ".".join(str(p) for p in path) or ROOT_PATH
    return ValidationIssue(dotted, message, expected, str(received))


class _Validator:
    nullable: bool

    def __call__(self, value: Any) -> ValidationResult:
        issues = self.check(value, ())
        if issues:
            return ValidationResult(valid=False, errors=issues)
        return ValidationResult(valid=True, data=value)

    def check(self, value: Any, path: Tuple[Union[str, int], ...]) -> List[ValidationIssue]:
        if value is None and self.nullable:
            return []
        return self._check(value, path)

    def _check(self, value: Any, path: Tuple[Union[str, int], ...]) -> List[ValidationIssue]:
        raise NotImplementedError


def _type_issue(path: Tuple[Union[str, int], ...], expected: str, value: Any) -> List[ValidationIssue]:
    received = json_type(value)
    return [_issue(path, f"Expected {expected}, received {received}", expected, received)]


@dataclass(frozen=True)
class StringValidator(_Validator):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[Pattern[str]] = None
    format: Optional[str] = None
    nullable: bool = False

    def _check(self, value, path):
        if not isinstance(value, str):
            return _type_issue(path, "string", value)
        issues: List[ValidationIssue] = []
        if self.min_length is not None and len(value) < self.min_length:
            issues.append(
                _issue(path, f"String must contain at least {self.min_length} character(s)", "too_small", len(value))
            )
        if self.max_length is not None and len(value) > self.max_length:
            issues.append(
                _issue(path, f"String must contain at most {self.max_length} character(s)", "too_big", len(value))
            )
        if self.pattern is not None and not self.pattern.search(value):
            issues.append(_issue(path, f"String must match pattern {self.pattern.pattern}", "pattern", value))
        if self.format and not _format_ok(self.format, value):
            issues.append(_issue(path, f"Invalid {self.format}", self.format, value))
        return issues


def _format_ok(fmt: str, value: str) -> bool:
    if fmt == "email":
        return bool(_EMAIL_RE.match(value))
    if fmt in ("uri", "url"):
        try:
            _URL_ADAPTER.validate_python(value)
        except PydanticValidationError:
            return False
        return True
    if fmt == "uuid":
        try:
            uuid.UUID(value)
        except ValueError:
            return False
        return True
    return True


@dataclass(frozen=True)
class NumberValidator(_Validator):
    integer: bool = False
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    nullable: bool = False

    def _check(self, value, path):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return _type_issue(path, "integer" if self.integer else "number", value)
        if self.integer and isinstance(value, float) and not value.is_integer():
            return [_issue(path, "Expected integer, received float", "integer", value)]
        issues: List[ValidationIssue] = []
        if self.minimum is not None and value < self.minimum:
            issues.append(_issue(path, f"Number must be greater than or equal to {self.minimum}", "too_small", value))
        if self.maximum is not None and value > self.maximum:
            issues.append(_issue(path, f"Number must be less than or equal to {self.maximum}", "too_big", value))
        return issues


@dataclass(frozen=True)
class BooleanValidator(_Validator):
    nullable: bool = False

    def _check(self, value, path):
        if not isinstance(value, bool):
            return _type_issue(path, "boolean", value)
        return []


@dataclass(frozen=True)
class AnyValidator(_Validator):
    nullable: bool = True

    def _check(self, value, path):
        return []


@dataclass(frozen=True)
class ArrayValidator(_Validator):
    items: _Validator = AnyValidator()
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    nullable: bool = False

    def _check(self, value, path):
        if not isinstance(value, list):
            return _type_issue(path, "array", value)
        issues: List[ValidationIssue] = []
        if self.min_items is not None and len(value) < self.min_items:
            issues.append(_issue(path, f"Array must contain at least {self.min_items} element(s)", "too_small", len(value)))
        if self.max_items is not None and len(value) > self.max_items:
            issues.append(_issue(path, f"Array must contain at most {self.max_items} element(s)", "too_big", len(value)))
        for index, item in enumerate(value):
            issues.extend(self.items.check(item, _child(path, index)))
        return issues


@dataclass(frozen=True)
class ObjectValidator(_Validator):
    fields: Dict[str, _Validator] = field(default_factory=dict)
    required: FrozenSet[str] = frozenset()
    additional_properties: bool = True
    nullable: bool = False

    def _check(self, value, path):
        if not isinstance(value, dict):
            return _type_issue(path, "object", value)
        issues: List[ValidationIssue] = []
        for name in sorted(self.required):
            if name not in value:
                issues.append(_issue(_child(path, name), "Required", "present", "undefined"))
        for name, validator in self.fields.items():
            if name in value:
                issues.extend(validator.check(value[name], _child(path, name)))
        if not self.additional_properties:
            unknown = [key for key in value if key not in self.fields]
            for key in unknown:
                issues.append(_issue(_child(path, key), f"Unrecognized key: '{key}'", "never", json_type(value[key])))
        return issues


@dataclass(frozen=True)
class AllOfValidator(_Validator):
    branches: Tuple[_Validator, ...] = ()
    nullable: bool = False

    def _check(self, value, path):
        issues: List[ValidationIssue] = []
        for branch in self.branches:
            issues.extend(branch.check(value, path))
        return issues


@dataclass(frozen=True)
class AnyOfValidator(_Validator):
    branches: Tuple[_Validator, ...] = ()
    nullable: bool = False

    def _check(self, value, path):
        for branch in self.branches:
            if not branch.check(value, path):
                return []
        received = json_type(value)
        return [_issue(path, "Invalid input: no union member matched", "union", received)]


Validator = Union[
    StringValidator,
    NumberValidator,
    BooleanValidator,
    ArrayValidator,
    ObjectValidator,
    AllOfValidator,
    AnyOfValidator,
    AnyValidator,
]


def compile_schema(schema: Any) -> Validator:
    """Compile ``schema`` into a validator. Never raises."""
    try:
        return _compile(schema)
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning("Falling back to unchecked validator for schema: %s", exc)
        return AnyValidator()


def _compile(schema: Any) -> Validator:
    if not isinstance(schema, dict) or "$ref" in schema:
        return AnyValidator()

    nullable = bool(schema.get("nullable", False))
    schema_type = schema.get("type")
    if schema_type is None and "properties" in schema:
        schema_type = "object"

    if isinstance(schema_type, list):
        members = [t for t in schema_type if t != "null"]
        allows_null = nullable or "null" in schema_type
        base = {k: v for k, v in schema.items() if k not in _COMPOSITION_KEYWORDS}
        branches = tuple(_compile({**base, "type": t, "nullable": allows_null}) for t in members)
        typed: Optional[Validator] = _union(branches, allows_null)
    else:
        typed = _compile_typed(schema, schema_type, nullable)

    composite = _compile_composition(schema, nullable)
    if typed is not None and composite is not None:
        return AllOfValidator((typed, composite), nullable=nullable)
    return typed or composite or AnyValidator()


def _union(branches: Tuple[Validator, ...], nullable: bool) -> Validator:
    if not branches:
        return AnyValidator()
    if len(branches) == 1:
        return branches[0]
    return AnyOfValidator(branches, nullable=nullable)


def _compile_typed(schema: Dict[str, Any], schema_type: Any, nullable: bool) -> Optional[Validator]:
    if schema_type == "string":
        return StringValidator(
            min_length=schema.get("minLength"),
            max_length=schema.get("maxLength"),
            pattern=_compile_pattern(schema.get("pattern")),
            format=schema.get("format"),
            nullable=nullable,
        )
    if schema_type in ("number", "integer"):
        return NumberValidator(
            integer=schema_type == "integer",
            minimum=schema.get("minimum"),
            maximum=schema.get("maximum"),
            nullable=nullable,
        )
    if schema_type == "boolean":
        return BooleanValidator(nullable=nullable)
    if schema_type == "array":
        return ArrayValidator(
            items=_compile(schema.get("items")),
            min_items=schema.get("minItems"),
            max_items=schema.get("maxItems"),
            nullable=nullable,
        )
    if schema_type == "object":
        properties = schema.get("properties") or {}
        return ObjectValidator(
            fields={name: _compile(prop) for name, prop in properties.items()},
            required=frozenset(schema.get("required") or []),
            additional_properties=schema.get("additionalProperties") is not False,
            nullable=nullable,
        )
    return None


def _compile_composition(schema: Dict[str, Any], nullable: bool) -> Optional[Validator]:
    if schema.get("allOf"):
        branches = tuple(_compile(s) for s in schema["allOf"])
        if len(branches) == 1:
            return branches[0]
        return AllOfValidator(branches, nullable=nullable)
    for keyword in ("anyOf", "oneOf"):
        # oneOf exclusivity is not enforced.
        if schema.get(keyword):
            return _union(tuple(_compile(s) for s in schema[keyword]), nullable)
    return None


def _compile_pattern(pattern: Optional[str]) -> Optional[Pattern[str]]:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        logger.warning("Ignoring invalid pattern %r: %s", pattern, exc)
        return None
