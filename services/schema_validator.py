# services/schema_validator.py
"""
Compile-once validation of provider payloads against a schema.

A schema is any type pydantic can build a TypeAdapter for (normally a
BaseModel subclass such as models.StructuredTripPlan). Compiled adapters are
kept in a registry keyed by the schema object's identity, so two structurally
identical schema classes are compiled separately.
"""
from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError


@dataclass
class ValidationResult:
    success: bool
    data: Any = None
    errors: List[str] = field(default_factory=list)


class _CompiledSchema:
    __slots__ = ("schema", "adapter", "_json_schema")

    def __init__(self, schema: Any) -> None:
        self.schema = schema  # keeps id(schema) stable for the registry's lifetime
        self.adapter = TypeAdapter(schema)
        self._json_schema: Optional[Dict[str, Any]] = None

    def json_schema(self) -> Dict[str, Any]:
        if self._json_schema is None:
            self._json_schema = self.adapter.json_schema(by_alias=True)
        return self._json_schema


_registry: Dict[int, _CompiledSchema] = {}
_registry_lock = threading.Lock()


def _compiled(schema: Any) -> _CompiledSchema:
    entry = _registry.get(id(schema))
    if entry is not None:
        return entry
    with _registry_lock:
        entry = _registry.get(id(schema))
        if entry is None:
            entry = _CompiledSchema(schema)
            _registry[id(schema)] = entry
    return entry


def get_validator(schema: Any) -> TypeAdapter:
    return _compiled(schema).adapter


def json_schema_for(schema: Any) -> Dict[str, Any]:
    """JSON Schema document (camelCase) sent to the provider; shared, do not mutate."""
    return _compiled(schema).json_schema()


def format_errors(errors: Iterable[Dict[str, Any]]) -> List[str]:
    out: List[str] = []
    for err in errors:
        loc = err.get("loc") or ()
        path = "/" + "/".join(str(p) for p in loc) if loc else "(root)"
        out.append(f"{path} {err.get('msg', '')}".strip())
    return out


def _prune_extra_keys(payload: Any, errors: List[Dict[str, Any]]) -> Tuple[Any, int]:
    pruned = copy.deepcopy(payload)
    removed = 0
    for err in errors:
        if err.get("type") != "extra_forbidden":
            continue
        loc = err.get("loc") or ()
        if not loc:
            continue
        node = pruned
        try:
            for part in loc[:-1]:
                node = node[part]
        except (KeyError, IndexError, TypeError):
            continue
        if isinstance(node, dict) and loc[-1] in node:
            del node[loc[-1]]
            removed += 1
    return pruned, removed


def validate(schema: Any, payload: Any, *, prune_unknown: bool = False) -> ValidationResult:
    """
    Validate `payload` against `schema`, collecting every violation.

    Numeric strings are coerced to numbers (and numbers to strings where the
    schema wants text). Unknown keys fail validation unless `prune_unknown`
    is set, in which case they are dropped from a copy and the copy is
    validated again; any remaining structural error still fails.
    """
    adapter = get_validator(schema)
    try:
        return ValidationResult(success=True, data=adapter.validate_python(payload))
    except ValidationError as exc:
        raw_errors = exc.errors(include_url=False)

    if prune_unknown:
        pruned, removed = _prune_extra_keys(payload, raw_errors)
        if removed:
            try:
                return ValidationResult(success=True, data=adapter.validate_python(pruned))
            except ValidationError as exc:
                raw_errors = exc.errors(include_url=False)

    return ValidationResult(success=False, errors=format_errors(raw_errors))
