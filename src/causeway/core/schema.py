"""Schema validation glue over pydantic ``TypeAdapter``.

A schema is anything ``TypeAdapter`` accepts: a ``BaseModel`` subclass, a
``TypedDict``, a builtin or typing construct, or ``None`` for "no value".
Adapters are cached per schema since building one compiles a validator.

Payloads are returned in their validated form (a model instance for a
``BaseModel`` schema). Results are only checked: the handler's own return
value is what callers receive.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python

from causeway.core.errors import (
    PayloadValidationError,
    ResultValidationError,
    SchemaValidationError,
    StepOutputValidationError,
)

_adapters: dict[Any, TypeAdapter[Any]] = {}


def get_adapter(schema: Any) -> TypeAdapter[Any]:
    if schema is None:
        schema = type(None)
    try:
        adapter = _adapters.get(schema)
    except TypeError:
        # unhashable schema objects are compiled on every call
        return TypeAdapter(schema)
    if adapter is None:
        adapter = TypeAdapter(schema)
        _adapters[schema] = adapter
    return adapter


def _describe(exc: ValidationError) -> tuple[str, str | None, list[dict[str, Any]]]:
    errors = exc.errors(include_url=False)
    first = errors[0] if errors else {}
    loc = first.get("loc") or ()
    field = ".".join(str(part) for part in loc) or None
    message = first.get("msg", str(exc))
    details = f"{field}: {message}" if field else message
    if len(errors) > 1:
        details += f" (+{len(errors) - 1} more)"
    summary = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]
    return details, field, summary


def _validate(
    error_cls: type[SchemaValidationError], kind: str, name: str, schema: Any, value: Any
) -> Any:
    try:
        return get_adapter(schema).validate_python(value)
    except ValidationError as exc:
        details, field, summary = _describe(exc)
        raise error_cls(kind, name, details, field=field, errors=summary) from exc


def validate_payload(kind: str, name: str, schema: Any, value: Any) -> Any:
    """Validate inbound data; returns the validated value.

    Raises:
        PayloadValidationError: with ``field`` set when pydantic reports a location
    """
    return _validate(PayloadValidationError, kind, name, schema, value)


def validate_result(kind: str, name: str, schema: Any, value: Any) -> Any:
    """Check a handler's return value; returns it unchanged."""
    _validate(ResultValidationError, kind, name, schema, value)
    return value


def validate_step_output(workflow: str, step: str, schema: Any, value: Any) -> Any:
    """Check a step's output; returns it unchanged."""
    try:
        get_adapter(schema).validate_python(value)
    except ValidationError as exc:
        details, field, summary = _describe(exc)
        raise StepOutputValidationError(
            workflow, step, details, field=field, errors=summary
        ) from exc
    return value


def to_jsonable(value: Any) -> Any:
    """Convert a payload or result to JSON-compatible primitives for transport."""
    return to_jsonable_python(value)


__all__ = [
    "get_adapter",
    "validate_payload",
    "validate_result",
    "validate_step_output",
    "to_jsonable",
]
