from __future__ import annotations

import math
from typing import Any, Mapping, Union

from ..errors import ProtocolViolation

# The closed set of values a tool argument may hold once validated.
ArgValue = Union[str, int, float, bool, None, list["ArgValue"], dict[str, "ArgValue"]]

_JSON_TYPES = ("string", "integer", "number", "boolean", "array", "object", "null")


def _type_name(v: Any) -> str:
    if v is None:
        return "null"
    if isinstance(v, bool):
        return "boolean"
    if isinstance(v, int):
        return "integer"
    if isinstance(v, float):
        return "number"
    if isinstance(v, str):
        return "string"
    if isinstance(v, (list, tuple)):
        return "array"
    if isinstance(v, Mapping):
        return "object"
    return type(v).__name__


def _check_value(value: Any, schema: Mapping[str, Any], where: str) -> ArgValue:
    expected = schema.get("type")
    allowed = [expected] if isinstance(expected, str) else list(expected or [])
    actual = _type_name(value)

    if allowed:
        ok = actual in allowed
        # JSON has one number type; accept integral floats for "integer"
        # and ints for "number".
        if not ok and "integer" in allowed and actual == "number" and float(value).is_integer():
            value, ok = int(value), True
        if not ok and "number" in allowed and actual == "integer":
            ok = True
        if not ok:
            raise ProtocolViolation(f"{where}: expected {' or '.join(allowed)}, got {actual}")

    if actual not in _JSON_TYPES:
        raise ProtocolViolation(f"{where}: unsupported value type {actual}")
    if actual == "number" and not math.isfinite(value):
        raise ProtocolViolation(f"{where}: number must be finite")

    enum = schema.get("enum")
    if enum is not None and value not in enum:
        raise ProtocolViolation(f"{where}: {value!r} is not one of {list(enum)}")

    if actual == "array":
        item_schema = schema.get("items") or {}
        return [_check_value(v, item_schema, f"{where}[{i}]") for i, v in enumerate(value)]
    if actual == "object":
        return validate_arguments(schema, value, where=where)
    return value


def validate_arguments(schema: Mapping[str, Any], raw: Any, *, where: str = "arguments") -> dict[str, ArgValue]:
    """Validate a model-supplied payload against a tool's JSON-schema subset.

    Supports type, properties, required, enum, items, additionalProperties.
    Key order of the input is preserved. Any mismatch raises ProtocolViolation.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ProtocolViolation(f"{where}: expected object, got {_type_name(raw)}")

    props: Mapping[str, Any] = schema.get("properties") or {}
    additional = schema.get("additionalProperties", "properties" not in schema)

    for name in schema.get("required") or []:
        if name not in raw:
            raise ProtocolViolation(f"{where}: missing required field '{name}'")

    out: dict[str, ArgValue] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise ProtocolViolation(f"{where}: non-string key {key!r}")
        if key in props:
            out[key] = _check_value(value, props[key], f"{where}.{key}")
        elif additional is False:
            raise ProtocolViolation(f"{where}: unexpected field '{key}'")
        elif isinstance(additional, Mapping):
            out[key] = _check_value(value, additional, f"{where}.{key}")
        else:
            out[key] = _check_value(value, {}, f"{where}.{key}")
    return out
