"""Property model for entity schemas.

Entity attributes are JSON-Schema-like property definitions. Besides the
standard keywords, a property may be:

- a caller-identity reference: ``{"$ref": "#user"}``
- an entity reference: ``{"$ref": "#entity/<singular>"}``
- an identity: ``{"format": "id"}``
- a one-way hashed secret: ``{"format": "hash"}``
- a server-evaluated value: ``{"format": "eval:<template>"}``

Each property falls into exactly one PropertyKind. Code that dispatches on
the kind uses a table keyed by it and fails loudly on anything unknown.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any

from inflect import engine

USER_REF = "#user"
ENTITY_REF_PREFIX = "#entity/"
USERS_ENTITY = "users"
EVAL_FORMAT_PREFIX = "eval:"

SYSTEM_DATE_FIELDS = ("createdAt", "updatedAt")

_inflection = engine()

# Keywords that are meaningful to the pipeline but not to JSON Schema
_NON_SCHEMA_KEYWORDS = ("permissions", "unique", "index")


class PropertyKind(Enum):
    """Closed set of property kinds."""

    BOOLEAN_SCHEMA = "boolean_schema"  # `true` / `false` schema
    USER_REF = "user_ref"
    ENTITY_REF = "entity_ref"
    ID = "id"
    HASH = "hash"
    EVAL = "eval"
    DATE_TIME = "date_time"
    ARRAY = "array"
    OBJECT = "object"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    NULL = "null"
    ANY = "any"


class UnknownPropertyKind(Exception):
    """A dispatch table is missing a PropertyKind."""


def unreachable(kind: Any) -> None:
    raise UnknownPropertyKind(f"Unexpected property kind: {kind!r}")


def property_kind(prop: Any) -> PropertyKind:
    """Classify a property definition."""
    if isinstance(prop, bool):
        return PropertyKind.BOOLEAN_SCHEMA

    ref = prop.get("$ref")
    if ref == USER_REF:
        return PropertyKind.USER_REF
    if isinstance(ref, str) and ref.startswith(ENTITY_REF_PREFIX):
        return PropertyKind.ENTITY_REF

    fmt = prop.get("format") or ""
    if fmt == "id":
        return PropertyKind.ID
    if fmt == "hash":
        return PropertyKind.HASH
    if fmt.startswith(EVAL_FORMAT_PREFIX):
        return PropertyKind.EVAL
    if fmt == "date-time":
        return PropertyKind.DATE_TIME

    prop_type = prop.get("type")
    if isinstance(prop_type, list):
        prop_type = next((t for t in prop_type if t != "null"), "null")
    return {
        "array": PropertyKind.ARRAY,
        "object": PropertyKind.OBJECT,
        "boolean": PropertyKind.BOOLEAN,
        "integer": PropertyKind.NUMBER,
        "number": PropertyKind.NUMBER,
        "string": PropertyKind.STRING,
        "null": PropertyKind.NULL,
    }.get(prop_type, PropertyKind.ANY)


def is_entity_ref(prop: Any) -> bool:
    """True for entity references, including caller-identity references."""
    return property_kind(prop) in (PropertyKind.ENTITY_REF, PropertyKind.USER_REF)


def is_system_property(prop: Any) -> bool:
    """True when the engine, not the caller, sets the property value."""
    return property_kind(prop) in (PropertyKind.USER_REF, PropertyKind.EVAL)


def get_singular_entity_ref(prop: Any) -> str | None:
    kind = property_kind(prop)
    if kind == PropertyKind.USER_REF:
        return "user"
    if kind == PropertyKind.ENTITY_REF:
        return prop["$ref"][len(ENTITY_REF_PREFIX):]
    return None


def get_eval_expression(prop: dict[str, Any]) -> str:
    return (prop.get("format") or "")[len(EVAL_FORMAT_PREFIX):]


def find_owner_field(schema: dict[str, Any]) -> str | None:
    """Find the property holding the owning caller identity.

    The users entity is owned through its own identity field; any other
    entity through its first "#user" reference.
    """
    if schema.get("$id") == ENTITY_REF_PREFIX + "user":
        return "id"
    for key, prop in (schema.get("properties") or {}).items():
        if property_kind(prop) == PropertyKind.USER_REF:
            return key
    return None


def singularize(entity_name: str) -> str:
    """Derive a singular entity name from its plural.

    Names that are already singular (or the same in both forms) get an
    ``Item`` suffix so the singular never equals the plural.
    """
    singular = _inflection.singular_noun(entity_name)
    if not singular or singular == entity_name:
        return entity_name + "Item"
    return singular


def validation_schema(
    schema: dict[str, Any],
    required: list[str] | None = None,
) -> dict[str, Any]:
    """Build the plain JSON Schema used to validate request bodies.

    Reference properties become id-formatted strings and pipeline-only
    keywords are removed, recursively. ``required`` replaces the top-level
    required list.
    """
    result = _to_json_schema(copy.deepcopy(schema))
    result.pop("$id", None)
    if required is not None:
        result["required"] = list(required)
    if not result.get("required"):
        result.pop("required", None)
    return result


def _to_json_schema(prop: Any) -> Any:
    if isinstance(prop, bool):
        return prop

    if is_entity_ref(prop):
        converted = {
            k: v for k, v in prop.items()
            if k not in ("$ref", "required", *_NON_SCHEMA_KEYWORDS)
        }
        converted["type"] = "string"
        converted["format"] = "id"
        return converted

    for keyword in _NON_SCHEMA_KEYWORDS:
        prop.pop(keyword, None)
    if isinstance(prop.get("required"), bool):
        prop.pop("required")

    if isinstance(prop.get("properties"), dict):
        prop["properties"] = {
            key: _to_json_schema(child) for key, child in prop["properties"].items()
        }
    items = prop.get("items")
    if isinstance(items, list):
        prop["items"] = [_to_json_schema(item) for item in items]
    elif isinstance(items, dict):
        prop["items"] = _to_json_schema(items)
    return prop
