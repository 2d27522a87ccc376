"""Query-string helpers for list requests: sort, filter and cursors.

Filter mini-language:
    name:John;age:30            both must match
    or[name:John;name:Jane]     either matches
    and[or[a:1;a:2];b:3]        groups nest
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any

from commun.entity.values import parse_property_value
from commun.errors import BadRequestError

COMPARATORS = {
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
}

_GROUP = re.compile(r"^(and|or)\[(.*)]$", re.IGNORECASE | re.DOTALL)


# =============================================================================
# Sort
# =============================================================================


def parse_sort(order_by: str | None) -> list[tuple[str, int]]:
    """Parse ``field:asc|desc``. Any direction other than asc is descending.

    Sorting by createdAt is sorting by id, as ids are time-ordered.
    """
    if not order_by or not order_by.strip():
        return []
    key, _, direction = order_by.strip().partition(":")
    key = key.strip()
    if not key:
        raise BadRequestError("Invalid sort")
    if key == "createdAt":
        key = "id"
    return [(key, 1 if direction.strip().lower() == "asc" else -1)]


def with_id_tiebreaker(sort: list[tuple[str, int]]) -> list[tuple[str, int]]:
    """Sort keys used by the store, always ending with the identity.

    Without a sort the newest records come first.
    """
    if not sort:
        return [("id", -1)]
    if any(key == "id" for key, _ in sort):
        return list(sort)
    return [*sort, ("id", sort[-1][1])]


# =============================================================================
# Filter
# =============================================================================


def str_to_api_filter(value: str) -> dict[str, Any]:
    """Parse the filter mini-language into the structured filter form.

    The structured form maps a field to ``{"value": ..., "comparator": ...}``
    and ``and``/``or`` to lists of structured filters.
    """
    text = value.strip()
    match = _GROUP.match(text)
    if match:
        operator = match.group(1).lower()
        return {operator: [str_to_api_filter(part) for part in _split_top_level(match.group(2))]}

    api_filter: dict[str, Any] = {}
    for pair in text.split(";"):
        if not pair.strip():
            continue
        key, separator, field_value = pair.partition(":")
        if not separator or not key.strip():
            raise BadRequestError(f"Invalid filter '{pair}'")
        api_filter[key.strip()] = {"value": field_value}
    return api_filter


def _split_top_level(text: str) -> list[str]:
    parts = [""]
    level = 0
    for char in text.strip():
        if char == "[":
            level += 1
        elif char == "]":
            level -= 1
        if level == 0 and char == ";":
            parts.append("")
        else:
            parts[-1] += char
    if level != 0:
        raise BadRequestError("Invalid filter: unbalanced brackets")
    return [part for part in parts if part.strip()]


def parse_filter(api_filter: dict[str, Any], properties: dict[str, Any]) -> dict[str, Any]:
    """Convert a structured filter into a store query.

    Values are coerced through the declared property type.

    Raises:
        BadRequestError: On unknown comparators or uncoercible values
    """
    if not isinstance(api_filter, dict):
        raise BadRequestError("Invalid filter")

    query: dict[str, Any] = {}
    for key, filter_value in api_filter.items():
        if key in ("and", "or"):
            if not isinstance(filter_value, list):
                raise BadRequestError(f"Invalid filter: '{key}' expects a list")
            query["$" + key] = [parse_filter(sub, properties) for sub in filter_value]
            continue

        if isinstance(filter_value, dict):
            raw = filter_value.get("value")
            comparator = filter_value.get("comparator") or "="
        else:
            raw, comparator = filter_value, "="

        prop = properties.get(key)
        value = raw
        if prop is not None and raw is not None:
            value = parse_property_value(prop, raw, key)

        if comparator == "=":
            query[key] = value
        elif comparator in COMPARATORS:
            query[key] = {COMPARATORS[comparator]: value}
        else:
            raise BadRequestError(f"Invalid filter comparator '{comparator}'")
    return query


def filter_from_query(value: Any, properties: dict[str, Any]) -> dict[str, Any]:
    """Build a store query from a ``filter`` request parameter.

    Accepts a structured filter, its JSON encoding, or the mini-language.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("{"):
            try:
                value = json.loads(text)
            except ValueError:
                raise BadRequestError("Invalid filter")
        else:
            value = str_to_api_filter(text)
    return parse_filter(value, properties)


# =============================================================================
# Cursors
# =============================================================================


def encode_pagination_cursor(item: dict[str, Any], sort: list[tuple[str, int]]) -> str:
    """Encode the sort-key values of an item (plus its id) as a cursor."""
    keys = [key for key, _ in sort]
    if "id" not in keys:
        keys.append("id")
    data = {}
    for key in keys:
        value = item.get(key)
        # Projected references are {"id": ...} stubs or populated records
        if isinstance(value, dict) and "id" in value:
            value = value["id"]
        data[key] = value
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def decode_pagination_cursor(cursor: str | None) -> dict[str, Any] | None:
    """Decode a cursor. Malformed cursors decode to None."""
    if not cursor:
        return None
    try:
        data = json.loads(base64.b64decode(cursor.strip(), validate=True).decode("utf-8"))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data
