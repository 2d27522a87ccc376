"""Value coercion for entity properties.

Turns raw request input into the typed values that get persisted. Each
PropertyKind has a resolver; plain values go through
``parse_property_value`` which walks nested objects and arrays.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from commun.auth.password import PasswordService
from commun.entity.expressions import evaluate_template
from commun.entity.schema import (
    PropertyKind,
    get_eval_expression,
    property_kind,
    unreachable,
)
from commun.errors import BadRequestError, ServerError
from commun.persistence.ids import to_id

if TYPE_CHECKING:
    from commun.registry import Registry

logger = logging.getLogger(__name__)


# =============================================================================
# Plain value parsing
# =============================================================================


def parse_property_value(prop: Any, value: Any, key: str = "value") -> Any:
    """Coerce a raw value to the type declared by a property.

    Args:
        prop: Property definition
        value: Raw value (not None)
        key: Property path, used in error messages

    Raises:
        BadRequestError: If the value cannot be coerced
    """
    kind = property_kind(prop)
    parser = _PARSERS.get(kind)
    if parser is None:
        unreachable(kind)
    return parser(prop, value, key)


def _parse_boolean(prop: Any, value: Any, key: str) -> bool:
    return value is True or value == "true"


def _parse_id(prop: Any, value: Any, key: str) -> str:
    try:
        return to_id(value)
    except ValueError:
        raise BadRequestError(f"{key} is not a valid ID")


def _parse_date_time(prop: Any, value: Any, key: str) -> datetime:
    return parse_datetime(value, key)


def parse_datetime(value: Any, key: str = "value") -> datetime:
    """Parse an epoch-milliseconds number or an ISO 8601 string to UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        text = str(value).strip()
        try:
            parsed = datetime.fromtimestamp(float(text) / 1000, tz=timezone.utc)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                raise BadRequestError(f"{key} must be a valid date-time")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_array(prop: dict, value: Any, key: str) -> list:
    if not isinstance(value, list):
        raise BadRequestError(f"{key} must be an array")
    items = prop.get("items")
    if not isinstance(items, (dict, bool)):
        return value
    return [
        parse_property_value(items, item, f"{key}.{i}")
        for i, item in enumerate(value)
        if item is not None
    ]


def _parse_object(prop: dict, value: Any, key: str) -> Any:
    properties = prop.get("properties")
    if not properties:
        return value
    if not isinstance(value, dict):
        raise BadRequestError(f"{key} must be an object")
    result = {}
    for child_key, child_prop in properties.items():
        child_value = value.get(child_key)
        if child_value is None and isinstance(child_prop, dict):
            child_value = child_prop.get("default")
        if child_value is not None:
            result[child_key] = parse_property_value(
                child_prop, child_value, f"{key}.{child_key}"
            )
    return result


def _parse_number(prop: Any, value: Any, key: str) -> int | float:
    if isinstance(value, bool):
        raise BadRequestError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise BadRequestError(f"{key} must be a number")
    if isinstance(number, float) and not math.isfinite(number):
        raise BadRequestError(f"{key} must be a number")
    return number


def _parse_string(prop: Any, value: Any, key: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_null(prop: Any, value: Any, key: str) -> None:
    return None


def _parse_any(prop: Any, value: Any, key: str) -> Any:
    return value


_PARSERS = {
    PropertyKind.BOOLEAN_SCHEMA: _parse_boolean,
    PropertyKind.USER_REF: _parse_id,
    PropertyKind.ENTITY_REF: _parse_id,
    PropertyKind.ID: _parse_id,
    PropertyKind.HASH: _parse_string,
    PropertyKind.EVAL: _parse_any,
    PropertyKind.DATE_TIME: _parse_date_time,
    PropertyKind.ARRAY: _parse_array,
    PropertyKind.OBJECT: _parse_object,
    PropertyKind.BOOLEAN: _parse_boolean,
    PropertyKind.NUMBER: _parse_number,
    PropertyKind.STRING: _parse_string,
    PropertyKind.NULL: _parse_null,
    PropertyKind.ANY: _parse_any,
}


# =============================================================================
# Field resolution
# =============================================================================


class ValueResolver:
    """Computes the persisted value of each property of one entity.

    Usage:
        resolver = ValueResolver(registry, "posts")
        value = await resolver.resolve(prop, "title", body, user_id="...")
    """

    def __init__(
        self,
        registry: "Registry",
        entity_name: str,
        password_service: PasswordService | None = None,
    ):
        self.registry = registry
        self.entity_name = entity_name
        self.password_service = password_service or PasswordService()
        self._resolvers = {
            PropertyKind.USER_REF: self._resolve_user_ref,
            PropertyKind.ID: self._resolve_id,
            PropertyKind.HASH: self._resolve_hash,
            PropertyKind.EVAL: self._resolve_eval,
            PropertyKind.BOOLEAN_SCHEMA: self._resolve_plain,
            PropertyKind.ENTITY_REF: self._resolve_plain,
            PropertyKind.DATE_TIME: self._resolve_plain,
            PropertyKind.ARRAY: self._resolve_plain,
            PropertyKind.OBJECT: self._resolve_plain,
            PropertyKind.BOOLEAN: self._resolve_plain,
            PropertyKind.NUMBER: self._resolve_plain,
            PropertyKind.STRING: self._resolve_plain,
            PropertyKind.NULL: self._resolve_plain,
            PropertyKind.ANY: self._resolve_plain,
        }

    async def resolve(
        self,
        prop: Any,
        key: str,
        data: dict[str, Any],
        user_id: str | None = None,
        ignore_default: bool = False,
        required: bool = False,
    ) -> Any:
        """Resolve one property value from request data.

        Args:
            prop: Property definition
            key: Property name
            data: Request body
            user_id: Caller identity
            ignore_default: Skip declared defaults (partial updates)
            required: Whether the property is required

        Returns:
            The typed value, or None when nothing should be stored

        Raises:
            BadRequestError: For invalid or missing client input
            ServerError: If an ``eval:`` template fails to evaluate
        """
        default = None
        if isinstance(prop, dict) and not ignore_default:
            default = prop.get("default")

        kind = property_kind(prop)
        resolver = self._resolvers.get(kind)
        if resolver is None:
            unreachable(kind)
        return await resolver(prop, key, data, user_id, default, required)

    async def _resolve_user_ref(self, prop, key, data, user_id, default, required):
        value = user_id or default
        if not value:
            if required:
                raise BadRequestError(f"{key} is required")
            return None
        return _parse_id(prop, value, key)

    async def _resolve_id(self, prop, key, data, user_id, default, required):
        value = data.get(key) or default
        if not value:
            return None
        return _parse_id(prop, value, key)

    async def _resolve_hash(self, prop, key, data, user_id, default, required):
        value = data.get(key) or default
        if value is None or value == "":
            return None
        return await asyncio.to_thread(self.password_service.hash, str(value))

    async def _resolve_eval(self, prop, key, data, user_id, default, required):
        expression = get_eval_expression(prop)
        if not expression:
            return ""
        try:
            value = await evaluate_template(
                expression,
                self.registry,
                self.entity_name,
                data,
                user_id=user_id,
            )
        except Exception as e:
            logger.error("Evaluation failed for property %s: %s", key, e)
            raise ServerError() from e

        if not value:
            if required and default is None:
                raise BadRequestError(f"{key} is required")
            return default
        return value

    async def _resolve_plain(self, prop, key, data, user_id, default, required):
        value = data.get(key)
        if value is None:
            value = default
        if value is None:
            return None
        return parse_property_value(prop, value, key)
