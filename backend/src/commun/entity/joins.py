"""Join property resolution.

A join is a query against another entity whose values may reference the
current record or the caller: ``{"post": "{this.id}"}``. A join whose
query cannot be fully resolved yields nothing, never an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from commun.entity.expressions import (
    ExpressionError,
    UnresolvedPathError,
    evaluate_template,
    is_template,
)
from commun.entity.values import parse_property_value
from commun.errors import BadRequestError
from commun.metadata.types import JoinDefinition

if TYPE_CHECKING:
    from commun.registry import Registry

logger = logging.getLogger(__name__)


async def build_join_query(
    registry: "Registry",
    join: JoinDefinition,
    entity_name: str,
    record: dict[str, Any],
    user_id: str | None = None,
) -> dict[str, Any] | None:
    """Resolve the placeholders of a join query.

    Returns:
        The concrete query, or None if any placeholder has no value
    """
    target_properties = registry.get_config(join.entity).properties
    query: dict[str, Any] = {}
    for key, value in join.query.items():
        if is_template(value):
            try:
                value = await evaluate_template(
                    value, registry, entity_name, record, user_id=user_id, strict=True
                )
            except UnresolvedPathError:
                return None
            except ExpressionError as e:
                logger.warning("Invalid join query %s.%s: %s", join.entity, key, e)
                return None
        if isinstance(value, dict) and "id" in value:
            value = value["id"]
        if value is None:
            return None

        prop = target_properties.get(key)
        if prop is not None:
            try:
                value = parse_property_value(prop, value, key)
            except BadRequestError:
                return None
        query[key] = value
    return query


async def resolve_join(
    registry: "Registry",
    join: JoinDefinition,
    entity_name: str,
    record: dict[str, Any],
    user_id: str | None = None,
) -> dict[str, Any] | list[dict[str, Any]] | None:
    """Fetch the records a join points at.

    Returns:
        The first match (or None) for "findOne", all matches for "findMany"
    """
    query = await build_join_query(registry, join, entity_name, record, user_id)
    if query is None:
        return [] if join.type == "findMany" else None

    dao = registry.get_dao(join.entity)
    if join.type == "findMany":
        return await dao.find(query)
    return await dao.find_one(query)
