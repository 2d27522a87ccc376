"""Entity request controller.

Runs the list, get, create, update and delete pipelines of one entity:
permission checks, body validation and value coercion, persistence,
lifecycle hooks and response projection.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from commun.api.utils import (
    decode_pagination_cursor,
    encode_pagination_cursor,
    filter_from_query,
    parse_sort,
    with_id_tiebreaker,
)
from commun.auth.password import PasswordService
from commun.auth.permissions import get_auth_permissions, has_valid_permission
from commun.auth.types import AuthPermissions
from commun.controllers.request import EntityRequest
from commun.entity.joins import resolve_join
from commun.entity.schema import (
    PropertyKind,
    find_owner_field,
    is_entity_ref,
    property_kind,
)
from commun.entity.validation import EntityValidator
from commun.entity.values import ValueResolver, parse_property_value
from commun.errors import (
    BadRequestError,
    ClientError,
    DuplicateKeyError,
    NotFoundError,
    UnauthorizedError,
)
from commun.metadata.types import EntityConfig, PermissionRule
from commun.persistence.adapter import FindOptions
from commun.persistence.ids import is_valid_id

if TYPE_CHECKING:
    from commun.persistence.adapter import EntityDao
    from commun.registry import Registry

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# How many levels of join properties a response expands
DEFAULT_JOIN_DEPTH = 3


@dataclass
class PageInfo:
    start_cursor: str | None = None
    end_cursor: str | None = None
    has_previous_page: bool | None = None
    has_next_page: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.start_cursor is not None:
            result["startCursor"] = self.start_cursor
        if self.end_cursor is not None:
            result["endCursor"] = self.end_cursor
        if self.has_previous_page is not None:
            result["hasPreviousPage"] = self.has_previous_page
        if self.has_next_page is not None:
            result["hasNextPage"] = self.has_next_page
        return result


@dataclass
class ListRequestedKeys:
    """Optional parts of a list result the caller asked for.

    Attributes:
        page_info: Report hasPreviousPage and hasNextPage
        has_next_page: Fetch one extra record to detect a next page
        total_count: Count every matching record (a separate query)
    """

    page_info: bool = False
    has_next_page: bool = False
    total_count: bool = False

    @classmethod
    def all(cls, total_count: bool = False) -> "ListRequestedKeys":
        return cls(page_info=True, has_next_page=True, total_count=total_count)


class EntityController:
    """Request pipelines for one registered entity.

    Usage:
        controller = registry.get_controller("posts")
        result = await controller.list(EntityRequest(query={"first": "10"}))
    """

    def __init__(
        self,
        entity_name: str,
        registry: "Registry",
        password_service: PasswordService | None = None,
    ):
        self.entity_name = entity_name
        self.registry = registry
        self.password_service = password_service or PasswordService()
        self._validator: EntityValidator | None = None

    @property
    def config(self) -> EntityConfig:
        return self.registry.get_config(self.entity_name)

    @property
    def dao(self) -> "EntityDao":
        return self.registry.get_dao(self.entity_name)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def list(
        self,
        request: EntityRequest,
        requested_keys: ListRequestedKeys | None = None,
    ) -> dict[str, Any]:
        """List one page of records.

        Returns:
            {"items": [...], "pageInfo": {...}} plus "totalCount" when requested
        """
        requested_keys = requested_keys or ListRequestedKeys()
        query = request.query
        config = self.config

        auth = await self.get_auth_permissions(request)
        # Entities readable only by their owners are filtered per record
        if config.permissions.get != "own":
            self.validate_action_permissions(auth, None, "get")

        order_by = query.get("sort") or query.get("orderBy") or query.get("orderby")
        sort = with_id_tiebreaker(parse_sort(order_by if isinstance(order_by, str) else None))

        filter: dict[str, Any] = {}
        if query.get("filter"):
            filter = filter_from_query(query["filter"], config.properties)

        search = query.get("search")
        if search and isinstance(search, str):
            filter["$text"] = {"$search": search, "$fields": self.searchable_fields(auth)}

        limit = _positive_int(query.get("first")) or DEFAULT_PAGE_SIZE
        limit = min(limit, MAX_PAGE_SIZE)
        if requested_keys.has_next_page:
            limit += 1

        skip = _positive_int(query.get("last")) or 0
        before = decode_pagination_cursor(_str_or_none(query.get("before")))
        after = decode_pagination_cursor(_str_or_none(query.get("after")))
        populate = self.get_populate(request)

        result = await self.dao.find_and_return_cursor(
            filter,
            FindOptions(
                sort=sort,
                limit=limit,
                skip=skip,
                after=after,
                before=before,
                count=requested_keys.total_count,
            ),
        )
        models = result.items

        page_info = PageInfo()
        if requested_keys.has_next_page and len(models) == limit:
            models.pop()
            page_info.has_next_page = True

        permissions = config.permissions.actions()
        visible = [
            model for model in models
            if self.has_valid_permissions(auth, model, "get", permissions)
        ]
        items = await asyncio.gather(
            *(self.prepare_model_response(request, auth, model, populate) for model in visible)
        )
        items = list(items)

        if items:
            page_info.start_cursor = encode_pagination_cursor(items[0], sort)
            page_info.end_cursor = encode_pagination_cursor(items[-1], sort)
        if requested_keys.page_info:
            page_info.has_previous_page = bool(skip) or bool(after)
            page_info.has_next_page = bool(page_info.has_next_page)

        response: dict[str, Any] = {"items": items, "pageInfo": page_info.to_dict()}
        if requested_keys.total_count:
            response["totalCount"] = result.count
        return response

    async def get(self, request: EntityRequest, find_by_id: bool = False) -> dict[str, Any]:
        model = await self.find_model_by_api_key(request, find_by_id)
        if not model:
            raise NotFoundError()
        auth = await self.get_auth_permissions(request)
        self.validate_action_permissions(auth, model, "get")
        await self._run_hooks("beforeGet", model, request)
        item = await self.prepare_model_response(
            request, auth, model, self.get_populate(request)
        )
        await self._run_hooks("afterGet", model, request)
        return {"item": item}

    async def create(self, request: EntityRequest) -> dict[str, Any]:
        auth = await self.get_auth_permissions(request)
        self.validate_action_permissions(auth, None, "create")
        model = await self.get_model_from_body_request(request, auth, "create")
        await self._run_hooks("beforeCreate", model, request)
        try:
            inserted = await self.dao.insert_one(model)
        except DuplicateKeyError:
            raise ClientError("Duplicated key", 400)
        await self._run_hooks("afterCreate", inserted, request)
        item = await self.prepare_model_response(
            request, auth, inserted, self.get_populate(request)
        )
        return {"item": item}

    async def update(self, request: EntityRequest, find_by_id: bool = False) -> dict[str, Any]:
        model = await self.find_model_by_api_key(request, find_by_id)
        if not model:
            raise NotFoundError()
        auth = await self.get_auth_permissions(request)
        self.validate_action_permissions(auth, model, "update")
        hook_updates = await self._run_hooks("beforeUpdate", model, request)
        data = await self.get_model_from_body_request(request, auth, "update", model)
        data.update(hook_updates)
        try:
            updated = await self.dao.update_one(model["id"], data)
        except DuplicateKeyError:
            raise ClientError("Duplicated key", 400)
        if updated is None:
            raise NotFoundError()
        await self._run_hooks("afterUpdate", updated, request)
        item = await self.prepare_model_response(
            request, auth, updated, self.get_populate(request)
        )
        return {"item": item}

    async def delete(self, request: EntityRequest, find_by_id: bool = False) -> dict[str, bool]:
        """Delete a record. Deleting a missing record succeeds."""
        model = await self.find_model_by_api_key(request, find_by_id)
        if not model:
            return {"result": True}
        auth = await self.get_auth_permissions(request)
        self.validate_action_permissions(auth, model, "delete")
        await self._run_hooks("beforeDelete", model, request)
        result = await self.dao.delete_one(model["id"])
        await self._run_hooks("afterDelete", model, request)
        return {"result": result}

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    async def get_auth_permissions(self, request: EntityRequest) -> AuthPermissions:
        return await get_auth_permissions(self.registry, request.auth)

    def has_valid_permissions(
        self,
        auth: AuthPermissions,
        record: Mapping[str, Any] | None,
        action: str,
        permissions: Mapping[str, PermissionRule] | None,
    ) -> bool:
        owner_field = find_owner_field(self.config.schema)
        return has_valid_permission(auth, record, action, permissions, owner_field)

    def validate_action_permissions(
        self,
        auth: AuthPermissions,
        record: Mapping[str, Any] | None,
        action: str,
    ) -> None:
        """Raises UnauthorizedError unless the entity-level rule allows the action."""
        if not self.has_valid_permissions(auth, record, action, self.config.permissions.actions()):
            raise UnauthorizedError()

    def searchable_fields(self, auth: AuthPermissions) -> list[str]:
        """String properties free-text search may match for this caller.

        Text-indexed properties when the entity declares a text index,
        otherwise every plain string property. A property is kept when its
        get rule is the entity's own get rule (records failing it never
        reach the response) or when it grants access without a record.
        """
        config = self.config
        text_fields = [
            field
            for index in config.indexes
            for field, direction in index.keys.items()
            if direction == "text"
        ]
        if not text_fields:
            text_fields = [
                key for key, prop in config.properties.items()
                if property_kind(prop) == PropertyKind.STRING
            ]

        fields = []
        for key in text_fields:
            prop = config.properties.get(key)
            if key in fields or prop is None or property_kind(prop) == PropertyKind.HASH:
                continue
            permissions = config.permissions.for_property(key)
            if permissions.get("get") == config.permissions.get or self.has_valid_permissions(
                auth, None, "get", permissions
            ):
                fields.append(key)
        return fields

    # -------------------------------------------------------------------------
    # Request helpers
    # -------------------------------------------------------------------------

    async def find_model_by_api_key(
        self, request: EntityRequest, find_by_id: bool = False
    ) -> dict[str, Any] | None:
        """Look up the record a path parameter points at.

        Raises:
            BadRequestError: If the identity or key value is malformed
        """
        value = request.params.get("id")
        if value is None:
            raise BadRequestError("Missing id")

        api_key = self.config.api_key
        if find_by_id or not api_key or api_key == "id":
            if not is_valid_id(str(value)):
                raise BadRequestError("Invalid id")
            return await self.dao.find_one_by_id(str(value))

        prop = self.config.properties.get(api_key)
        if prop is not None:
            value = parse_property_value(prop, value, api_key)
        return await self.dao.find_one({api_key: value})

    def get_populate(self, request: EntityRequest) -> frozenset[str]:
        """Reference fields the caller asked to expand (``populate=a;b``)."""
        populate = request.query.get("populate")
        if not populate or not isinstance(populate, str):
            return frozenset()
        return frozenset(key.strip() for key in populate.split(";") if key.strip())

    async def get_model_from_body_request(
        self,
        request: EntityRequest,
        auth: AuthPermissions,
        action: str,
        persisted: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Validate the request body and build the record (or partial update)
        to persist."""
        config = self.config
        body = dict(request.body or {})

        validator = self._get_validator()
        if action == "create":
            validator.validate_create(body)
        else:
            validator.validate_update(body)

        resolver = ValueResolver(self.registry, self.entity_name, self.password_service)
        # Computed values see the stored record under a partial update
        eval_data = {**(persisted or {}), **body}
        required = set(config.required)
        model: dict[str, Any] = {}

        for key, prop in config.properties.items():
            if isinstance(prop, bool):
                continue

            kind = property_kind(prop)
            valid_permissions = self.has_valid_permissions(
                auth, persisted, action, config.permissions.for_property(key)
            )
            should_set = action == "create" or (not prop.get("readOnly") and key in body)
            setting_user = kind == PropertyKind.USER_REF and action == "create"
            setting_eval = kind == PropertyKind.EVAL
            if setting_eval:
                body.pop(key, None)
                eval_data.pop(key, None)

            if (valid_permissions and should_set) or setting_user or setting_eval:
                value = await resolver.resolve(
                    prop,
                    key,
                    eval_data if setting_eval else body,
                    user_id=auth.user_id,
                    ignore_default=action == "update",
                    required=key in required,
                )
                if value is not None:
                    model[key] = value
                    if setting_eval:
                        eval_data[key] = value

        return model

    def _get_validator(self) -> EntityValidator:
        config = self.config
        if self._validator is None or self._validator.config is not config:
            self._validator = EntityValidator(config)
        return self._validator

    async def _run_hooks(
        self, phase: str, record: dict[str, Any], request: EntityRequest
    ) -> dict[str, Any]:
        return await self.registry.hooks.run(
            self.entity_name, phase, record, request, registry=self.registry
        )

    # -------------------------------------------------------------------------
    # Response projection
    # -------------------------------------------------------------------------

    async def prepare_model_response(
        self,
        request: EntityRequest,
        auth: AuthPermissions,
        model: dict[str, Any],
        populate: frozenset[str] = frozenset(),
        join_depth: int = DEFAULT_JOIN_DEPTH,
    ) -> dict[str, Any]:
        """Project a stored record into what the caller may see.

        Properties the caller may not get are omitted. References render as
        ``{"id": ...}`` unless listed in ``populate``, in which case the
        referenced record is projected by its own entity's controller with
        nothing further populated. Join properties expand up to
        ``join_depth`` levels.
        """
        config = self.config
        item: dict[str, Any] = {}

        for key, prop in config.properties.items():
            if isinstance(prop, bool):
                continue
            permissions = config.permissions.for_property(key)
            if not self.has_valid_permissions(auth, model, "get", permissions):
                continue

            value = model.get(key)
            if key == "id" or not is_entity_ref(prop):
                if value is None:
                    value = prop.get("default")
                if value is not None:
                    item[key] = value
            elif not value:
                continue
            elif key not in populate:
                item[key] = {"id": _ref_id(value)}
            else:
                item[key] = await self._populate(request, auth, prop, _ref_id(value))

        if join_depth <= 0:
            return item

        for name, join in config.join_properties.items():
            permissions = {**config.permissions.actions(), **join.permissions}
            if not self.has_valid_permissions(auth, model, "get", permissions):
                continue
            joined = await resolve_join(
                self.registry, join, self.entity_name, model, auth.user_id
            )
            if joined is None:
                continue
            controller = self.registry.get_controller(join.entity)
            if isinstance(joined, list):
                item[name] = list(
                    await asyncio.gather(
                        *(
                            controller.prepare_model_response(
                                request, auth, record, frozenset(), join_depth - 1
                            )
                            for record in joined
                        )
                    )
                )
            else:
                item[name] = await controller.prepare_model_response(
                    request, auth, joined, frozenset(), join_depth - 1
                )

        return item

    async def _populate(
        self,
        request: EntityRequest,
        auth: AuthPermissions,
        prop: dict[str, Any],
        ref_id: Any,
    ) -> dict[str, Any]:
        target = self.registry.get_ref_entity(prop)
        record = await self.registry.get_dao(target).find_one_by_id(str(ref_id))
        if record is None:
            return {"id": ref_id}
        return await self.registry.get_controller(target).prepare_model_response(
            request, auth, record, frozenset()
        )


def _ref_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _positive_int(value: Any) -> int | None:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None
