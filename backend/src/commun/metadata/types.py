"""Entity configuration types.

An entity config is the declarative description of one registered entity:
its JSON-Schema-like attribute schema, action permissions, join
properties, indexes and lifecycle hooks.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Union

# One of "anyone", "user", "own", "system", or an ordered list of them
PermissionRule = Union[str, list[str]]

ACTIONS = ("get", "create", "update", "delete")
PERMISSION_VALUES = ("anyone", "user", "own", "system")

JOIN_TYPES = ("findOne", "findMany")

HOOK_PHASES = (
    "beforeGet",
    "afterGet",
    "beforeCreate",
    "afterCreate",
    "beforeUpdate",
    "afterUpdate",
    "beforeDelete",
    "afterDelete",
)


@dataclass
class EntityPermissions:
    """Action permissions for an entity plus per-property overrides.

    Attributes:
        get/create/update/delete: Entity-level rule for each action
        properties: Overrides keyed by property name, each a partial
            action -> rule map merged over the entity-level rules
    """

    get: PermissionRule | None = None
    create: PermissionRule | None = None
    update: PermissionRule | None = None
    delete: PermissionRule | None = None
    properties: dict[str, dict[str, PermissionRule]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EntityPermissions":
        data = data or {}
        return cls(
            get=data.get("get"),
            create=data.get("create"),
            update=data.get("update"),
            delete=data.get("delete"),
            properties={
                key: dict(value or {})
                for key, value in (data.get("properties") or {}).items()
            },
        )

    def actions(self) -> dict[str, PermissionRule]:
        """Entity-level rules, skipping actions without a rule."""
        rules = {}
        for action in ACTIONS:
            rule = getattr(self, action)
            if rule is not None:
                rules[action] = rule
        return rules

    def for_property(self, key: str) -> dict[str, PermissionRule]:
        """Entity-level rules with the property's overrides merged on top."""
        merged = self.actions()
        merged.update(self.properties.get(key) or {})
        return merged

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.actions())
        if self.properties:
            result["properties"] = copy.deepcopy(self.properties)
        return result


@dataclass
class JoinDefinition:
    """A declaratively queried relationship to another entity.

    Attributes:
        entity: Target entity name (plural)
        type: "findOne" (first match) or "findMany" (all matches)
        query: Field -> literal or "{this.path}" / "{user.path}" template
        permissions: Action rules merged over the entity-level rules
    """

    entity: str
    type: str = "findOne"
    query: dict[str, Any] = field(default_factory=dict)
    permissions: dict[str, PermissionRule] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JoinDefinition":
        join_type = data.get("type", "findOne")
        if join_type not in JOIN_TYPES:
            raise ValueError(
                f"Unsupported join type '{join_type}'. Allowed: {', '.join(JOIN_TYPES)}"
            )
        return cls(
            entity=data["entity"],
            type=join_type,
            query=dict(data.get("query") or {}),
            permissions=dict(data.get("permissions") or {}),
        )


@dataclass
class IndexDefinition:
    """Index over one or more fields. A key direction of "text" marks a
    field as searchable."""

    keys: dict[str, Any]
    unique: bool = False
    sparse: bool = False
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexDefinition":
        return cls(
            keys=dict(data.get("keys") or {}),
            unique=bool(data.get("unique", False)),
            sparse=bool(data.get("sparse", False)),
            name=data.get("name"),
        )


@dataclass
class HookDefinition:
    """A named hook bound to a lifecycle phase from entity config.

    Attributes:
        name: Registered hook name
        when: Optional template; the hook runs only when it renders truthy
    """

    name: str
    when: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> "HookDefinition":
        if isinstance(data, str):
            return cls(name=data)
        return cls(name=data["name"], when=data.get("when"))


@dataclass
class EntityConfig:
    """Configuration of one registered entity.

    Attributes:
        entity_name: Plural name, used for routing and registry lookup
        collection_name: Storage collection identifier
        entity_singular_name: Singular name used in "#entity/<name>" refs
        api_key: Field used to look a record up from a path parameter
        schema: JSON-Schema-like object schema of the entity attributes
        permissions: Action and per-property permission rules
        join_properties: Named join definitions
        indexes: Index definitions
        hooks: Lifecycle phase -> named hook definitions
    """

    entity_name: str
    collection_name: str
    entity_singular_name: str | None = None
    api_key: str = "id"
    schema: dict[str, Any] = field(default_factory=dict)
    permissions: EntityPermissions = field(default_factory=EntityPermissions)
    join_properties: dict[str, JoinDefinition] = field(default_factory=dict)
    indexes: list[IndexDefinition] = field(default_factory=list)
    hooks: dict[str, list[HookDefinition]] = field(default_factory=dict)

    @property
    def properties(self) -> dict[str, Any]:
        return self.schema.setdefault("properties", {})

    @property
    def required(self) -> list[str]:
        return list(self.schema.get("required") or [])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityConfig":
        """Build a config from its JSON/YAML document form (camelCase keys)."""
        if not data.get("entityName"):
            raise ValueError('Config must include "entityName"')
        if not data.get("collectionName"):
            raise ValueError('Config must include "collectionName"')

        schema = copy.deepcopy(data.get("schema") or {})
        permissions = EntityPermissions.from_dict(data.get("permissions"))
        required = list(schema.get("required") or [])

        # Promote inline property permissions and required flags
        for key, prop in (schema.get("properties") or {}).items():
            if not isinstance(prop, dict):
                continue
            inline = prop.pop("permissions", None)
            if inline and key not in permissions.properties:
                permissions.properties[key] = dict(inline)
            if prop.get("required") is True and key not in required:
                required.append(key)
        if required:
            schema["required"] = required

        joins_data = data.get("joinProperties") or data.get("joinAttributes") or {}
        hooks_data = dict(data.get("hooks") or {})
        for phase in HOOK_PHASES:
            if phase in data and phase not in hooks_data:
                hooks_data[phase] = data[phase]

        return cls(
            entity_name=data["entityName"],
            collection_name=data["collectionName"],
            entity_singular_name=data.get("entitySingularName"),
            api_key=data.get("apiKey") or "id",
            schema=schema,
            permissions=permissions,
            join_properties={
                name: JoinDefinition.from_dict(join)
                for name, join in joins_data.items()
            },
            indexes=[IndexDefinition.from_dict(i) for i in data.get("indexes") or []],
            hooks={
                phase: [HookDefinition.from_dict(h) for h in hook_list or []]
                for phase, hook_list in hooks_data.items()
                if phase in HOOK_PHASES
            },
        )
