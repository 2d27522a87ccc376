"""Registry of entities and plugins.

One Registry holds everything the request pipeline needs to know about
the registered entities: the normalized config, the data access object
and the controller of each entity, plus the hook bus.

Usage:
    registry = Registry(store=SQLiteDocumentStore(":memory:"))
    registry.init()
    registry.register(EntityConfig.from_dict(config))
    await registry.create_indexes()
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from commun.entity.schema import (
    ENTITY_REF_PREFIX,
    USERS_ENTITY,
    PropertyKind,
    get_singular_entity_ref,
    property_kind,
    singularize,
)
from commun.errors import NotFoundError
from commun.hooks import EntityHooks
from commun.metadata.types import EntityConfig, IndexDefinition

if TYPE_CHECKING:
    from commun.controllers.entity_controller import EntityController
    from commun.persistence.adapter import EntityDao
    from commun.persistence.sqlite import SQLiteDocumentStore

logger = logging.getLogger(__name__)

# Properties whose value the engine sets
_FORCED_SYSTEM_KINDS = (PropertyKind.USER_REF, PropertyKind.EVAL)


@dataclass
class RegisteredEntity:
    config: EntityConfig
    dao: "EntityDao"
    controller: "EntityController"


class Registry:
    """Entities and plugins known to one application."""

    def __init__(
        self,
        store: "SQLiteDocumentStore | None" = None,
        hooks: EntityHooks | None = None,
    ):
        self.store = store
        self.hooks = hooks or EntityHooks()
        self._entities: dict[str, RegisteredEntity] = {}
        self._plugins: dict[str, dict[str, Any]] = {}

    def init(self) -> None:
        """Connect the data store."""
        if self.store is not None:
            self.store.connect()

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def register(
        self,
        config: EntityConfig,
        dao: "EntityDao | None" = None,
        controller: "EntityController | None" = None,
    ) -> RegisteredEntity:
        """Register an entity, replacing any previous registration.

        The config is copied and normalized: it gets a singular name, a
        ``$id``, the system properties ``id``/``createdAt``/``updatedAt``
        and system-only write rules for engine-managed properties.

        Raises:
            ValueError: If no dao is given and the registry has no store
        """
        config = normalize_config(config)

        if dao is None:
            if self.store is None:
                raise ValueError(
                    f"No data store configured for entity {config.entity_name}"
                )
            dao = self.store.collection(config.collection_name)
        if controller is None:
            from commun.controllers.entity_controller import EntityController

            controller = EntityController(config.entity_name, self)

        entry = RegisteredEntity(config=config, dao=dao, controller=controller)
        self._entities[config.entity_name] = entry
        self.hooks.bind(config.entity_name, config.hooks)
        logger.debug(
            "Registered entity %s (collection %s)",
            config.entity_name,
            config.collection_name,
        )
        return entry

    def get(self, entity_name: str) -> RegisteredEntity:
        """Look up a registered entity.

        Raises:
            NotFoundError: If the entity is not registered
        """
        entry = self._entities.get(entity_name)
        if entry is None:
            raise NotFoundError(f"Entity {entity_name} not registered")
        return entry

    def has(self, entity_name: str) -> bool:
        return entity_name in self._entities

    def get_config(self, entity_name: str) -> EntityConfig:
        return self.get(entity_name).config

    def get_dao(self, entity_name: str) -> "EntityDao":
        return self.get(entity_name).dao

    def get_controller(self, entity_name: str) -> "EntityController":
        return self.get(entity_name).controller

    def get_plural_name(self, singular_name: str) -> str:
        """Map a singular entity name (as used in references) to its plural.

        Raises:
            NotFoundError: If no registered entity has that singular name
        """
        if singular_name == "user" and USERS_ENTITY in self._entities:
            return USERS_ENTITY
        for name, entry in self._entities.items():
            if entry.config.entity_singular_name == singular_name:
                return name
        raise NotFoundError(f"Entity {singular_name} not registered")

    def get_ref_entity(self, prop: dict[str, Any]) -> str:
        """Name of the entity a reference property points at."""
        singular = get_singular_entity_ref(prop)
        if singular is None:
            raise ValueError(f"Property is not a reference: {prop!r}")
        if singular == "user":
            return USERS_ENTITY
        return self.get_plural_name(singular)

    def list_entities(self) -> list[str]:
        return list(self._entities.keys())

    def reset(self) -> None:
        """Forget all entities, plugins and hooks. Primarily for testing."""
        self._entities.clear()
        self._plugins.clear()
        self.hooks.clear()

    async def create_indexes(self) -> None:
        """Create the declared indexes of every entity, users first."""
        names = sorted(self._entities, key=lambda name: name != USERS_ENTITY)
        for name in names:
            entry = self._entities[name]
            await entry.dao.create_indexes(entity_indexes(entry.config))

    # -------------------------------------------------------------------------
    # Plugins
    # -------------------------------------------------------------------------

    def register_plugin(self, name: str, config: dict[str, Any] | None = None) -> None:
        self._plugins[name] = dict(config or {})

    def get_plugin(self, name: str) -> dict[str, Any]:
        """Look up a plugin config.

        Raises:
            NotFoundError: If the plugin is not registered
        """
        if name not in self._plugins:
            raise NotFoundError(f"Plugin {name} not registered")
        return self._plugins[name]

    def list_plugins(self) -> list[str]:
        return list(self._plugins.keys())


def normalize_config(config: EntityConfig) -> EntityConfig:
    """Return a normalized copy of an entity config."""
    config = copy.deepcopy(config)
    schema = config.schema
    permissions = config.permissions

    if not config.entity_singular_name:
        config.entity_singular_name = singularize(config.entity_name)
    schema["$id"] = ENTITY_REF_PREFIX + config.entity_singular_name
    schema.setdefault("title", config.entity_singular_name)
    schema.setdefault("type", "object")
    properties = config.properties

    if "id" not in properties:
        properties["id"] = {"type": "string", "format": "id"}
    for key in ("createdAt", "updatedAt"):
        if key not in properties:
            properties[key] = {"type": "string", "format": "date-time"}
        overrides = permissions.properties.setdefault(key, {})
        overrides.setdefault("get", permissions.get or "system")
        overrides["create"] = "system"
        overrides["update"] = "system"

    for key, prop in properties.items():
        if key == "id" or property_kind(prop) in _FORCED_SYSTEM_KINDS:
            overrides = permissions.properties.setdefault(key, {})
            if key == "id" and permissions.get is not None:
                overrides.setdefault("get", permissions.get)
            overrides["create"] = "system"
            overrides["update"] = "system"

    if not config.api_key:
        config.api_key = "id"
    return config


def entity_indexes(config: EntityConfig) -> list[IndexDefinition]:
    """Declared indexes plus single-field indexes from ``unique``/``index``
    property keywords."""
    indexes = list(config.indexes)
    for key, prop in config.properties.items():
        if not isinstance(prop, dict):
            continue
        if prop.get("unique"):
            indexes.append(IndexDefinition(keys={key: 1}, unique=True, sparse=True))
        elif prop.get("index"):
            indexes.append(IndexDefinition(keys={key: 1}))
    return indexes
