"""Entity configs and registration helpers shared by the test modules."""

from commun.auth.password import PasswordService
from commun.controllers import EntityController
from commun.metadata.types import EntityConfig
from commun.registry import Registry

# Minimum bcrypt cost keeps hashing tests fast
FAST_PASSWORDS = PasswordService(rounds=4)


def users_config(**overrides) -> EntityConfig:
    data = {
        "entityName": "users",
        "collectionName": "users",
        "permissions": {"get": "anyone", "create": "anyone", "update": "own", "delete": "own"},
        "schema": {
            "properties": {
                "username": {"type": "string"},
                "email": {"type": "string", "unique": True},
                "password": {
                    "type": "string",
                    "format": "hash",
                    "permissions": {"get": "system"},
                },
                "admin": {
                    "type": "boolean",
                    "default": False,
                    "permissions": {"create": "system", "update": "system"},
                },
            },
            "required": ["username"],
        },
    }
    data.update(overrides)
    return EntityConfig.from_dict(data)


def posts_config(**overrides) -> EntityConfig:
    data = {
        "entityName": "posts",
        "collectionName": "posts",
        "permissions": {"get": "anyone", "create": "user", "update": "own", "delete": "own"},
        "schema": {
            "properties": {
                "user": {"$ref": "#user"},
                "title": {"type": "string"},
                "num": {"type": "number"},
                "published": {"type": "boolean", "default": False},
            },
            "required": ["user", "title"],
        },
    }
    data.update(overrides)
    return EntityConfig.from_dict(data)


def register(registry: Registry, config: EntityConfig):
    """Register an entity with a fast password hasher."""
    controller = EntityController(config.entity_name, registry, FAST_PASSWORDS)
    return registry.register(config, controller=controller)
