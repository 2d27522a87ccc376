"""Tests for join property resolution."""

import pytest

from commun.entity.joins import build_join_query, resolve_join
from commun.metadata.types import EntityConfig, JoinDefinition

from helpers import posts_config, register, users_config


def refs_config() -> EntityConfig:
    return EntityConfig.from_dict(
        {
            "entityName": "entityRefs",
            "collectionName": "entityRefs",
            "permissions": {"get": "anyone", "create": "anyone"},
            "schema": {"properties": {"name": {"type": "string"}}},
        }
    )


def items_config() -> EntityConfig:
    return EntityConfig.from_dict(
        {
            "entityName": "items",
            "collectionName": "items",
            "permissions": {"get": "anyone", "create": "anyone"},
            "schema": {
                "properties": {
                    "entityRef": {"$ref": "#entity/entityRef"},
                    "name": {"type": "string"},
                    "num": {"type": "number"},
                }
            },
            "joinProperties": {
                "sameName": {
                    "entity": "entityRefs",
                    "type": "findOne",
                    "query": {"name": "{this.entityRef.name}"},
                },
            },
        }
    )


@pytest.fixture
def catalog(registry):
    register(registry, users_config())
    register(registry, posts_config())
    register(registry, refs_config())
    register(registry, items_config())
    return registry


class TestBuildJoinQuery:
    @pytest.mark.asyncio
    async def test_literal_values_are_coerced(self, catalog):
        join = JoinDefinition(entity="posts", query={"published": "true", "num": "3"})
        query = await build_join_query(catalog, join, "items", {})
        assert query == {"published": True, "num": 3}

    @pytest.mark.asyncio
    async def test_this_reference(self, catalog):
        item_id = "a" * 24
        join = JoinDefinition(entity="posts", query={"user": "{this.id}"})
        query = await build_join_query(catalog, join, "users", {"id": item_id})
        assert query == {"user": item_id}

    @pytest.mark.asyncio
    async def test_unresolved_placeholder(self, catalog):
        join = JoinDefinition(entity="posts", query={"title": "{this.name}"})
        assert await build_join_query(catalog, join, "items", {}) is None

    @pytest.mark.asyncio
    async def test_invalid_template(self, catalog):
        join = JoinDefinition(entity="posts", query={"title": "{this.name"})
        assert await build_join_query(catalog, join, "items", {"name": "x"}) is None

    @pytest.mark.asyncio
    async def test_uncoercible_value(self, catalog):
        join = JoinDefinition(entity="posts", query={"user": "{this.name}"})
        assert await build_join_query(catalog, join, "items", {"name": "not-an-id"}) is None


class TestResolveJoin:
    @pytest.mark.asyncio
    async def test_find_one_through_reference(self, catalog):
        refs = catalog.get_dao("entityRefs")
        items = catalog.get_dao("items")
        ref = await refs.insert_one({"name": "widget"})
        match = await items.insert_one({"name": "widget", "num": 1})
        await items.insert_one({"name": "gadget", "num": 2})

        join = JoinDefinition(
            entity="items", type="findOne", query={"name": "{this.entityRef.name}"}
        )
        result = await resolve_join(catalog, join, "items", {"entityRef": ref["id"]})
        assert result["id"] == match["id"]

    @pytest.mark.asyncio
    async def test_find_many(self, catalog):
        refs = catalog.get_dao("entityRefs")
        items = catalog.get_dao("items")
        ref = await refs.insert_one({"name": "widget"})
        first = await items.insert_one({"name": "widget", "num": 1})
        second = await items.insert_one({"name": "widget", "num": 2})
        await items.insert_one({"name": "gadget", "num": 3})

        join = JoinDefinition(
            entity="items", type="findMany", query={"name": "{this.entityRef.name}"}
        )
        result = await resolve_join(catalog, join, "items", {"entityRef": ref["id"]})
        assert [r["id"] for r in result] == [first["id"], second["id"]]

    @pytest.mark.asyncio
    async def test_unresolvable_query(self, catalog):
        find_one = JoinDefinition(entity="items", type="findOne", query={"name": "{this.x}"})
        find_many = JoinDefinition(entity="items", type="findMany", query={"name": "{this.x}"})
        assert await resolve_join(catalog, find_one, "items", {}) is None
        assert await resolve_join(catalog, find_many, "items", {}) == []

    @pytest.mark.asyncio
    async def test_user_placeholder(self, catalog):
        user = await catalog.get_dao("users").insert_one({"username": "alice"})
        mine = await catalog.get_dao("posts").insert_one({"user": user["id"], "title": "a"})
        await catalog.get_dao("posts").insert_one({"user": "b" * 24, "title": "b"})

        join = JoinDefinition(entity="posts", type="findMany", query={"user": "{user.id}"})
        result = await resolve_join(catalog, join, "items", {}, user_id=user["id"])
        assert [r["id"] for r in result] == [mine["id"]]
