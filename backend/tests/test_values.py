"""Tests for value coercion, field resolution and body validation."""

from datetime import datetime, timezone

import pytest

from commun.entity.schema import (
    PropertyKind,
    UnknownPropertyKind,
    find_owner_field,
    property_kind,
    singularize,
    validation_schema,
)
from commun.entity.validation import EntityValidator, create_required
from commun.entity.values import ValueResolver, parse_datetime, parse_property_value
from commun.errors import BadRequestError, ServerError
from commun.metadata.types import EntityConfig
from commun.registry import normalize_config

from helpers import FAST_PASSWORDS, posts_config, register, users_config

VALID_ID = "5f1e0c1f2a3b4c5d6e7f8091"


# =============================================================================
# Property kinds
# =============================================================================


class TestPropertyKind:
    @pytest.mark.parametrize(
        "prop,kind",
        [
            (True, PropertyKind.BOOLEAN_SCHEMA),
            ({"$ref": "#user"}, PropertyKind.USER_REF),
            ({"$ref": "#entity/post"}, PropertyKind.ENTITY_REF),
            ({"type": "string", "format": "id"}, PropertyKind.ID),
            ({"type": "string", "format": "hash"}, PropertyKind.HASH),
            ({"type": "string", "format": "eval:{this.a}"}, PropertyKind.EVAL),
            ({"type": "string", "format": "date-time"}, PropertyKind.DATE_TIME),
            ({"type": "array"}, PropertyKind.ARRAY),
            ({"type": "object"}, PropertyKind.OBJECT),
            ({"type": "boolean"}, PropertyKind.BOOLEAN),
            ({"type": "integer"}, PropertyKind.NUMBER),
            ({"type": ["null", "number"]}, PropertyKind.NUMBER),
            ({"type": "string"}, PropertyKind.STRING),
            ({"type": "null"}, PropertyKind.NULL),
            ({}, PropertyKind.ANY),
        ],
    )
    def test_classification(self, prop, kind):
        assert property_kind(prop) == kind

    def test_singularize(self):
        assert singularize("posts") == "post"
        assert singularize("categories") == "category"
        assert singularize("boxes") == "box"
        assert singularize("addresses") == "address"
        assert singularize("people") == "person"
        assert singularize("children") == "child"
        assert singularize("sheep") == "sheepItem"

    def test_owner_field(self):
        assert find_owner_field({"$id": "#entity/user", "properties": {}}) == "id"
        assert find_owner_field({"properties": {"by": {"$ref": "#user"}}}) == "by"
        assert find_owner_field({"properties": {"a": {"type": "string"}}}) is None

    def test_validation_schema_converts_references(self):
        schema = {
            "$id": "#entity/post",
            "properties": {
                "user": {"$ref": "#user"},
                "tags": {"type": "array", "items": {"$ref": "#entity/tag"}},
                "email": {"type": "string", "unique": True},
            },
            "required": ["user"],
        }
        result = validation_schema(schema, required=[])
        assert "$id" not in result
        assert "required" not in result
        assert result["properties"]["user"] == {"type": "string", "format": "id"}
        assert result["properties"]["tags"]["items"] == {"type": "string", "format": "id"}
        assert result["properties"]["email"] == {"type": "string"}
        # Input untouched
        assert schema["properties"]["email"]["unique"] is True


# =============================================================================
# Plain values
# =============================================================================


class TestParsePropertyValue:
    def test_boolean(self):
        assert parse_property_value({"type": "boolean"}, "true") is True
        assert parse_property_value({"type": "boolean"}, True) is True
        assert parse_property_value({"type": "boolean"}, "yes") is False

    def test_number(self):
        assert parse_property_value({"type": "number"}, "42") == 42
        assert parse_property_value({"type": "number"}, "1.5") == 1.5
        assert parse_property_value({"type": "number"}, 7) == 7

    @pytest.mark.parametrize("value", ["abc", True, "nan", "inf"])
    def test_invalid_number(self, value):
        with pytest.raises(BadRequestError, match="age must be a number"):
            parse_property_value({"type": "number"}, value, "age")

    def test_string(self):
        assert parse_property_value({"type": "string"}, 5) == "5"
        assert parse_property_value({"type": "string"}, False) == "false"

    def test_id_is_normalized(self):
        assert parse_property_value({"format": "id"}, VALID_ID.upper()) == VALID_ID

    def test_invalid_reference(self):
        with pytest.raises(BadRequestError, match="post is not a valid ID"):
            parse_property_value({"$ref": "#entity/post"}, "123", "post")

    def test_date_time(self):
        expected = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        prop = {"type": "string", "format": "date-time"}
        assert parse_property_value(prop, "2020-01-02T03:04:05Z") == expected
        assert parse_property_value(prop, expected.timestamp() * 1000) == expected
        assert parse_property_value(prop, str(int(expected.timestamp() * 1000))) == expected

    def test_invalid_date_time(self):
        with pytest.raises(BadRequestError, match="when must be a valid date-time"):
            parse_datetime("yesterday", "when")

    def test_array_items(self):
        prop = {"type": "array", "items": {"type": "number"}}
        assert parse_property_value(prop, ["1", 2, None]) == [1, 2]

    def test_array_rejects_scalars(self):
        with pytest.raises(BadRequestError):
            parse_property_value({"type": "array"}, "x", "tags")

    def test_object_applies_defaults_and_drops_unknown(self):
        prop = {
            "type": "object",
            "properties": {
                "size": {"type": "number"},
                "color": {"type": "string", "default": "red"},
            },
        }
        value = parse_property_value(prop, {"size": "3", "extra": 1})
        assert value == {"size": 3, "color": "red"}

    def test_null_and_any(self):
        assert parse_property_value({"type": "null"}, "x") is None
        assert parse_property_value({}, {"a": 1}) == {"a": 1}

    def test_unknown_kind_is_loud(self, monkeypatch):
        from commun.entity import values

        monkeypatch.delitem(values._PARSERS, PropertyKind.STRING)
        with pytest.raises(UnknownPropertyKind):
            parse_property_value({"type": "string"}, "x")


# =============================================================================
# Field resolution
# =============================================================================


@pytest.fixture
def resolver(registry):
    register(registry, users_config())
    register(registry, posts_config())
    return ValueResolver(registry, "posts", FAST_PASSWORDS)


class TestValueResolver:
    @pytest.mark.asyncio
    async def test_default_applies(self, resolver):
        prop = {"type": "boolean", "default": False}
        assert await resolver.resolve(prop, "published", {}) is False

    @pytest.mark.asyncio
    async def test_default_ignored_on_update(self, resolver):
        prop = {"type": "boolean", "default": False}
        assert await resolver.resolve(prop, "published", {}, ignore_default=True) is None

    @pytest.mark.asyncio
    async def test_user_reference_is_caller(self, resolver):
        value = await resolver.resolve({"$ref": "#user"}, "user", {"user": "x"}, user_id=VALID_ID)
        assert value == VALID_ID

    @pytest.mark.asyncio
    async def test_required_user_reference_without_caller(self, resolver):
        with pytest.raises(BadRequestError, match="user is required"):
            await resolver.resolve({"$ref": "#user"}, "user", {}, required=True)

    @pytest.mark.asyncio
    async def test_hash(self, resolver):
        hashed = await resolver.resolve({"format": "hash"}, "password", {"password": "s3cret"})
        assert hashed != "s3cret"
        assert FAST_PASSWORDS.verify("s3cret", hashed)
        assert not FAST_PASSWORDS.verify("other", hashed)

    @pytest.mark.asyncio
    async def test_eval(self, resolver):
        prop = {"type": "string", "format": "eval:{this.title} ({this.num})"}
        value = await resolver.resolve(prop, "label", {"title": "A", "num": 1})
        assert value == "A (1)"

    @pytest.mark.asyncio
    async def test_eval_empty_result_uses_default(self, resolver):
        prop = {"type": "string", "format": "eval:{this.missing}", "default": "none"}
        assert await resolver.resolve(prop, "label", {}) == "none"

    @pytest.mark.asyncio
    async def test_eval_empty_result_required(self, resolver):
        prop = {"type": "string", "format": "eval:{this.missing}"}
        with pytest.raises(BadRequestError, match="label is required"):
            await resolver.resolve(prop, "label", {}, required=True)

    @pytest.mark.asyncio
    async def test_eval_falsy_result_is_empty(self, resolver):
        prop = {"format": "eval:{this.num}"}
        assert await resolver.resolve(prop, "copy", {"num": 0}) is None
        assert await resolver.resolve(prop, "copy", {"num": False}) is None
        with pytest.raises(BadRequestError, match="copy is required"):
            await resolver.resolve(prop, "copy", {"num": 0}, required=True)
        defaulted = {"format": "eval:{this.num}", "default": 7}
        assert await resolver.resolve(defaulted, "copy", {"num": 0}, required=True) == 7

    @pytest.mark.asyncio
    async def test_eval_failure_is_server_error(self, resolver):
        prop = {"type": "string", "format": "eval:{nope.x}"}
        with pytest.raises(ServerError):
            await resolver.resolve(prop, "label", {})


# =============================================================================
# Body validation
# =============================================================================


class TestEntityValidator:
    def make(self, config: EntityConfig) -> EntityValidator:
        return EntityValidator(normalize_config(config))

    def test_create_required(self):
        config = normalize_config(posts_config())
        # user is engine-set, published has a default
        assert create_required(config) == ["title"]

    def test_missing_required(self):
        validator = self.make(posts_config())
        with pytest.raises(BadRequestError, match="post 'title' is a required property"):
            validator.validate_create({})

    def test_update_requires_nothing(self):
        self.make(posts_config()).validate_update({})

    def test_accepts_string_forms(self):
        validator = self.make(posts_config())
        validator.validate_create({"title": "x", "num": "3", "published": "true"})

    def test_rejects_wrong_types(self):
        validator = self.make(posts_config())
        with pytest.raises(BadRequestError) as exc:
            validator.validate_create({"title": "x", "num": "many", "published": "maybe"})
        assert "num" in exc.value.message
        assert "published" in exc.value.message

    def test_reference_must_be_an_id(self):
        config = EntityConfig.from_dict(
            {
                "entityName": "comments",
                "collectionName": "comments",
                "schema": {"properties": {"post": {"$ref": "#entity/post"}}},
            }
        )
        validator = self.make(config)
        validator.validate_create({"post": VALID_ID})
        with pytest.raises(BadRequestError, match="post"):
            validator.validate_create({"post": "123"})

    def test_date_time_format(self):
        config = EntityConfig.from_dict(
            {
                "entityName": "events",
                "collectionName": "events",
                "schema": {"properties": {"at": {"type": "string", "format": "date-time"}}},
            }
        )
        validator = self.make(config)
        validator.validate_create({"at": "2021-05-01T10:00:00Z"})
        with pytest.raises(BadRequestError, match="at"):
            validator.validate_create({"at": "soon"})
