"""Tests for the template micro-language."""

import pytest

from commun.entity.expressions import (
    ExpressionError,
    PathRef,
    Text,
    UnresolvedPathError,
    evaluate_template,
    is_template,
    parse,
)
from commun.metadata.types import EntityConfig

from helpers import posts_config, register, users_config


def comments_config() -> EntityConfig:
    return EntityConfig.from_dict(
        {
            "entityName": "comments",
            "collectionName": "comments",
            "permissions": {"get": "anyone", "create": "anyone"},
            "schema": {
                "properties": {
                    "post": {"$ref": "#entity/post"},
                    "text": {"type": "string"},
                    "meta": {
                        "type": "object",
                        "properties": {"tags": {"type": "array", "items": {"type": "string"}}},
                    },
                }
            },
        }
    )


@pytest.fixture
def blog(registry):
    register(registry, users_config())
    register(registry, posts_config())
    register(registry, comments_config())
    return registry


# =============================================================================
# Parsing
# =============================================================================


class TestParse:
    def test_plain_text(self):
        assert parse("hello").parts == (Text("hello"),)
        assert not is_template("hello")

    def test_single_placeholder(self):
        template = parse("{this.name}")
        assert template.single == PathRef("this", ("name",))
        assert is_template("{this.name}")

    def test_mixed(self):
        template = parse("Hi {user.name}, see {this.post.title}!")
        assert template.single is None
        assert template.refs == [
            PathRef("user", ("name",)),
            PathRef("this", ("post", "title")),
        ]
        assert str(template.refs[1]) == "{this.post.title}"

    def test_whitespace_inside_braces(self):
        assert parse("{ this.name }").single == PathRef("this", ("name",))

    @pytest.mark.parametrize(
        "source",
        [
            "{this.name",
            "this.name}",
            "{this.{name}}",
            "{other.name}",
            "{this}",
            "{this..name}",
            "{this.na me}",
        ],
    )
    def test_malformed(self, source):
        with pytest.raises(ExpressionError):
            parse(source)


# =============================================================================
# Evaluation
# =============================================================================


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_single_placeholder_keeps_type(self, blog):
        record = {"num": 4, "published": True}
        assert await evaluate_template("{this.num}", blog, "posts", record) == 4
        assert await evaluate_template("{this.published}", blog, "posts", record) is True

    @pytest.mark.asyncio
    async def test_interpolation_renders_strings(self, blog):
        record = {"title": "Hello", "num": 2, "published": False}
        value = await evaluate_template(
            "{this.title} #{this.num} {this.published}", blog, "posts", record
        )
        assert value == "Hello #2 false"

    @pytest.mark.asyncio
    async def test_missing_value_lenient(self, blog):
        assert await evaluate_template("{this.title}", blog, "posts", {}) is None
        assert await evaluate_template("[{this.title}]", blog, "posts", {}) == "[]"

    @pytest.mark.asyncio
    async def test_missing_value_strict(self, blog):
        with pytest.raises(UnresolvedPathError):
            await evaluate_template("{this.title}", blog, "posts", {}, strict=True)
        with pytest.raises(UnresolvedPathError):
            await evaluate_template("a{this.title}", blog, "posts", {}, strict=True)

    @pytest.mark.asyncio
    async def test_follows_references(self, blog):
        users = blog.get_dao("users")
        posts = blog.get_dao("posts")
        author = await users.insert_one({"username": "alice"})
        post = await posts.insert_one({"user": author["id"], "title": "First"})

        comment = {"post": post["id"], "text": "nice"}
        title = await evaluate_template("{this.post.title}", blog, "comments", comment)
        name = await evaluate_template(
            "{this.post.user.username}", blog, "comments", comment
        )
        assert title == "First"
        assert name == "alice"

    @pytest.mark.asyncio
    async def test_dangling_reference(self, blog):
        comment = {"post": "f" * 24}
        assert await evaluate_template("{this.post.title}", blog, "comments", comment) is None

    @pytest.mark.asyncio
    async def test_nested_object_and_array(self, blog):
        comment = {"meta": {"tags": ["a", "b"]}}
        value = await evaluate_template("{this.meta.tags.1}", blog, "comments", comment)
        assert value == "b"

    @pytest.mark.asyncio
    async def test_user_root(self, blog):
        user = await blog.get_dao("users").insert_one({"username": "bob"})
        value = await evaluate_template(
            "by {user.username}", blog, "posts", {}, user_id=user["id"]
        )
        assert value == "by bob"
        assert await evaluate_template("{user.id}", blog, "posts", {}, user_id=user["id"]) == user["id"]

    @pytest.mark.asyncio
    async def test_user_root_without_caller(self, blog):
        assert await evaluate_template("{user.username}", blog, "posts", {}) is None

    @pytest.mark.asyncio
    async def test_record_without_entity(self, blog):
        value = await evaluate_template("{this.a.b}", blog, None, {"a": {"b": 1}})
        assert value == 1
