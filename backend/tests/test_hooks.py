"""Tests for the entity lifecycle hook system."""

import logging

import pytest

from commun.controllers import EntityRequest
from commun.errors import BadRequestError
from commun.hooks import EntityHooks, HookContext, HookRegistry, HookResult
from commun.metadata.types import HookDefinition


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def hooks():
    return EntityHooks()


@pytest.fixture
def record():
    return {"id": "a" * 24, "title": "Hello", "published": False}


# =============================================================================
# HookRegistry
# =============================================================================


class TestHookRegistry:
    def test_register_and_get(self):
        registry = HookRegistry()

        async def my_hook(ctx):
            return None

        registry.register("my_hook", my_hook)
        assert registry.get("my_hook") is my_hook
        assert registry.is_registered("my_hook")
        assert registry.list_registered() == ["my_hook"]

    def test_get_unregistered_raises(self):
        with pytest.raises(ValueError, match="not registered"):
            HookRegistry().get("missing")

    def test_decorator_registers(self):
        registry = HookRegistry()

        @registry.hook("decorated")
        async def decorated(ctx):
            return None

        assert registry.get("decorated") is decorated

    def test_last_registration_wins(self):
        registry = HookRegistry()

        async def first(ctx):
            return None

        async def second(ctx):
            return None

        registry.register("h", first)
        registry.register("h", second)
        assert registry.get("h") is second

    def test_clear(self):
        registry = HookRegistry()
        registry.register("h", lambda ctx: None)
        registry.clear()
        assert registry.list_registered() == []


# =============================================================================
# EntityHooks
# =============================================================================


class TestListeners:
    @pytest.mark.asyncio
    async def test_run_in_registration_order(self, hooks, record):
        calls = []

        @hooks.hook("posts", "beforeCreate")
        async def first(ctx: HookContext):
            calls.append(("first", ctx.phase, ctx.entity_name))

        @hooks.hook("posts", "beforeCreate")
        async def second(ctx: HookContext):
            calls.append(("second", ctx.phase, ctx.entity_name))

        await hooks.run("posts", "beforeCreate", record)
        assert calls == [
            ("first", "beforeCreate", "posts"),
            ("second", "beforeCreate", "posts"),
        ]

    @pytest.mark.asyncio
    async def test_scoped_to_entity_and_phase(self, hooks, record):
        calls = []

        async def listener(ctx):
            calls.append(ctx.phase)

        hooks.on("posts", "afterCreate", listener)
        await hooks.run("posts", "beforeCreate", record)
        await hooks.run("users", "afterCreate", record)
        assert calls == []

    def test_unknown_phase_rejected(self, hooks):
        async def listener(ctx):
            return None

        with pytest.raises(ValueError, match="Unknown hook phase"):
            hooks.on("posts", "beforeSave", listener)

    @pytest.mark.asyncio
    async def test_mutating_record(self, hooks, record):
        @hooks.hook("posts", "beforeUpdate")
        async def upper(ctx):
            ctx.record["title"] = ctx.record["title"].upper()

        await hooks.run("posts", "beforeUpdate", record)
        assert record["title"] == "HELLO"

    @pytest.mark.asyncio
    async def test_update_result_merges(self, hooks, record):
        @hooks.hook("posts", "beforeCreate")
        async def publish(ctx):
            return HookResult(update={"published": True})

        updates = await hooks.run("posts", "beforeCreate", record)
        assert record["published"] is True
        assert updates == {"published": True}

    @pytest.mark.asyncio
    async def test_updates_accumulate_in_order(self, hooks, record):
        @hooks.hook("posts", "beforeUpdate")
        async def first(ctx):
            return HookResult(update={"num": 1, "tag": "a"})

        @hooks.hook("posts", "beforeUpdate")
        async def second(ctx):
            return HookResult(update={"num": 2})

        assert await hooks.run("posts", "beforeUpdate", record) == {"num": 2, "tag": "a"}
        assert await hooks.run("posts", "afterUpdate", record) == {}

    @pytest.mark.asyncio
    async def test_abort_result_raises_bad_request(self, hooks, record):
        @hooks.hook("posts", "beforeDelete")
        async def refuse(ctx):
            return HookResult(abort="Published posts cannot be deleted")

        with pytest.raises(BadRequestError, match="Published posts cannot be deleted"):
            await hooks.run("posts", "beforeDelete", record)

    @pytest.mark.asyncio
    async def test_errors_are_logged_and_propagated(self, hooks, record, caplog):
        @hooks.hook("posts", "afterGet")
        async def broken(ctx):
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuntimeError, match="boom"):
                await hooks.run("posts", "afterGet", record)
        assert "broken" in caplog.text

    @pytest.mark.asyncio
    async def test_request_is_passed_through(self, hooks, record):
        seen = []

        @hooks.hook("posts", "beforeGet")
        async def capture(ctx):
            seen.append(ctx.request)

        request = EntityRequest(auth={"id": "b" * 24})
        await hooks.run("posts", "beforeGet", record, request)
        assert seen == [request]


class TestNamedHooks:
    @pytest.mark.asyncio
    async def test_bound_hooks_run_after_listeners(self, hooks, record):
        calls = []

        async def listener(ctx):
            calls.append("listener")

        async def named(ctx):
            calls.append("named")

        hooks.register_named("stamp", named)
        hooks.bind("posts", {"afterCreate": [HookDefinition(name="stamp")]})
        hooks.on("posts", "afterCreate", listener)

        await hooks.run("posts", "afterCreate", record)
        assert calls == ["listener", "named"]

    @pytest.mark.asyncio
    async def test_unregistered_named_hook_is_skipped(self, hooks, record, caplog):
        hooks.bind("posts", {"afterCreate": [HookDefinition(name="missing")]})
        with caplog.at_level(logging.WARNING):
            await hooks.run("posts", "afterCreate", record)
        assert "missing" in caplog.text

    @pytest.mark.asyncio
    async def test_when_condition(self, hooks):
        calls = []

        async def named(ctx):
            calls.append(ctx.record["title"])

        hooks.register_named("onPublished", named)
        hooks.bind(
            "posts",
            {"afterUpdate": [HookDefinition(name="onPublished", when="{this.published}")]},
        )

        await hooks.run("posts", "afterUpdate", {"title": "draft", "published": False})
        await hooks.run("posts", "afterUpdate", {"title": "live", "published": True})
        await hooks.run("posts", "afterUpdate", {"title": "unknown"})
        assert calls == ["live"]

    @pytest.mark.asyncio
    async def test_rebinding_replaces(self, hooks, record):
        calls = []

        async def named(ctx):
            calls.append(ctx.phase)

        hooks.register_named("h", named)
        hooks.bind("posts", {"afterCreate": [HookDefinition(name="h")]})
        hooks.bind("posts", {"afterDelete": [HookDefinition(name="h")]})

        await hooks.run("posts", "afterCreate", record)
        await hooks.run("posts", "afterDelete", record)
        assert calls == ["afterDelete"]

    @pytest.mark.asyncio
    async def test_clear(self, hooks, record):
        calls = []

        async def listener(ctx):
            calls.append(1)

        hooks.on("posts", "afterCreate", listener)
        hooks.clear()
        await hooks.run("posts", "afterCreate", record)
        assert calls == []
