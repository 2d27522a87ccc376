"""Hook bus for entity lifecycle phases.

Listeners are keyed by (entity, phase). A phase runs the listeners added
with ``on`` first, then the named hooks bound from the entity config, all
sequentially in registration order.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from commun.entity.expressions import evaluate_template
from commun.errors import BadRequestError
from commun.hooks.registry import HookRegistry
from commun.hooks.types import HookContext, HookFn, HookResult, validate_phase
from commun.metadata.types import HookDefinition

if TYPE_CHECKING:
    from commun.registry import Registry

logger = logging.getLogger(__name__)


class EntityHooks:
    """Typed hook bus.

    Usage:
        hooks = EntityHooks()

        @hooks.hook("posts", "beforeCreate")
        async def stamp(ctx: HookContext) -> None:
            ctx.record["slug"] = ctx.record["title"].lower()

        await hooks.run("posts", "beforeCreate", record, request)
    """

    def __init__(self, named: HookRegistry | None = None):
        self.named = named or HookRegistry()
        self._listeners: dict[tuple[str, str], list[HookFn]] = defaultdict(list)
        self._bound: dict[tuple[str, str], list[HookDefinition]] = defaultdict(list)

    def on(self, entity_name: str, phase: str, handler: HookFn) -> None:
        """Add a listener for one entity lifecycle phase."""
        self._listeners[(entity_name, validate_phase(phase))].append(handler)

    def hook(self, entity_name: str, phase: str) -> Callable[[HookFn], HookFn]:
        """Decorator form of ``on``."""

        def decorator(fn: HookFn) -> HookFn:
            self.on(entity_name, phase, fn)
            return fn

        return decorator

    def register_named(self, name: str, hook_fn: HookFn) -> None:
        """Register a hook implementation that entity configs refer to by name."""
        self.named.register(name, hook_fn)

    def bind(self, entity_name: str, hooks: dict[str, list[HookDefinition]]) -> None:
        """Bind the named hooks declared in an entity config.

        Replaces any previous binding for the entity.
        """
        for key in [k for k in self._bound if k[0] == entity_name]:
            del self._bound[key]
        for phase, definitions in hooks.items():
            self._bound[(entity_name, validate_phase(phase))] = list(definitions)

    def clear(self) -> None:
        self._listeners.clear()
        self._bound.clear()

    async def run(
        self,
        entity_name: str,
        phase: str,
        record: dict[str, Any] | None,
        request: Any = None,
        registry: "Registry | None" = None,
    ) -> dict[str, Any]:
        """Run every hook of a phase in order.

        Updates returned by hooks are merged into ``record``.

        Returns:
            Every update the hooks returned, merged in order

        Raises:
            BadRequestError: If a hook returns an abort message
            Exception: Whatever a hook raised, after logging it
        """
        context = HookContext(
            entity_name=entity_name,
            phase=phase,
            record=record,
            request=request,
            registry=registry,
        )
        updates: dict[str, Any] = {}

        for handler in list(self._listeners.get((entity_name, phase), ())):
            name = getattr(handler, "__name__", "listener")
            updates.update(await self._call(handler, name, context))

        for definition in list(self._bound.get((entity_name, phase), ())):
            if definition.when and not await self._should_run(definition, context):
                continue
            try:
                handler = self.named.get(definition.name)
            except ValueError:
                logger.warning("Hook '%s' is not registered, skipping", definition.name)
                continue
            updates.update(await self._call(handler, definition.name, context))
        return updates

    async def _call(
        self, handler: HookFn, name: str, context: HookContext
    ) -> dict[str, Any]:
        try:
            result = await handler(context)
        except Exception as e:
            logger.error(
                "%s hook '%s' failed for %s: %s",
                context.phase,
                name,
                context.entity_name,
                e,
            )
            raise

        if not isinstance(result, HookResult):
            return {}
        if result.abort:
            raise BadRequestError(result.abort)
        if not result.update:
            return {}
        if context.record is not None:
            context.record.update(result.update)
        return dict(result.update)

    async def _should_run(self, definition: HookDefinition, context: HookContext) -> bool:
        user_id = None
        auth = getattr(context.request, "auth", None)
        if isinstance(auth, dict):
            user_id = auth.get("id")

        value = await evaluate_template(
            definition.when,
            context.registry,
            context.entity_name if context.registry is not None else None,
            context.record or {},
            user_id=user_id,
        )
        return bool(value) and value != "false"
