"""Entity lifecycle hook system.

Hooks run at eight points of the request pipeline: before and after
get, create, update and delete.

Usage:
    from commun.hooks import EntityHooks, HookContext

    hooks = EntityHooks()

    @hooks.hook("posts", "afterCreate")
    async def announce(ctx: HookContext) -> None:
        ...
"""

from commun.hooks.registry import HookRegistry
from commun.hooks.service import EntityHooks
from commun.hooks.types import HookContext, HookFn, HookResult

__all__ = [
    "EntityHooks",
    "HookContext",
    "HookFn",
    "HookRegistry",
    "HookResult",
]
