"""Named hook registry.

Entity configs refer to hooks by name; implementations are registered
here before the configs that use them are bound.
"""

from collections.abc import Callable

from commun.hooks.types import HookFn


class HookRegistry:
    """Registry for named hook implementations.

    Example:
        registry = HookRegistry()

        @registry.hook("notifyOwner")
        async def notify_owner(ctx: HookContext) -> None:
            ...
    """

    def __init__(self):
        self._hooks: dict[str, HookFn] = {}

    def register(self, name: str, hook_fn: HookFn) -> None:
        """Register a hook function by name. Last registration wins."""
        self._hooks[name] = hook_fn

    def get(self, name: str) -> HookFn:
        """Get a registered hook function by name.

        Raises:
            ValueError: If hook is not registered
        """
        if name not in self._hooks:
            raise ValueError(
                f"Hook '{name}' is not registered. "
                "Hooks must be registered before entity configs use them."
            )
        return self._hooks[name]

    def is_registered(self, name: str) -> bool:
        return name in self._hooks

    def list_registered(self) -> list[str]:
        return sorted(self._hooks.keys())

    def clear(self) -> None:
        """Clear all registrations. Primarily for testing."""
        self._hooks.clear()

    def hook(self, name: str) -> Callable[[HookFn], HookFn]:
        """Decorator to register a named hook function."""

        def decorator(fn: HookFn) -> HookFn:
            self.register(name, fn)
            return fn

        return decorator
