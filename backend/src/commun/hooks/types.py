"""Hook system types.

- HookContext: runtime state passed to hook functions
- HookResult: optional return value of a hook function
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from commun.metadata.types import HOOK_PHASES


@dataclass
class HookContext:
    """Runtime context passed to every hook function.

    Attributes:
        entity_name: Name of the entity being operated on
        phase: Lifecycle phase (beforeGet ... afterDelete)
        record: Current record state; before* hooks may mutate it
        request: The EntityRequest being handled, if any
        registry: Entity registry, for hooks needing data access
    """

    entity_name: str
    phase: str
    record: dict[str, Any] | None
    request: Any = None
    registry: Any = None


@dataclass
class HookResult:
    """Return value from a hook function.

    Attributes:
        update: Fields to merge into the record
        abort: Error message; aborts the request with a 400
    """

    update: dict[str, Any] | None = None
    abort: str | None = None


# Hook function signature: async (HookContext) -> HookResult | None
HookFn = Callable[[HookContext], Awaitable[HookResult | None]]


def validate_phase(phase: str) -> str:
    if phase not in HOOK_PHASES:
        raise ValueError(
            f"Unknown hook phase '{phase}'. Allowed: {', '.join(HOOK_PHASES)}"
        )
    return phase
