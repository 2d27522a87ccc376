"""Entity request controllers."""

from commun.controllers.entity_controller import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    EntityController,
    ListRequestedKeys,
    PageInfo,
)
from commun.controllers.request import EntityRequest

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "EntityController",
    "EntityRequest",
    "ListRequestedKeys",
    "PageInfo",
]
