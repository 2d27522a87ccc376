"""Transport-independent request passed to entity controllers."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class EntityRequest:
    """A normalized entity request.

    Attributes:
        params: Path parameters; ``id`` holds the api key value
        query: Query parameters (sort, filter, search, first, last,
            before, after, populate)
        body: Request body for create and update
        auth: Verified caller identity ``{"id": ...}``, None if anonymous
    """

    params: dict[str, Any] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    auth: dict[str, Any] | None = None
