"""Template micro-language for computed values and join queries.

A template is plain text with ``{root.dotted.path}`` placeholders:

- ``{this.name}`` reads the current record
- ``{this.author.name}`` follows the ``author`` reference and reads the
  referenced record's ``name``
- ``{user.email}`` reads the caller's own record in the users entity

A template made of exactly one placeholder evaluates to the raw value, so
numbers and booleans keep their type. Anything else renders as a string.
There is no operator or function support and nothing is ever executed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Union

from commun.entity.schema import USERS_ENTITY, PropertyKind, property_kind

if TYPE_CHECKING:
    from commun.registry import Registry

ROOTS = ("this", "user")

_SEGMENT = re.compile(r"^[A-Za-z_$][\w$-]*$|^\d+$")


class ExpressionError(Exception):
    """Malformed template."""


class UnresolvedPathError(ExpressionError):
    """A placeholder path has no value (strict evaluation only)."""


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class PathRef:
    root: str
    path: tuple[str, ...]

    def __str__(self) -> str:
        return "{" + ".".join((self.root, *self.path)) + "}"


Part = Union[Text, PathRef]


@dataclass(frozen=True)
class Template:
    parts: tuple[Part, ...]

    @property
    def single(self) -> PathRef | None:
        """The placeholder when the template is exactly one placeholder."""
        if len(self.parts) == 1 and isinstance(self.parts[0], PathRef):
            return self.parts[0]
        return None

    @property
    def refs(self) -> list[PathRef]:
        return [p for p in self.parts if isinstance(p, PathRef)]


def is_template(value: Any) -> bool:
    return isinstance(value, str) and "{" in value


@lru_cache(maxsize=512)
def parse(source: str) -> Template:
    """Parse a template string.

    Raises:
        ExpressionError: On unbalanced braces, unknown roots or bad paths
    """
    parts: list[Part] = []
    text = ""
    i = 0
    while i < len(source):
        char = source[i]
        if char == "}":
            raise ExpressionError(f"Unexpected '}}' at position {i} in {source!r}")
        if char != "{":
            text += char
            i += 1
            continue

        end = source.find("}", i + 1)
        if end == -1:
            raise ExpressionError(f"Unclosed '{{' at position {i} in {source!r}")
        body = source[i + 1:end].strip()
        if "{" in body:
            raise ExpressionError(f"Nested '{{' at position {i} in {source!r}")
        if text:
            parts.append(Text(text))
            text = ""
        parts.append(_parse_ref(body, source))
        i = end + 1

    if text:
        parts.append(Text(text))
    return Template(tuple(parts))


def _parse_ref(body: str, source: str) -> PathRef:
    root, _, rest = body.partition(".")
    if root not in ROOTS:
        raise ExpressionError(
            f"Unknown placeholder root '{root}' in {source!r}. "
            f"Allowed: {', '.join(ROOTS)}"
        )
    segments = tuple(rest.split(".")) if rest else ()
    if not segments or not all(_SEGMENT.match(s) for s in segments):
        raise ExpressionError(f"Invalid placeholder path '{body}' in {source!r}")
    return PathRef(root=root, path=segments)


@dataclass
class EvaluationContext:
    """Context for template evaluation.

    Attributes:
        registry: Entity registry, used to follow references
        entity_name: Entity of ``record`` (None if it has no schema)
        record: The record ``this`` refers to
        user_id: Caller identity ``user`` refers to
    """

    registry: "Registry"
    entity_name: str | None
    record: dict[str, Any]
    user_id: str | None = None
    _user_record: dict[str, Any] | None = field(default=None, repr=False)


class Evaluator:
    """Evaluates parsed templates against a context.

    Usage:
        ctx = EvaluationContext(registry, "posts", record, user_id)
        value = await Evaluator(ctx).evaluate(parse("{this.author.name}"))
    """

    def __init__(self, context: EvaluationContext):
        self.context = context

    async def evaluate(self, template: Template, strict: bool = False) -> Any:
        """Evaluate a template.

        In strict mode any missing placeholder raises UnresolvedPathError;
        otherwise a lone placeholder yields None and interpolated ones
        render as empty strings.
        """
        single = template.single
        if single is not None:
            try:
                return await self.resolve(single)
            except UnresolvedPathError:
                if strict:
                    raise
                return None

        rendered = []
        for part in template.parts:
            if isinstance(part, Text):
                rendered.append(part.value)
                continue
            try:
                value = await self.resolve(part)
            except UnresolvedPathError:
                if strict:
                    raise
                value = None
            rendered.append(_render(value))
        return "".join(rendered)

    async def resolve(self, ref: PathRef) -> Any:
        """Resolve one placeholder, following entity references as needed."""
        if ref.root == "this":
            current: Any = self.context.record
            properties = self._entity_properties(self.context.entity_name)
        else:
            if not self.context.user_id:
                raise UnresolvedPathError(f"No caller identity for {ref}")
            if ref.path == ("id",):
                return self.context.user_id
            current = await self._user_record()
            if current is None:
                raise UnresolvedPathError(f"Caller record not found for {ref}")
            properties = self._entity_properties(USERS_ENTITY)

        for index, segment in enumerate(ref.path):
            value = _step(current, segment)
            if value is None:
                raise UnresolvedPathError(f"No value at {ref}")

            prop = properties.get(segment) if properties is not None else None
            has_more = index < len(ref.path) - 1
            if prop is not None and has_more and property_kind(prop) in (
                PropertyKind.ENTITY_REF,
                PropertyKind.USER_REF,
            ):
                target = self.context.registry.get_ref_entity(prop)
                value = await self.context.registry.get_dao(target).find_one_by_id(
                    _ref_id(value)
                )
                if value is None:
                    raise UnresolvedPathError(f"Referenced record missing at {ref}")
                properties = self._entity_properties(target)
            elif isinstance(prop, dict) and isinstance(prop.get("properties"), dict):
                properties = prop["properties"]
            else:
                properties = None
            current = value

        return current

    async def _user_record(self) -> dict[str, Any] | None:
        if self.context._user_record is None:
            dao = self.context.registry.get_dao(USERS_ENTITY)
            self.context._user_record = await dao.find_one_by_id(self.context.user_id)
        return self.context._user_record

    def _entity_properties(self, entity_name: str | None) -> dict[str, Any] | None:
        if not entity_name:
            return None
        return self.context.registry.get_config(entity_name).properties


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        return current.get(segment)
    if isinstance(current, list) and segment.isdigit():
        position = int(segment)
        return current[position] if position < len(current) else None
    return None


def _ref_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def evaluate_template(
    source: str,
    registry: "Registry",
    entity_name: str | None,
    record: dict[str, Any],
    user_id: str | None = None,
    strict: bool = False,
) -> Any:
    """Parse and evaluate a template string in one call."""
    ctx = EvaluationContext(
        registry=registry,
        entity_name=entity_name,
        record=record,
        user_id=user_id,
    )
    return await Evaluator(ctx).evaluate(parse(source), strict=strict)
