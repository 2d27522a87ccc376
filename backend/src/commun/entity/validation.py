"""Request body validation against entity schemas.

Bodies come from JSON and from query strings alike, so the validators
accept the string forms of numbers and booleans the coercion engine
understands. Reference properties validate as identities.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.validators import extend

from commun.entity.schema import (
    SYSTEM_DATE_FIELDS,
    is_system_property,
    validation_schema,
)
from commun.entity.values import parse_datetime
from commun.errors import BadRequestError
from commun.metadata.types import EntityConfig
from commun.persistence.ids import is_valid_id


def _is_number(checker, instance) -> bool:
    if isinstance(instance, bool):
        return False
    if isinstance(instance, (int, float)):
        return True
    if isinstance(instance, str):
        try:
            float(instance)
        except ValueError:
            return False
        return True
    return False


def _is_integer(checker, instance) -> bool:
    if isinstance(instance, bool):
        return False
    if isinstance(instance, int):
        return True
    if isinstance(instance, float):
        return instance.is_integer()
    if isinstance(instance, str):
        try:
            int(instance)
        except ValueError:
            return False
        return True
    return False


def _is_boolean(checker, instance) -> bool:
    return isinstance(instance, bool) or instance in ("true", "false")


def _is_string(checker, instance) -> bool:
    if isinstance(instance, bool):
        return False
    return isinstance(instance, (str, int, float))


_TYPE_CHECKER = Draft202012Validator.TYPE_CHECKER.redefine_many(
    {
        "number": _is_number,
        "integer": _is_integer,
        "boolean": _is_boolean,
        "string": _is_string,
    }
)

CoercingValidator = extend(Draft202012Validator, type_checker=_TYPE_CHECKER)

FORMAT_CHECKER = FormatChecker()


@FORMAT_CHECKER.checks("id")
def _check_id(instance) -> bool:
    if not isinstance(instance, str):
        return True
    return is_valid_id(instance)


@FORMAT_CHECKER.checks("date-time")
def _check_date_time(instance) -> bool:
    try:
        parse_datetime(instance)
    except BadRequestError:
        return False
    return True


def create_required(config: EntityConfig) -> list[str]:
    """Required properties a client must send on create.

    Engine-managed properties and properties with a default are filled in
    by the pipeline and are not required from the client.
    """
    required = []
    for key in config.required:
        prop = config.properties.get(key)
        if key == "id" or key in SYSTEM_DATE_FIELDS:
            continue
        if prop is not None and is_system_property(prop):
            continue
        if isinstance(prop, dict) and prop.get("default") is not None:
            continue
        required.append(key)
    return required


class EntityValidator:
    """Validators for create and update bodies of one entity."""

    def __init__(self, config: EntityConfig):
        self.config = config
        self.name = config.entity_singular_name or config.entity_name
        self._create = CoercingValidator(
            validation_schema(config.schema, required=create_required(config)),
            format_checker=FORMAT_CHECKER,
        )
        self._update = CoercingValidator(
            validation_schema(config.schema, required=[]),
            format_checker=FORMAT_CHECKER,
        )

    def validate_create(self, body: dict[str, Any]) -> None:
        """Raises BadRequestError listing every violation."""
        self._validate(self._create, body)

    def validate_update(self, body: dict[str, Any]) -> None:
        """Like validate_create, but nothing is required."""
        self._validate(self._update, body)

    def _validate(self, validator, body: dict[str, Any]) -> None:
        errors = sorted(
            validator.iter_errors(body),
            key=lambda e: [str(p) for p in e.absolute_path],
        )
        if not errors:
            return
        messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or self.name
            messages.append(f"{path} {error.message}")
        raise BadRequestError(", ".join(messages))
