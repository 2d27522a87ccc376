"""
JSON Schema validation for entity config files.

Validates entity config documents (YAML or JSON) against
``schemas/entity.schema.json``.

Usage:
    from commun.metadata.validator import validate_config_dir

    issues = validate_config_dir(Path("config"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"

CONFIG_SUFFIXES = (".yaml", ".yml", ".json")


# ---------------------------------------------------------------------------
# Public data types
# ---------------------------------------------------------------------------


@dataclass
class ValidationIssue:
    """A single validation finding for an entity config file."""

    file: Path
    message: str
    path: str = ""          # path within the document, e.g. "permissions/get"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict[str, Any]:
    schema_path = _SCHEMAS_DIR / name
    with schema_path.open() as fh:
        return json.load(fh)


def _json_path(error: ValidationError) -> str:
    """Convert a jsonschema ValidationError path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def read_config_document(path: Path) -> Any:
    """Parse a YAML or JSON config file.

    Raises:
        ValueError: If the file cannot be parsed
    """
    try:
        with path.open() as fh:
            if path.suffix == ".json":
                return json.load(fh)
            return yaml.safe_load(fh)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Parse error: {exc}") from exc


def find_config_files(config_dir: Path) -> list[Path]:
    """Entity config files under ``config_dir/entities``.

    Both ``entities/<name>/config.yaml`` and ``entities/<name>.yaml`` are
    recognized (``.yml`` and ``.json`` too).
    """
    entities_dir = config_dir / "entities"
    if not entities_dir.is_dir():
        return []

    files = []
    for entry in sorted(entities_dir.iterdir()):
        if entry.is_dir():
            for suffix in CONFIG_SUFFIXES:
                candidate = entry / f"config{suffix}"
                if candidate.is_file():
                    files.append(candidate)
                    break
        elif entry.suffix in CONFIG_SUFFIXES:
            files.append(entry)
    return files


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_config_document(doc: Any, file: Path) -> list[ValidationIssue]:
    """Validate an already parsed entity config document."""
    if doc is None:
        return [ValidationIssue(file=file, message="File is empty or contains only whitespace")]

    validator = Draft202012Validator(_load_schema("entity.schema.json"))
    return [
        ValidationIssue(file=file, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(map(str, e.path)))
    ]


def validate_config_file(path: Path) -> list[ValidationIssue]:
    """
    Validate a single entity config file.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        doc = read_config_document(path)
    except ValueError as exc:
        return [ValidationIssue(file=path, message=str(exc))]
    return validate_config_document(doc, path)


def validate_config_dir(config_dir: Path) -> list[ValidationIssue]:
    """
    Validate every entity config under *config_dir*.

    Returns:
        A flat list of :class:`ValidationIssue` objects across all files.
        Empty list means all files are valid.
    """
    if not config_dir.is_dir():
        return [
            ValidationIssue(
                file=config_dir,
                message=f"Config directory does not exist: {config_dir}",
            )
        ]

    all_issues: list[ValidationIssue] = []
    for path in find_config_files(config_dir):
        all_issues.extend(validate_config_file(path))
    return all_issues
