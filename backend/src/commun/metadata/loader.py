"""Loads entity configs from a config directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from commun.metadata.types import EntityConfig
from commun.metadata.validator import (
    find_config_files,
    read_config_document,
    validate_config_document,
)

if TYPE_CHECKING:
    from commun.registry import Registry

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Loads entity configs from ``<config_path>/entities``.

    Files failing schema validation are skipped with a warning, so one
    broken config does not keep the others from loading.
    """

    def __init__(self, config_path: Path):
        self.config_path = config_path
        self.entities: dict[str, EntityConfig] = {}

    def load_all(self) -> None:
        for path in find_config_files(self.config_path):
            config = self.load_file(path)
            if config is not None:
                self.entities[config.entity_name] = config

    def load_file(self, path: Path) -> EntityConfig | None:
        """Load one config file, or None if it is invalid."""
        try:
            doc = read_config_document(path)
        except ValueError as exc:
            logger.warning("Skipping entity config %s: %s", path, exc)
            return None

        issues = validate_config_document(doc, path)
        if issues:
            for issue in issues:
                logger.warning("Entity config error: %s", issue)
            return None
        return EntityConfig.from_dict(doc)

    def get_entity(self, name: str) -> EntityConfig | None:
        return self.entities.get(name)

    def list_entities(self) -> list[str]:
        return list(self.entities.keys())

    def register_all(self, registry: "Registry") -> None:
        """Register every loaded entity config."""
        for config in self.entities.values():
            registry.register(config)
