"""Database configuration and store factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from commun.persistence.sqlite import SQLiteDocumentStore


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:/// URLs.
    """

    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. COMMUN_DB_PATH env var (converted to sqlite:/// URL)
        3. Default: sqlite:///{base_path}/data/commun.db
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)

        db_path = os.environ.get("COMMUN_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}")

        if base_path:
            return cls(url=f"sqlite:///{base_path / 'data' / 'commun.db'}")

        return cls(url="sqlite:///commun.db")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


def create_store(config: DatabaseConfig) -> SQLiteDocumentStore:
    """Create a document store based on the database URL scheme.

    Returns:
        A store instance (not yet connected).

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_sqlite:
        from commun.persistence.sqlite import SQLiteDocumentStore

        # Extract path from sqlite:///path
        db_path = config.url.replace("sqlite:///", "").replace("sqlite://", "")
        if not db_path:
            db_path = ":memory:"
        return SQLiteDocumentStore(db_path)

    raise ValueError(f"Unsupported database URL scheme: {config.url}")
