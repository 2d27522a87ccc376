"""Persistence layer - data access protocol and document stores."""

from commun.persistence.adapter import EntityDao, FindOptions, QueryResult
from commun.persistence.config import DatabaseConfig, create_store
from commun.persistence.sqlite import SQLiteDocumentStore, SQLiteEntityDao

__all__ = [
    "DatabaseConfig",
    "EntityDao",
    "FindOptions",
    "QueryResult",
    "SQLiteDocumentStore",
    "SQLiteEntityDao",
    "create_store",
]
