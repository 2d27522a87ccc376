"""Shared fixtures: an isolated registry over an in-memory SQLite store."""

import pytest

from commun.persistence import SQLiteDocumentStore
from commun.registry import Registry


@pytest.fixture
def store():
    store = SQLiteDocumentStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def registry(store):
    registry = Registry(store=store)
    registry.init()
    yield registry
    registry.reset()
