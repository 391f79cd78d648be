"""
Shared test fixtures and helpers for the Tessera test suite.
"""

import gc

import pytest
import pytest_asyncio

from tessera.db.sqlite import SQLiteAdapter
from tessera.models.registry import ModelRegistry
from tessera.store import open_store

from sample_models import build_schema


# ============================================================================
# Registry
# ============================================================================


@pytest.fixture(autouse=True)
def reset_registry():
    """Unregister models defined inside a test."""
    before = set(ModelRegistry.all_models())
    yield
    for model_cls in ModelRegistry.all_models():
        if model_cls not in before:
            ModelRegistry.unregister(model_cls)


# ============================================================================
# Store
# ============================================================================


@pytest_asyncio.fixture
async def store(tmp_path):
    """Store over a fresh database file with the sample schema."""
    store = await open_store(str(tmp_path / "tessera.db"), build_schema)
    yield store
    await store.close()
    gc.collect()


@pytest.fixture
def executed(monkeypatch):
    """SQL statements sent through ``Database.execute``."""
    statements = []
    original = SQLiteAdapter.execute

    async def recording(self, sql, params=None):
        statements.append(sql)
        return await original(self, sql, params)

    monkeypatch.setattr(SQLiteAdapter, "execute", recording)
    return statements
