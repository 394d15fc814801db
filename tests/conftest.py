"""
Pytest fixtures and test configuration for weavestore tests.
"""

from pathlib import Path

import pytest

from weavestore.config import WeaveConfig
from weavestore.records import WBO
from weavestore.storage import SQLiteDialect, SQLStorage, open_storage


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "weave.db"


@pytest.fixture
def config(db_path, tmp_path) -> WeaveConfig:
    return WeaveConfig(
        storage_engine="sqlite",
        sqlite_path=db_path,
        auth_engine="sqlite",
        auth_sqlite_path=tmp_path / "users.db",
        payload_max_size=1024,
        quota_kb=5000,
    )


@pytest.fixture
def storage(config):
    """Storage session for the owner ``alice``."""
    store = open_storage(config, "alice")
    yield store
    store.close()


@pytest.fixture
def storage_factory(config):
    """Open additional sessions (other owners, concurrent writers)."""
    opened = []

    def _open(owner: str = "alice") -> SQLStorage:
        store = SQLStorage(owner, SQLiteDialect(config.sqlite_path), config)
        opened.append(store)
        return store

    yield _open
    for store in opened:
        store.close()


def make_wbo(record_id: str, collection: str = "bookmarks", **fields) -> WBO:
    """Build a stored-ready WBO with a payload and timestamp."""
    fields.setdefault("payload", f"payload-{record_id}")
    fields.setdefault("modified", 1000.0)
    return WBO(id=record_id, collection=collection, **fields)


@pytest.fixture
def wbo_factory():
    return make_wbo
