"""weavestore storage backends.

Relational storage for WBOs with two engines:
- sqlite: a single local database file (default)
- postgres: a PostgreSQL server via psycopg2
"""

from ..config import WeaveConfig
from ..errors import ConfigurationError
from .collections import WELL_KNOWN_COLLECTIONS, CollectionNamespace
from .engine import SQLStorage
from .query import SORT_ORDERS, Query, QueryFilters, build_query
from .sqlite import SQLiteDialect

STORAGE_ENGINES = ("sqlite", "postgres")


def get_dialect(config: WeaveConfig):
    """Return the dialect for the configured storage engine."""
    if config.storage_engine == "sqlite":
        return SQLiteDialect(config.sqlite_path)
    if config.storage_engine == "postgres":
        # Imported here so sqlite deployments never load the driver
        from .postgres import PostgresDialect

        return PostgresDialect(config.postgres_dsn)
    raise ConfigurationError(f"Unknown storage engine: {config.storage_engine}")


def open_storage(config: WeaveConfig, owner: str) -> SQLStorage:
    """Create a storage session for ``owner``. The connection opens on first use."""
    return SQLStorage(owner, get_dialect(config), config)


__all__ = [
    "STORAGE_ENGINES",
    "WELL_KNOWN_COLLECTIONS",
    "CollectionNamespace",
    "Query",
    "QueryFilters",
    "SORT_ORDERS",
    "SQLStorage",
    "SQLiteDialect",
    "build_query",
    "get_dialect",
    "open_storage",
]
