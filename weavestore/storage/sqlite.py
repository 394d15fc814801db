"""SQLite engine for the WBO store.

All owners share one database file; rows are scoped by the ``owner`` column.
"""

import logging
import sqlite3
from pathlib import Path

from .schema import init_schema

logger = logging.getLogger(__name__)


class SQLiteDialect:
    """Connection and SQL details for sqlite3."""

    name = "sqlite"
    placeholder = "?"
    timestamp_type = "INTEGER"
    errors = (sqlite3.Error,)
    integrity_errors = (sqlite3.IntegrityError,)

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def connect(self) -> sqlite3.Connection:
        """Open a connection and make sure the schema exists.

        Connections may be handed between worker threads within one request
        (a streamed response is written from a different thread than the one
        that ran the query), hence ``check_same_thread=False``.
        """
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA journal_mode=WAL")
        init_schema(conn, self.timestamp_type, self.placeholder)
        return conn

    def begin(self, conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            conn.execute("BEGIN IMMEDIATE")

    def cursor(self, conn: sqlite3.Connection, streaming: bool = False):
        return conn.cursor()
