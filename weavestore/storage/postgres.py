"""PostgreSQL engine for the WBO store, via psycopg2."""

import logging
import uuid

import psycopg2

from ..errors import ConfigurationError
from .schema import init_schema

logger = logging.getLogger(__name__)

# Rows fetched per round trip by server-side cursors
STREAM_BATCH_SIZE = 500


class PostgresDialect:
    """Connection and SQL details for psycopg2."""

    name = "postgres"
    placeholder = "%s"
    timestamp_type = "BIGINT"
    errors = (psycopg2.Error,)
    integrity_errors = (psycopg2.IntegrityError,)

    def __init__(self, dsn: str):
        if not dsn:
            raise ConfigurationError("postgres_dsn must be set for the postgres storage engine")
        self.dsn = dsn

    def connect(self):
        conn = psycopg2.connect(self.dsn)
        init_schema(conn, self.timestamp_type, self.placeholder)
        return conn

    def begin(self, conn) -> None:
        # psycopg2 opens a transaction implicitly on the first statement
        pass

    def cursor(self, conn, streaming: bool = False):
        """Plain cursor, or a named server-side cursor for streamed reads."""
        if not streaming:
            return conn.cursor()
        cur = conn.cursor(name=f"wbo_stream_{uuid.uuid4().hex[:12]}")
        cur.itersize = STREAM_BATCH_SIZE
        return cur
