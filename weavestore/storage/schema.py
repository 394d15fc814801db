"""Database schema for the WBO store.

The DDL is shared by every engine; only the type used for the ``modified``
column differs. ``modified`` holds hundredths of a second.
"""

import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

WBO_TABLE = "wbo"
COLLECTIONS_TABLE = "collections"

# Column order used for full-record reads
WBO_COLUMNS = ("id", "parentid", "predecessorid", "sortindex", "modified", "payload", "payload_size")

SCHEMA_TEMPLATE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Per-owner names for collections outside the well-known set
CREATE TABLE IF NOT EXISTS collections (
    owner TEXT NOT NULL,
    collectionid INTEGER NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (owner, collectionid),
    UNIQUE (owner, name)
);

CREATE TABLE IF NOT EXISTS wbo (
    owner TEXT NOT NULL,
    collection INTEGER NOT NULL,
    id TEXT NOT NULL,
    parentid TEXT,
    predecessorid TEXT,
    sortindex INTEGER,
    modified {timestamp_type} NOT NULL,
    payload TEXT,
    payload_size INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (owner, collection, id)
);

CREATE INDEX IF NOT EXISTS wbo_parent_idx ON wbo (owner, collection, parentid);
CREATE INDEX IF NOT EXISTS wbo_modified_idx ON wbo (owner, collection, modified);
CREATE INDEX IF NOT EXISTS wbo_weight_idx ON wbo (owner, collection, sortindex);
CREATE INDEX IF NOT EXISTS wbo_predecessor_idx ON wbo (owner, collection, predecessorid);
CREATE INDEX IF NOT EXISTS wbo_size_idx ON wbo (owner, payload_size);
"""


def schema_statements(timestamp_type: str = "INTEGER") -> list:
    """Split the schema into individual statements for the target engine."""
    script = SCHEMA_TEMPLATE.format(timestamp_type=timestamp_type)
    statements = []
    for chunk in script.split(";"):
        lines = [line for line in chunk.splitlines() if line.strip() and not line.strip().startswith("--")]
        if lines:
            statements.append("\n".join(lines))
    return statements


def init_schema(conn, timestamp_type: str = "INTEGER", placeholder: str = "?") -> None:
    """Create tables and indexes if missing and record the schema version.

    Args:
        conn: Open DB-API connection. Committed on success.
        timestamp_type: SQL type of the ``modified`` column.
        placeholder: Parameter marker of the driver.
    """
    cur = conn.cursor()
    try:
        for statement in schema_statements(timestamp_type):
            cur.execute(statement)
        cur.execute("SELECT MAX(version) FROM schema_version")
        row = cur.fetchone()
        if row is None or row[0] is None:
            cur.execute(
                f"INSERT INTO schema_version (version) VALUES ({placeholder}) "
                "ON CONFLICT (version) DO NOTHING",
                (SCHEMA_VERSION,),
            )
            logger.info(f"Initialized WBO schema version {SCHEMA_VERSION}")
        elif row[0] > SCHEMA_VERSION:
            logger.warning(
                f"Database schema version {row[0]} is newer than supported {SCHEMA_VERSION}"
            )
    finally:
        cur.close()
    conn.commit()
