"""SQL storage engine for WBOs.

One :class:`SQLStorage` serves one owner for the duration of a request. It
holds a single DB-API connection, owns the collection namespace for that
owner, and implements the read/write/delete operations on top of the shared
query builder. Engine specifics (driver, placeholder style, cursors) live in
a dialect object chosen by :func:`weavestore.storage.open_storage`.
"""

import contextlib
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from ..config import WeaveConfig
from ..errors import RecordValidationError, StorageUnavailableError
from ..records import WBO, current_timestamp, from_hundredths, to_hundredths
from .collections import CollectionNamespace
from .query import QueryFilters, build_query
from .schema import COLLECTIONS_TABLE, WBO_COLUMNS, WBO_TABLE

logger = logging.getLogger(__name__)

# Maximum ids per DELETE ... IN (...) statement
DELETE_CHUNK_SIZE = 500

# Rows pulled per fetchmany() while streaming
FETCH_BATCH_SIZE = 100


class SQLStorage:
    """Owner-scoped WBO storage over a relational engine.

    Usable as a context manager; the connection is opened lazily and closed
    by :meth:`close`.
    """

    def __init__(self, owner: str, dialect, config: Optional[WeaveConfig] = None):
        if not owner or not owner.strip():
            raise ValueError("Owner cannot be empty")
        self.owner = owner
        self.dialect = dialect
        self.config = config or WeaveConfig()
        self.placeholder = dialect.placeholder
        self.integrity_errors = dialect.integrity_errors
        self.namespace = CollectionNamespace(owner, self)
        self._conn = None
        self._in_transaction = False
        self._atomic_depth = 0

    def __enter__(self) -> "SQLStorage":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # === Connection handling ===

    @contextlib.contextmanager
    def _guard(self, operation: str):
        """Report driver failures as infrastructure errors."""
        try:
            yield
        except self.dialect.errors as e:
            logger.error(f"{operation}: {e}")
            raise StorageUnavailableError() from e

    def get_connection(self):
        """Return the session connection, opening it on first use."""
        if self._conn is None:
            with self._guard("open_connection"):
                self._conn = self.dialect.connect()
        return self._conn

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            if self._in_transaction:
                self._conn.rollback()
            self._conn.close()
        except self.dialect.errors as e:
            logger.warning(f"Error closing storage connection: {e}")
        finally:
            self._conn = None
            self._in_transaction = False

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement and return its row count."""
        cur = self.get_connection().cursor()
        try:
            cur.execute(sql, tuple(params))
            return cur.rowcount
        finally:
            cur.close()

    def fetch_one(self, sql: str, params: Sequence[Any] = ()):
        cur = self.get_connection().cursor()
        try:
            cur.execute(sql, tuple(params))
            return cur.fetchone()
        finally:
            cur.close()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        cur = self.get_connection().cursor()
        try:
            cur.execute(sql, tuple(params))
            return list(cur.fetchall())
        finally:
            cur.close()

    @contextlib.contextmanager
    def atomic(self):
        """Group statements so they apply together or not at all.

        Outside a transaction the outermost block commits on success and
        rolls back on failure. Nested blocks, and every block inside
        :meth:`begin_transaction`, run under a savepoint so a failing write
        is undone without aborting the surrounding transaction.
        """
        conn = self.get_connection()
        outermost = self._atomic_depth == 0 and not self._in_transaction
        savepoint = f"wbo_sp_{self._atomic_depth}"
        if outermost:
            self.dialect.begin(conn)
        else:
            self.execute(f"SAVEPOINT {savepoint}")
        self._atomic_depth += 1
        try:
            yield
        except BaseException:
            self._atomic_depth -= 1
            if outermost:
                conn.rollback()
            else:
                self.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                self.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        self._atomic_depth -= 1
        if outermost:
            conn.commit()
        else:
            self.execute(f"RELEASE SAVEPOINT {savepoint}")

    def begin_transaction(self) -> None:
        """Start a multi-record write region ended by :meth:`commit_transaction`."""
        with self._guard("begin_transaction"):
            self.dialect.begin(self.get_connection())
        self._in_transaction = True

    def commit_transaction(self) -> None:
        with self._guard("commit_transaction"):
            self.get_connection().commit()
        self._in_transaction = False

    def rollback_transaction(self) -> None:
        with self._guard("rollback_transaction"):
            self.get_connection().rollback()
        self._in_transaction = False

    # === Collections ===

    def _collection_id(self, collection: str, create: bool = False) -> Optional[int]:
        if not collection:
            raise RecordValidationError("missing collection")
        return self.namespace.resolve(collection, create=create)

    def _collection_aggregate(self, aggregate: str) -> Dict[int, Any]:
        p = self.placeholder
        rows = self.fetch_all(
            f"SELECT collection, {aggregate} FROM {WBO_TABLE} WHERE owner = {p} GROUP BY collection",
            (self.owner,),
        )
        return {row[0]: row[1] for row in rows}

    def get_collection_list(self) -> List[str]:
        """Names of the owner's non-empty collections."""
        with self._guard("get_collection_list"):
            aggregates = self._collection_aggregate("COUNT(*)")
            names = self.namespace.names_for(aggregates)
        return sorted(names.values())

    def get_collection_list_with_timestamps(self) -> Dict[str, float]:
        """Collection name to most recent ``modified``."""
        with self._guard("get_collection_list_with_timestamps"):
            aggregates = self._collection_aggregate("MAX(modified)")
            names = self.namespace.names_for(aggregates)
        return {name: from_hundredths(aggregates[cid]) for cid, name in names.items()}

    def get_collection_list_with_counts(self) -> Dict[str, int]:
        """Collection name to record count."""
        with self._guard("get_collection_list_with_counts"):
            aggregates = self._collection_aggregate("COUNT(*)")
            names = self.namespace.names_for(aggregates)
        return {name: int(aggregates[cid]) for cid, name in names.items()}

    def max_modified(self, collection: str) -> float:
        """Most recent ``modified`` in ``collection``, 0 when it has no records."""
        with self._guard("max_modified"):
            collection_id = self._collection_id(collection)
            if collection_id is None:
                return 0.0
            p = self.placeholder
            row = self.fetch_one(
                f"SELECT MAX(modified) FROM {WBO_TABLE} WHERE owner = {p} AND collection = {p}",
                (self.owner, collection_id),
            )
        return from_hundredths(row[0]) if row else 0.0

    # === Writes ===

    def store(self, records: Union[WBO, Sequence[WBO]]) -> None:
        """Insert records, replacing every mutable field of existing ones.

        Records without a ``modified`` value are stamped with the current time.
        """
        if isinstance(records, WBO):
            records = [records]
        p = self.placeholder
        sql = (
            f"INSERT INTO {WBO_TABLE} (owner, collection, id, parentid, predecessorid, "
            f"sortindex, modified, payload, payload_size) "
            f"VALUES ({', '.join([p] * 9)}) "
            f"ON CONFLICT (owner, collection, id) DO UPDATE SET "
            f"parentid = excluded.parentid, predecessorid = excluded.predecessorid, "
            f"sortindex = excluded.sortindex, modified = excluded.modified, "
            f"payload = excluded.payload, payload_size = excluded.payload_size"
        )
        with self._guard("store"), self.atomic():
            for wbo in records:
                if wbo.modified is None:
                    wbo.set("modified", current_timestamp())
                collection_id = self._collection_id(wbo.collection, create=True)
                self.execute(
                    sql,
                    (
                        self.owner,
                        collection_id,
                        wbo.id,
                        wbo.parentid,
                        wbo.predecessorid,
                        wbo.sortindex,
                        to_hundredths(wbo.modified),
                        wbo.payload,
                        wbo.payload_size,
                    ),
                )

    def update(self, wbo: WBO) -> bool:
        """Merge the fields present on ``wbo`` into the stored record.

        ``modified`` only moves when ``parentid`` or ``payload`` changes; a
        weight-only change (sortindex) leaves it alone.

        Returns:
            False when nothing changed: no updatable fields were present, or
            no stored record matched. True otherwise.
        """
        if not wbo.id:
            raise RecordValidationError("missing id")

        p = self.placeholder
        assignments = []
        params: List[Any] = []

        for name in ("parentid", "predecessorid", "sortindex"):
            if wbo.has(name):
                assignments.append(f"{name} = {p}")
                params.append(getattr(wbo, name))

        if wbo.has("payload"):
            assignments.append(f"payload = {p}")
            assignments.append(f"payload_size = {p}")
            params.extend([wbo.payload, wbo.payload_size])

        if wbo.has("parentid") or wbo.has("payload"):
            if wbo.modified is None:
                logger.warning(f"update called without a timestamp for {wbo.collection}/{wbo.id}")
                wbo.set("modified", current_timestamp())
            assignments.append(f"modified = {p}")
            params.append(to_hundredths(wbo.modified))

        if not assignments:
            return False

        with self._guard("update"):
            collection_id = self._collection_id(wbo.collection)
            if collection_id is None:
                return False
            params.extend([self.owner, collection_id, wbo.id])
            with self.atomic():
                rowcount = self.execute(
                    f"UPDATE {WBO_TABLE} SET {', '.join(assignments)} "
                    f"WHERE owner = {p} AND collection = {p} AND id = {p}",
                    params,
                )
        return rowcount > 0

    def delete_one(self, collection: str, record_id: str) -> int:
        """Delete a single record. Returns the number of rows removed (0 or 1)."""
        with self._guard("delete_one"):
            collection_id = self._collection_id(collection)
            if collection_id is None:
                return 0
            p = self.placeholder
            with self.atomic():
                return self.execute(
                    f"DELETE FROM {WBO_TABLE} WHERE owner = {p} AND collection = {p} AND id = {p}",
                    (self.owner, collection_id, record_id),
                )

    def delete_many(self, collection: str, filters: Optional[QueryFilters] = None) -> int:
        """Delete every record :meth:`retrieve` would list for ``filters``.

        Neither engine accepts ORDER BY/LIMIT on DELETE, so paged filters
        select the target ids first and delete exactly that set.

        Returns:
            Number of records removed.
        """
        filters = filters or QueryFilters()
        with self._guard("delete_many"):
            collection_id = self._collection_id(collection)
            if collection_id is None:
                return 0
            query = build_query(self.owner, collection_id, filters, self.placeholder)

            with self.atomic():
                if not filters.is_paged:
                    sql, params = query.delete_sql(WBO_TABLE)
                    return self.execute(sql, params)

                sql, params = query.select_sql(WBO_TABLE, ["id"])
                ids = [row[0] for row in self.fetch_all(sql, params)]
                p = self.placeholder
                deleted = 0
                for start in range(0, len(ids), DELETE_CHUNK_SIZE):
                    chunk = ids[start:start + DELETE_CHUNK_SIZE]
                    deleted += self.execute(
                        f"DELETE FROM {WBO_TABLE} WHERE owner = {p} AND collection = {p} "
                        f"AND id IN ({', '.join([p] * len(chunk))})",
                        [self.owner, collection_id, *chunk],
                    )
        logger.debug(f"delete_many {self.owner}/{collection}: {deleted} removed")
        return deleted

    def delete_user(self) -> None:
        """Remove every record and collection mapping of the owner."""
        p = self.placeholder
        with self._guard("delete_user"), self.atomic():
            self.execute(f"DELETE FROM {WBO_TABLE} WHERE owner = {p}", (self.owner,))
            self.execute(f"DELETE FROM {COLLECTIONS_TABLE} WHERE owner = {p}", (self.owner,))
        logger.info(f"Deleted all data for {self.owner}")

    # === Reads ===

    def retrieve_one(self, collection: str, record_id: str) -> Optional[WBO]:
        records = list(self.retrieve(collection, QueryFilters(id=record_id), full=True))
        return records[0] if records else None

    def retrieve(
        self,
        collection: str,
        filters: Optional[QueryFilters] = None,
        full: bool = False,
    ) -> Iterator[Union[str, WBO]]:
        """Run a filtered read and return a lazy, single-pass result.

        The query executes immediately, so failures surface here rather than
        midway through a streamed response. Rows are then pulled from the
        cursor as the returned iterator is consumed; closing the iterator
        closes the cursor.

        Args:
            collection: Collection name.
            filters: Filter, sort and paging options.
            full: Yield full WBOs instead of ids.

        Returns:
            Iterator over ids or WBOs. Payloads are passed through unchecked.
        """
        with self._guard("retrieve"):
            collection_id = self._collection_id(collection)
            if collection_id is None:
                return iter(())
            query = build_query(self.owner, collection_id, filters, self.placeholder)
            columns = list(WBO_COLUMNS) if full else ["id"]
            sql, params = query.select_sql(WBO_TABLE, columns)
            cur = self.dialect.cursor(self.get_connection(), streaming=True)
            try:
                cur.execute(sql, tuple(params))
            except BaseException:
                cur.close()
                raise
        return self._iter_rows(cur, columns, collection if full else None)

    def _iter_rows(self, cur, columns: List[str], collection: Optional[str]):
        try:
            with self._guard("retrieve"):
                while True:
                    rows = cur.fetchmany(FETCH_BATCH_SIZE)
                    if not rows:
                        break
                    for row in rows:
                        if collection is None:
                            yield row[0]
                        else:
                            yield WBO.from_row(dict(zip(columns, row)), collection)
        finally:
            cur.close()

    # === Accounting ===

    def storage_total(self) -> int:
        """Total payload bytes stored for the owner, in kilobytes."""
        with self._guard("storage_total"):
            row = self.fetch_one(
                f"SELECT COALESCE(SUM(payload_size), 0) FROM {WBO_TABLE} WHERE owner = {self.placeholder}",
                (self.owner,),
            )
        return int(round((row[0] or 0) / 1024.0))

    def quota(self) -> Optional[int]:
        """Configured quota in kilobytes, None when unbounded."""
        return self.config.quota_kb or None

    def heartbeat(self) -> bool:
        try:
            row = self.fetch_one("SELECT 1")
        except StorageUnavailableError:
            return False
        except self.dialect.errors as e:
            logger.warning(f"Storage heartbeat failed: {e}")
            return False
        return bool(row and row[0] == 1)
