"""Filtered query construction shared by listing and deletion.

One :class:`Query` describes which rows of an owner's collection an operation
touches. Reads render it as a SELECT; deletes either render it as a DELETE
or, when ordering or paging is involved, select the id set first and delete
exactly those ids. Both paths use the same predicate so that "delete what
you would have listed" holds.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..errors import RecordValidationError
from ..records import to_hundredths

SORT_ORDERS = {
    "index": "sortindex DESC, id",
    "newest": "modified DESC, id",
    "oldest": "modified ASC, id",
}

# Largest value both engines bind as a 64-bit integer
SQL_INT_MAX = 2**63 - 1

# Timestamps are stored in hundredths, so their bound is 100 times smaller
TIMESTAMP_MAX = SQL_INT_MAX // 100


def _within(value, bound) -> bool:
    # False for nan and infinities as well
    return -bound <= value <= bound


@dataclass(frozen=True)
class QueryFilters:
    """The fixed filter set. Every option is optional; all are AND-ed."""

    id: Optional[str] = None
    ids: Optional[Tuple[str, ...]] = None
    parentid: Optional[str] = None
    predecessorid: Optional[str] = None
    newer: Optional[float] = None
    older: Optional[float] = None
    index_above: Optional[int] = None
    index_below: Optional[int] = None
    sort: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def __post_init__(self):
        errors = []
        if self.sort is not None and self.sort not in SORT_ORDERS:
            errors.append(f"invalid sort: {self.sort}")
        if self.limit is not None and self.limit < 1:
            errors.append("limit must be a positive integer")
        if self.offset is not None and self.offset < 0:
            errors.append("offset must not be negative")
        for name in ("limit", "offset", "index_above", "index_below"):
            value = getattr(self, name)
            if value is not None and not _within(value, SQL_INT_MAX):
                errors.append(f"{name} out of range")
        for name in ("newer", "older"):
            value = getattr(self, name)
            if value is not None and not _within(value, TIMESTAMP_MAX):
                errors.append(f"invalid {name}")
        if errors:
            raise RecordValidationError(errors)
        if self.ids is not None and not isinstance(self.ids, tuple):
            object.__setattr__(self, "ids", tuple(self.ids))

    @property
    def is_paged(self) -> bool:
        """Whether paging narrows the matched set below the predicate."""
        return self.limit is not None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "QueryFilters":
        """Parse raw query-string values.

        ``ids`` is a comma-separated list; empty values count as absent.

        Raises:
            RecordValidationError: On malformed numbers or unknown sort orders.
        """
        errors: List[str] = []

        def text(name: str) -> Optional[str]:
            value = params.get(name)
            if value is None or value == "":
                return None
            return str(value)

        def number(name: str, convert):
            value = text(name)
            if value is None:
                return None
            try:
                return convert(value)
            except (TypeError, ValueError):
                errors.append(f"invalid {name}")
                return None

        ids_value = text("ids")
        ids = tuple(i for i in ids_value.split(",") if i) if ids_value else None

        values = dict(
            id=text("id"),
            ids=ids or None,
            parentid=text("parentid"),
            predecessorid=text("predecessorid"),
            newer=number("newer", float),
            older=number("older", float),
            index_above=number("index_above", int),
            index_below=number("index_below", int),
            sort=text("sort"),
            limit=number("limit", int),
            offset=number("offset", int),
        )
        if errors:
            raise RecordValidationError(errors)
        return cls(**values)


@dataclass
class Query:
    """A parameterized predicate plus ordering and paging."""

    where: str
    params: List[Any] = field(default_factory=list)
    order_by: str = ""
    limit: Optional[int] = None
    offset: Optional[int] = None
    placeholder: str = "?"

    def _tail(self) -> Tuple[str, List[Any]]:
        sql = ""
        params: List[Any] = []
        if self.order_by:
            sql += f" ORDER BY {self.order_by}"
        if self.limit is not None:
            sql += f" LIMIT {self.placeholder}"
            params.append(self.limit)
            if self.offset:
                sql += f" OFFSET {self.placeholder}"
                params.append(self.offset)
        return sql, params

    def select_sql(self, table: str, columns: Sequence[str]) -> Tuple[str, List[Any]]:
        tail, tail_params = self._tail()
        sql = f"SELECT {', '.join(columns)} FROM {table} WHERE {self.where}{tail}"
        return sql, self.params + tail_params

    def delete_sql(self, table: str) -> Tuple[str, List[Any]]:
        """Predicate-only DELETE. Callers must not use it for paged queries."""
        return f"DELETE FROM {table} WHERE {self.where}", list(self.params)


def build_query(
    owner: str,
    collection_id: int,
    filters: Optional[QueryFilters] = None,
    placeholder: str = "?",
) -> Query:
    """Translate filters into a predicate scoped to (owner, collection).

    Args:
        owner: Owner key.
        collection_id: Resolved collection id.
        filters: Filter options; None means the whole collection.
        placeholder: DB-API parameter marker of the target driver.

    Returns:
        The query, ready for :meth:`Query.select_sql` or :meth:`Query.delete_sql`.
    """
    filters = filters or QueryFilters()
    p = placeholder
    clauses = [f"owner = {p}", f"collection = {p}"]
    params: List[Any] = [owner, collection_id]

    if filters.id is not None:
        clauses.append(f"id = {p}")
        params.append(filters.id)

    if filters.ids:
        clauses.append(f"id IN ({', '.join([p] * len(filters.ids))})")
        params.extend(filters.ids)

    if filters.parentid is not None:
        clauses.append(f"parentid = {p}")
        params.append(filters.parentid)

    if filters.predecessorid is not None:
        clauses.append(f"predecessorid = {p}")
        params.append(filters.predecessorid)

    if filters.index_above is not None:
        clauses.append(f"sortindex > {p}")
        params.append(filters.index_above)

    if filters.index_below is not None:
        clauses.append(f"sortindex < {p}")
        params.append(filters.index_below)

    if filters.newer is not None:
        clauses.append(f"modified > {p}")
        params.append(to_hundredths(filters.newer))

    if filters.older is not None:
        clauses.append(f"modified < {p}")
        params.append(to_hundredths(filters.older))

    return Query(
        where=" AND ".join(clauses),
        params=params,
        order_by=SORT_ORDERS.get(filters.sort, "") if filters.sort else "",
        limit=filters.limit,
        offset=filters.offset if filters.limit is not None else None,
        placeholder=placeholder,
    )
