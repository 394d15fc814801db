"""Collection namespace: human-readable collection names to per-owner ids.

Well-known collections have fixed ids shared by every owner. Any other name
gets the next free id above 100 for that owner, recorded in the
``collections`` table. The namespace keeps its own name/id cache for the
lifetime of a storage session and fills it on miss.
"""

import logging
from typing import Dict, Iterable, Optional

from ..errors import StorageUnavailableError
from .schema import COLLECTIONS_TABLE

logger = logging.getLogger(__name__)

WELL_KNOWN_COLLECTIONS = {
    "clients": 1,
    "crypto": 2,
    "forms": 3,
    "history": 4,
    "keys": 5,
    "meta": 6,
    "bookmarks": 7,
    "prefs": 8,
    "tabs": 9,
    "passwords": 10,
}
WELL_KNOWN_NAMES = {cid: name for name, cid in WELL_KNOWN_COLLECTIONS.items()}

# Dynamically assigned ids start above this value
FIRST_CUSTOM_ID = 100

# Attempts at allocating an id before giving up on a contended name
ALLOCATION_ATTEMPTS = 5


class CollectionNamespace:
    """Resolves collection names for one owner.

    Args:
        owner: Owner key.
        db: The storage session. Provides ``fetch_one``, ``fetch_all``,
            ``execute``, ``atomic`` and ``integrity_errors``.
    """

    def __init__(self, owner: str, db):
        self.owner = owner
        self._db = db
        self._ids: Dict[str, int] = {}
        self._names: Dict[int, str] = {}
        self._loaded = False

    def _remember(self, name: str, collection_id: int) -> int:
        self._ids[name] = collection_id
        self._names[collection_id] = name
        return collection_id

    def resolve(self, name: str, create: bool = True) -> Optional[int]:
        """Return the id for ``name``.

        Args:
            name: Collection name.
            create: Allocate an id when the name is unknown. Read paths pass
                False and treat None as an empty collection.

        Returns:
            The collection id, or None when unknown and ``create`` is False.
        """
        if name in WELL_KNOWN_COLLECTIONS:
            return WELL_KNOWN_COLLECTIONS[name]
        if name in self._ids:
            return self._ids[name]

        collection_id = self._lookup(name)
        if collection_id is not None:
            return self._remember(name, collection_id)
        if not create:
            return None
        return self._remember(name, self._allocate(name))

    def name_of(self, collection_id: int) -> Optional[str]:
        """Return the name for ``collection_id``, loading the mapping on miss."""
        if collection_id in WELL_KNOWN_NAMES:
            return WELL_KNOWN_NAMES[collection_id]
        if collection_id not in self._names and not self._loaded:
            self.load()
        return self._names.get(collection_id)

    def names_for(self, collection_ids: Iterable[int]) -> Dict[int, str]:
        """Map ids to names with at most one reconciliation load.

        Ids that are still unknown afterwards are orphans and are left out.
        """
        names = {}
        for collection_id in collection_ids:
            name = self.name_of(collection_id)
            if name is None:
                logger.debug(f"Dropping orphaned collection {collection_id} for {self.owner}")
                continue
            names[collection_id] = name
        return names

    def load(self) -> None:
        """Fill the cache from the owner's whole mapping table."""
        p = self._db.placeholder
        rows = self._db.fetch_all(
            f"SELECT collectionid, name FROM {COLLECTIONS_TABLE} WHERE owner = {p}",
            (self.owner,),
        )
        for collection_id, name in rows:
            self._remember(name, collection_id)
        self._loaded = True

    def _lookup(self, name: str) -> Optional[int]:
        p = self._db.placeholder
        row = self._db.fetch_one(
            f"SELECT collectionid FROM {COLLECTIONS_TABLE} WHERE owner = {p} AND name = {p}",
            (self.owner, name),
        )
        return row[0] if row else None

    def _allocate(self, name: str) -> int:
        """Insert a new mapping for ``name``.

        Concurrent writers are serialized by the table's unique constraints:
        the loser of a race sees an integrity error, re-reads the mapping and
        either adopts the winner's id or tries the next free one.
        """
        p = self._db.placeholder
        for _ in range(ALLOCATION_ATTEMPTS):
            row = self._db.fetch_one(
                f"SELECT MAX(collectionid) FROM {COLLECTIONS_TABLE} WHERE owner = {p}",
                (self.owner,),
            )
            current = row[0] if row and row[0] is not None else 0
            collection_id = max(current, FIRST_CUSTOM_ID) + 1
            try:
                with self._db.atomic():
                    self._db.execute(
                        f"INSERT INTO {COLLECTIONS_TABLE} (owner, collectionid, name) "
                        f"VALUES ({p}, {p}, {p})",
                        (self.owner, collection_id, name),
                    )
            except self._db.integrity_errors as e:
                logger.debug(f"Collection id allocation for {name!r} collided ({e}), retrying")
                existing = self._lookup(name)
                if existing is not None:
                    return existing
                continue
            logger.info(f"Allocated collection {name!r} -> {collection_id} for {self.owner}")
            return collection_id

        existing = self._lookup(name)
        if existing is not None:
            return existing
        logger.error(f"Could not allocate an id for collection {name!r} for {self.owner}")
        raise StorageUnavailableError()
