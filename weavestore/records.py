"""Weave Basic Object (WBO) record model.

A WBO is the atomic synchronized record: an opaque payload plus a few
ordering attributes, identified by (owner, collection, id). This module owns
field validation and the JSON contract; storage rows are converted here in
both directions.
"""

import json
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Set

from .errors import RecordValidationError

ID_MAX_LENGTH = 64
SORTINDEX_MAX = 999999999
SORTINDEX_MIN = -999999999

# Fields a client may write. payload_size is always derived.
WRITABLE_FIELDS = ("id", "parentid", "predecessorid", "sortindex", "modified", "payload")

_ID_RE = re.compile(r"^[\x21-\x2e\x30-\x7e]+$")  # printable ASCII, no '/'


def _is_utf8(value: str) -> bool:
    # json.loads lets lone surrogates through; they cannot be stored
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def current_timestamp() -> float:
    """Current Unix time at the 2-decimal precision WBOs carry."""
    return round(time.time(), 2)


def to_hundredths(timestamp: float) -> int:
    """Storage representation of a timestamp: integer hundredths of a second."""
    return int(round(float(timestamp) * 100))


def from_hundredths(value: Optional[int]) -> float:
    if value is None:
        return 0.0
    return round(int(value) / 100.0, 2)


@dataclass
class WBO:
    """A single synchronized record.

    ``present`` holds the names of the fields supplied by the client. It
    separates "not sent" from "sent as null", which drives the partial
    update rules. When a WBO is built directly in code, every non-None field
    counts as present.
    """

    id: Optional[str] = None
    collection: Optional[str] = None
    parentid: Optional[str] = None
    predecessorid: Optional[str] = None
    sortindex: Optional[int] = None
    modified: Optional[float] = None
    payload: Optional[str] = None
    present: Set[str] = field(default_factory=set, compare=False, repr=False)

    def __post_init__(self):
        if not self.present:
            self.present = {
                name for name in WRITABLE_FIELDS if getattr(self, name) is not None
            }

    @property
    def payload_size(self) -> int:
        if not isinstance(self.payload, str):
            return 0
        return len(self.payload.encode("utf-8"))

    def has(self, name: str) -> bool:
        """Whether ``name`` was explicitly supplied."""
        return name in self.present

    def set(self, name: str, value: Any) -> None:
        setattr(self, name, value)
        self.present.add(name)

    @classmethod
    def from_json(cls, data: Any, collection: Optional[str] = None) -> "WBO":
        """Build a WBO from a decoded JSON value.

        ``data`` is already decoded; a JSON string value is not parsed again.
        Unknown keys such as ``ttl`` are ignored. Type checking of the known
        keys happens in :meth:`validate`.

        Raises:
            RecordValidationError: If the value is not a JSON object.
        """
        if not isinstance(data, Mapping):
            raise RecordValidationError("record must be a JSON object")

        wbo = cls(collection=collection)
        for name in WRITABLE_FIELDS:
            if name in data:
                wbo.set(name, data[name])
        return wbo

    @classmethod
    def from_row(cls, row: Mapping[str, Any], collection: Optional[str] = None) -> "WBO":
        """Build a WBO from a storage row (payload passed through unchecked)."""
        return cls(
            id=row["id"],
            collection=collection,
            parentid=row["parentid"],
            predecessorid=row["predecessorid"],
            sortindex=row["sortindex"],
            modified=from_hundredths(row["modified"]),
            payload=row["payload"],
        )

    def validate(self, payload_max_size: int = 0) -> None:
        """Check every field before the record may reach storage.

        Args:
            payload_max_size: Maximum payload size in bytes, 0 for unlimited.

        Raises:
            RecordValidationError: Listing every problem found.
        """
        errors = []

        if not isinstance(self.id, str) or not self.id:
            errors.append("invalid id")
        elif len(self.id) > ID_MAX_LENGTH or not _ID_RE.match(self.id):
            errors.append("invalid id")

        for name in ("parentid", "predecessorid"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, str) or len(value) > ID_MAX_LENGTH or not _is_utf8(value):
                errors.append(f"invalid {name}")

        if self.sortindex is not None:
            if isinstance(self.sortindex, bool) or not isinstance(self.sortindex, int):
                errors.append("invalid sortindex")
            elif not SORTINDEX_MIN <= self.sortindex <= SORTINDEX_MAX:
                errors.append("invalid sortindex")

        if self.modified is not None and (
            isinstance(self.modified, bool)
            or not isinstance(self.modified, (int, float))
            or (isinstance(self.modified, float) and not math.isfinite(self.modified))
        ):
            errors.append("invalid modified")

        if self.has("payload"):
            if not isinstance(self.payload, str):
                errors.append("payload must be a string")
            elif not _is_utf8(self.payload):
                errors.append("invalid payload")
            elif payload_max_size and self.payload_size > payload_max_size:
                errors.append("payload too large")

        if errors:
            raise RecordValidationError(errors)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict. Unset optional fields are omitted."""
        data: Dict[str, Any] = {"id": self.id}
        if self.parentid is not None:
            data["parentid"] = self.parentid
        if self.predecessorid is not None:
            data["predecessorid"] = self.predecessorid
        if self.sortindex is not None:
            data["sortindex"] = self.sortindex
        if self.modified is not None:
            data["modified"] = round(float(self.modified), 2)
        if self.payload is not None:
            data["payload"] = self.payload
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
