"""Incremental JSON array writer for large listings.

Result sets can be too large to hold in memory, so listings are written as a
stream: ``[``, each element with separators, then ``]``. The source iterator
is consumed once and closed when the writer stops, including when the client
goes away mid-response.
"""

import json
from typing import Callable, Iterable, Iterator, Union

from .records import WBO


def encode_id(record_id: str) -> str:
    return json.dumps(record_id)


def encode_record(wbo: WBO) -> str:
    return wbo.to_json()


def encode_item(item: Union[str, WBO]) -> str:
    if isinstance(item, WBO):
        return encode_record(item)
    return encode_id(item)


def iter_json_array(
    items: Iterable, encode: Callable[[object], str] = encode_item
) -> Iterator[str]:
    """Yield the JSON text of ``items`` as an array, one chunk per element."""
    source = iter(items)
    try:
        yield "["
        first = True
        for item in source:
            if first:
                first = False
                yield encode(item)
            else:
                yield "," + encode(item)
        yield "]"
    finally:
        close = getattr(source, "close", None)
        if close is not None:
            close()
