"""Sync protocol routes: read, write and delete WBOs.

Paths are ``/{owner}``, ``/{owner}/{collection}`` and
``/{owner}/{collection}/{id}`` under the API prefix. Every request is
authenticated as the path owner before dispatch. Write and delete requests
honor ``X-If-Unmodified-Since``: if the collection changed after that time
the request fails with 412 and nothing is written.
"""

import json
import math
import re
from typing import Annotated, Any, Iterator

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.responses import StreamingResponse
from weavestore.errors import (
    ILLEGAL_METHOD,
    INVALID_WBO,
    JSON_PARSE_FAILURE,
    OVERWRITE_PRECONDITION,
    BadRequestError,
    NotFoundError,
    PreconditionFailedError,
    RecordValidationError,
    StorageUnavailableError,
)
from weavestore.output import iter_json_array
from weavestore.records import WBO, current_timestamp
from weavestore.storage import QueryFilters, SQLStorage

from ..auth import CurrentOwner
from ..database import Config, storage_for
from ..logging_config import get_logger, log_storage_operation
from ..models import BatchResponse

logger = get_logger("weave.sync")
router = APIRouter(tags=["storage"])

COLLECTION_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,32}$")

UnmodifiedSince = Annotated[str | None, Header(alias="X-If-Unmodified-Since")]


async def read_json_body(request: Request) -> Any:
    """Decode the request body as JSON, failing with protocol code 6."""
    raw = await request.body()
    try:
        return json.loads(raw)
    except ValueError:
        raise BadRequestError(JSON_PARSE_FAILURE)


JsonBody = Annotated[Any, Depends(read_json_body)]


def _check_collection(collection: str) -> str:
    if not COLLECTION_NAME_RE.match(collection):
        raise BadRequestError("invalid collection")
    return collection


def _parse_unmodified_since(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        timestamp = float(value)
    except ValueError:
        raise BadRequestError("invalid X-If-Unmodified-Since")
    if not math.isfinite(timestamp):
        raise BadRequestError("invalid X-If-Unmodified-Since")
    return timestamp


def check_precondition(storage: SQLStorage, collection: str, unmodified_since: float | None) -> None:
    """Fail if ``collection`` changed after the client's last known timestamp."""
    if unmodified_since is None:
        return
    if storage.max_modified(collection) > round(unmodified_since, 2):
        raise PreconditionFailedError(OVERWRITE_PRECONDITION)


def _is_set(value: str | None) -> bool:
    return value is not None and value.lower() not in ("", "0", "false", "no")


def _write(storage: SQLStorage, wbo: WBO) -> None:
    # No payload (as opposed to a blank one) means a metadata-only update
    if wbo.has("payload"):
        storage.store([wbo])
    else:
        storage.update(wbo)


def _failure_key(record_id: Any) -> str:
    if record_id is None:
        return ""
    return record_id if isinstance(record_id, str) else str(record_id)


# =============================================================================
# Reads
# =============================================================================


@router.get("/{owner}")
def list_collections(
    auth: CurrentOwner,
    config: Config,
    response: Response,
    timestamps: bool = False,
    counts: bool = False,
):
    """List the owner's non-empty collections.

    ``timestamps`` returns each collection's last modification time and
    ``counts`` its number of records instead of the bare name list.
    """
    response.headers.update(auth.response_headers())
    with storage_for(config, auth.owner) as storage:
        if timestamps:
            return storage.get_collection_list_with_timestamps()
        if counts:
            return storage.get_collection_list_with_counts()
        return storage.get_collection_list()


@router.get("/{owner}/{collection}/{record_id}")
def get_record(
    collection: str,
    record_id: str,
    auth: CurrentOwner,
    config: Config,
    response: Response,
):
    """Fetch a single record."""
    _check_collection(collection)
    response.headers.update(auth.response_headers())
    with storage_for(config, auth.owner) as storage:
        wbo = storage.retrieve_one(collection, record_id)
    if wbo is None:
        raise NotFoundError("record not found")
    return wbo.to_dict()


def _stream(storage: SQLStorage, items: Iterator) -> Iterator[str]:
    try:
        yield from iter_json_array(items)
    finally:
        storage.close()


@router.get("/{owner}/{collection}")
def list_records(
    collection: str,
    request: Request,
    auth: CurrentOwner,
    config: Config,
):
    """Stream the ids (or full records with ``full``) matching the filters.

    The response is written as the cursor is read, so arbitrarily large
    collections never sit in memory. Supported filters: ``ids``,
    ``parentid``, ``predecessorid``, ``newer``, ``older``, ``index_above``,
    ``index_below``, ``sort``, ``limit`` and ``offset``.
    """
    _check_collection(collection)
    params = request.query_params
    filters = QueryFilters.from_params(params)
    full = _is_set(params.get("full"))

    storage = storage_for(config, auth.owner)
    try:
        items = storage.retrieve(collection, filters, full=full)
    except BaseException:
        storage.close()
        raise
    return StreamingResponse(
        _stream(storage, items),
        media_type="application/json",
        headers=auth.response_headers(),
    )


# =============================================================================
# Writes
# =============================================================================


def _put(
    collection: str,
    record_id: str | None,
    body: Any,
    auth,
    config,
    response: Response,
    unmodified_since: str | None,
) -> float:
    _check_collection(collection)
    timestamp = _parse_unmodified_since(unmodified_since)
    try:
        wbo = WBO.from_json(body, collection)
    except RecordValidationError:
        raise BadRequestError(JSON_PARSE_FAILURE)

    if not wbo.id and record_id:
        wbo.set("id", record_id)
    wbo.set("modified", current_timestamp())

    with storage_for(config, auth.owner) as storage:
        storage.begin_transaction()
        check_precondition(storage, collection, timestamp)
        try:
            wbo.validate(config.payload_max_size)
        except RecordValidationError as e:
            log_storage_operation(auth.owner, "put", collection, _failure_key(wbo.id), False, e.message)
            raise BadRequestError(INVALID_WBO) from e
        _write(storage, wbo)
        storage.commit_transaction()

    log_storage_operation(auth.owner, "put", collection, wbo.id, True)
    response.headers.update(auth.response_headers())
    return wbo.modified


@router.put("/{owner}/{collection}/{record_id}")
def put_record(
    collection: str,
    record_id: str,
    auth: CurrentOwner,
    config: Config,
    body: JsonBody,
    response: Response,
    x_if_unmodified_since: UnmodifiedSince = None,
):
    """Write one record. Returns its new modification timestamp."""
    return _put(collection, record_id, body, auth, config, response, x_if_unmodified_since)


@router.put("/{owner}/{collection}")
def put_record_from_body(
    collection: str,
    auth: CurrentOwner,
    config: Config,
    body: JsonBody,
    response: Response,
    x_if_unmodified_since: UnmodifiedSince = None,
):
    """Write one record whose id is carried in the body."""
    return _put(collection, None, body, auth, config, response, x_if_unmodified_since)


@router.post("/{owner}/{collection}", response_model=BatchResponse)
def post_batch(
    collection: str,
    auth: CurrentOwner,
    config: Config,
    body: JsonBody,
    response: Response,
    x_if_unmodified_since: UnmodifiedSince = None,
):
    """Write a batch of records sharing one modification timestamp.

    Each record is validated and written on its own; a bad record is
    reported under ``failed`` and does not stop the others. All successful
    writes are committed together at the end.
    """
    _check_collection(collection)
    timestamp = _parse_unmodified_since(x_if_unmodified_since)
    if not isinstance(body, list) or not body:
        raise BadRequestError(JSON_PARSE_FAILURE)

    modified = current_timestamp()
    result = BatchResponse(modified=modified)
    logger.info(f"POST | {auth.owner}/{collection} | {len(body)} records")

    with storage_for(config, auth.owner) as storage:
        storage.begin_transaction()
        check_precondition(storage, collection, timestamp)
        for fragment in body:
            try:
                wbo = WBO.from_json(fragment, collection)
            except RecordValidationError as e:
                key = _failure_key(fragment.get("id") if isinstance(fragment, dict) else None)
                result.failed[key] = e.message
                continue

            wbo.set("modified", modified)
            try:
                wbo.validate(config.payload_max_size)
                _write(storage, wbo)
            except (RecordValidationError, StorageUnavailableError) as e:
                log_storage_operation(auth.owner, "post", collection, _failure_key(wbo.id), False, e.message)
                result.failed[_failure_key(wbo.id)] = e.message
                continue
            result.success.append(wbo.id)
        storage.commit_transaction()

    logger.info(
        f"POST COMPLETE | {auth.owner}/{collection} | "
        f"success={len(result.success)} failed={len(result.failed)}"
    )
    response.headers.update(auth.response_headers())
    return result


# =============================================================================
# Deletes
# =============================================================================


@router.delete("/{owner}/{collection}/{record_id}")
def delete_record(
    collection: str,
    record_id: str,
    auth: CurrentOwner,
    config: Config,
    response: Response,
    x_if_unmodified_since: UnmodifiedSince = None,
):
    """Delete one record. Succeeds whether or not it existed."""
    _check_collection(collection)
    unmodified_since = _parse_unmodified_since(x_if_unmodified_since)
    with storage_for(config, auth.owner) as storage:
        storage.begin_transaction()
        check_precondition(storage, collection, unmodified_since)
        timestamp = current_timestamp()
        storage.delete_one(collection, record_id)
        storage.commit_transaction()
    log_storage_operation(auth.owner, "delete", collection, record_id, True)
    response.headers.update(auth.response_headers())
    return timestamp


@router.delete("/{owner}/{collection}")
def delete_records(
    collection: str,
    request: Request,
    auth: CurrentOwner,
    config: Config,
    response: Response,
    x_if_unmodified_since: UnmodifiedSince = None,
):
    """Delete every record the same filters would list."""
    _check_collection(collection)
    unmodified_since = _parse_unmodified_since(x_if_unmodified_since)
    filters = QueryFilters.from_params(request.query_params)
    with storage_for(config, auth.owner) as storage:
        storage.begin_transaction()
        check_precondition(storage, collection, unmodified_since)
        timestamp = current_timestamp()
        deleted = storage.delete_many(collection, filters)
        storage.commit_transaction()
    logger.info(f"DELETE | {auth.owner}/{collection} | {deleted} records")
    response.headers.update(auth.response_headers())
    return timestamp


# =============================================================================
# Protocol errors
# =============================================================================


@router.api_route("/{owner}", methods=["PUT", "POST", "DELETE", "PATCH"])
@router.api_route("/{owner}/{collection}", methods=["PATCH"])
@router.api_route("/{owner}/{collection}/{record_id}", methods=["POST", "PATCH"])
def unsupported_method(auth: CurrentOwner):
    """Anything the protocol does not define, including writes without a collection."""
    raise BadRequestError(ILLEGAL_METHOD)
