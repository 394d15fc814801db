"""Mapping of weavestore failures to HTTP responses.

This is the only place where a failure kind becomes a status code. Bodies
are the bare JSON-encoded message, as the Weave protocol expects.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from weavestore.errors import (
    BadRequestError,
    ConfigurationError,
    NotFoundError,
    PreconditionFailedError,
    StorageUnavailableError,
    UnauthorizedError,
    WeaveError,
)

from .logging_config import get_logger

logger = get_logger("weave.errors")

STATUS_CODES = {
    BadRequestError: 400,
    UnauthorizedError: 401,
    NotFoundError: 404,
    PreconditionFailedError: 412,
    StorageUnavailableError: 503,
    ConfigurationError: 503,
}


def status_for(exc: WeaveError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            return STATUS_CODES[exc_type]
    return 503


def weave_error_response(exc: WeaveError) -> JSONResponse:
    status_code = status_for(exc)
    headers = {}
    if status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="Weave"'
    if status_code == 503:
        logger.error(f"Infrastructure failure: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.message, headers=headers)


async def weave_error_handler(request: Request, exc: WeaveError) -> JSONResponse:
    """FastAPI exception handler for every :class:`WeaveError`."""
    return weave_error_response(exc)
