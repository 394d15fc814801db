"""Error taxonomy for weavestore.

Storage, namespace and query layers raise these typed failures. The HTTP
layer is the only place that turns them into status codes.
"""

from typing import Optional

# Weave protocol response codes
ILLEGAL_METHOD = "1"
INVALID_USERNAME = "3"
OVERWRITE_PRECONDITION = "4"
USERID_PATH_MISMATCH = "5"
JSON_PARSE_FAILURE = "6"
INVALID_WBO = "8"


class WeaveError(Exception):
    """Base for all weavestore errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class BadRequestError(WeaveError):
    """Malformed path, missing owner/collection or unparsable body."""

    pass


class RecordValidationError(BadRequestError):
    """A record or query parameter failed validation."""

    def __init__(self, errors, message: Optional[str] = None):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(message or "; ".join(self.errors))


class UnauthorizedError(WeaveError):
    """Missing or incorrect credentials."""

    pass


class NotFoundError(WeaveError):
    """Single-record fetch miss."""

    pass


class PreconditionFailedError(WeaveError):
    """A conditional write lost the race against a newer write."""

    pass


class StorageUnavailableError(WeaveError):
    """Backend or infrastructure failure. Retryable by the client."""

    def __init__(self, message: str = "Database unavailable"):
        super().__init__(message)


class ConfigurationError(WeaveError):
    """Unknown engine name or missing connection parameters."""

    pass
