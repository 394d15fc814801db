"""weavestore - per-user synchronized storage for Weave Basic Objects."""

from .config import WeaveConfig
from .errors import (
    BadRequestError,
    ConfigurationError,
    NotFoundError,
    PreconditionFailedError,
    RecordValidationError,
    StorageUnavailableError,
    UnauthorizedError,
    WeaveError,
)
from .records import WBO, current_timestamp

__version__ = "0.1.0"

__all__ = [
    "WBO",
    "WeaveConfig",
    "WeaveError",
    "BadRequestError",
    "RecordValidationError",
    "UnauthorizedError",
    "NotFoundError",
    "PreconditionFailedError",
    "StorageUnavailableError",
    "ConfigurationError",
    "current_timestamp",
]
