"""Logging setup for the weavestore sync server."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stderr handler to the ``weave`` and ``weavestore`` loggers.

    Safe to call more than once; only the level changes on later calls.
    """
    global _configured
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    for name in ("weave", "weavestore"):
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        if not _configured:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
    _configured = True
    return logging.getLogger("weave")


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``weave`` namespace."""
    if not name.startswith("weave"):
        name = f"weave.{name}"
    return logging.getLogger(name)


_storage_logger = get_logger("weave.storage")
_auth_logger = get_logger("weave.auth")


def log_storage_operation(
    owner: str,
    operation: str,
    collection: str | None,
    record_id: str | None,
    success: bool,
    error: str | None = None,
) -> None:
    """Log a single storage operation from the sync handler."""
    target = "/".join(part for part in (owner, collection, record_id) if part)
    if success:
        _storage_logger.debug(f"{operation.upper()} | {target} | ok")
    else:
        _storage_logger.warning(f"{operation.upper()} | {target} | failed: {error}")


def log_auth_event(event: str, username: str | None, success: bool, detail: str | None = None) -> None:
    """Log an authentication event. Never logs credentials."""
    message = f"AUTH {event} | {username or '-'} | {'ok' if success else 'denied'}"
    if detail:
        message += f" | {detail}"
    if success:
        _auth_logger.debug(message)
    else:
        _auth_logger.info(message)
