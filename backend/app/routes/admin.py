"""Operator routes for per-user storage management.

These routes sit outside the sync protocol and require the operator secret
in the ``X-Weave-Admin-Secret`` header. They are disabled while no secret is
configured.
"""

import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from weavestore.errors import BadRequestError, UnauthorizedError

from ..config import Settings, get_settings
from ..database import Config, storage_for
from ..logging_config import get_logger
from ..models import DeleteUserResponse, UsageResponse
from ..rate_limit import limiter

logger = get_logger("weave.admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    x_weave_admin_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Reject the request unless it carries the configured operator secret."""
    if not settings.admin_secret:
        raise UnauthorizedError("Admin routes are disabled")
    if x_weave_admin_secret is None or not secrets.compare_digest(
        x_weave_admin_secret.encode(), settings.admin_secret.encode()
    ):
        logger.warning("Rejected admin request with invalid secret")
        raise UnauthorizedError("Invalid admin secret")


def _owner(owner: str) -> str:
    owner = owner.strip().lower()
    if not owner:
        raise BadRequestError("invalid owner")
    return owner


@router.get("/users/{owner}/usage", response_model=UsageResponse, dependencies=[Depends(require_admin)])
def get_usage(owner: str, config: Config):
    """Storage used by one owner against the configured quota."""
    owner = _owner(owner)
    with storage_for(config, owner) as storage:
        return UsageResponse(owner=owner, storage_total=storage.storage_total(), quota=storage.quota())


@router.delete("/users/{owner}", response_model=DeleteUserResponse, dependencies=[Depends(require_admin)])
@limiter.limit("10/minute")
def delete_user(request: Request, owner: str, config: Config):
    """Remove every record and collection belonging to ``owner``."""
    owner = _owner(owner)
    with storage_for(config, owner) as storage:
        storage.delete_user()
    logger.warning(f"ADMIN | deleted all data for {owner}")
    return DeleteUserResponse(owner=owner)
