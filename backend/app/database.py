"""Storage access for the sync routes."""

from typing import Annotated

from fastapi import Depends
from weavestore.config import WeaveConfig
from weavestore.storage import SQLStorage, open_storage

from .config import Settings, get_settings


def get_weave_config(settings: Annotated[Settings, Depends(get_settings)]) -> WeaveConfig:
    """FastAPI dependency for the immutable core configuration."""
    return settings.weave_config()


Config = Annotated[WeaveConfig, Depends(get_weave_config)]


def storage_for(config: WeaveConfig, owner: str) -> SQLStorage:
    """Open a storage session for one request.

    Callers close it, either with a ``with`` block or, for streamed
    responses, when the stream finishes.
    """
    return open_storage(config, owner)
