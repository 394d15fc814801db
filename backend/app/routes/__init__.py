"""API routes."""

from .admin import router as admin_router
from .storage import router as storage_router

__all__ = [
    "admin_router",
    "storage_router",
]
