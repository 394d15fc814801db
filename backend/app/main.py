"""Weave sync storage server - FastAPI application."""

from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from weavestore import __version__
from weavestore.errors import WeaveError

from .config import Settings, get_settings
from .database import storage_for
from .errors import weave_error_handler
from .logging_config import get_logger, setup_logging
from .models import HealthResponse
from .rate_limit import limiter
from .routes import admin_router, storage_router

logger = get_logger("weave.main")

# Owner used for connectivity probes; never holds records
HEARTBEAT_OWNER = "_heartbeat"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_logging("DEBUG" if settings.debug else settings.log_level)
    logger.info(
        f"Starting Weave storage server (engine={settings.storage_engine}, "
        f"auth={settings.auth_engine}, prefix={settings.api_prefix})"
    )
    yield
    logger.info("Shutting down Weave storage server")


app = FastAPI(
    title="Weave Storage API",
    description="Per-user WBO storage for the Weave sync protocol",
    version=__version__,
    lifespan=lifespan,
)

# Every protocol failure is mapped to its status code in one place
app.add_exception_handler(WeaveError, weave_error_handler)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Weave-Alert"],
)

# Include routers
app.include_router(admin_router)
app.include_router(storage_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "weave-storage",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health", response_model=HealthResponse)
def health(current: Annotated[Settings, Depends(get_settings)]):
    """Detailed health check with actual database verification."""
    db_status = "disconnected"
    try:
        with storage_for(current.weave_config(), HEARTBEAT_OWNER) as storage:
            if storage.heartbeat():
                db_status = "connected"
    except WeaveError as e:
        db_status = f"error: {e.message[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return HealthResponse(
        status=overall_status,
        database=db_status,
        engine=current.storage_engine,
    )
