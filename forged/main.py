"""Main FastAPI application for forged daemon.

This module creates and configures the FastAPI application that exposes
the forge_library build engine via REST API with SSE progress streaming.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from forge_library.config import load_config
from forge_library.registry import load_registry
from forge_library.tasks import CompileExecutor
from forge_library.tasks import InMemoryTaskStore

from . import __version__
from .routers import catalog_router
from .routers import status_router
from .routers import tasks_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Loads configuration and the module catalog, and owns the executor so
    running builds are stopped when the daemon shuts down.

    Args:
        app: FastAPI application instance
    """
    # Startup
    settings = load_config()
    logger.info(f"Starting forged daemon on {settings.host}:{settings.port}")

    # A broken catalog aborts startup
    registry = load_registry()

    store = InMemoryTaskStore(log_capacity=settings.log_buffer_lines)
    executor = CompileExecutor(registry=registry, store=store, settings=settings)

    app.state.settings = settings
    app.state.registry = registry
    app.state.executor = executor

    yield

    # Shutdown
    logger.info("Shutting down forged daemon")
    try:
        await executor.shutdown()
    except Exception as e:
        logger.error(f"Failed to stop running builds: {e}")


# Create FastAPI application
app = FastAPI(
    title="forged",
    description="REST API daemon for compiling nginx from source with SSE progress streaming",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware - origins configured in daemon.yaml
daemon_config = load_config()
app.add_middleware(
    CORSMiddleware,
    allow_origins=daemon_config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info(f"CORS enabled for origins: {daemon_config.cors_origins}")

# Include routers
app.include_router(catalog_router)
app.include_router(tasks_router)
app.include_router(status_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        Welcome message with API information
    """
    return {
        "name": "forged",
        "version": __version__,
        "description": "REST API daemon for compiling nginx from source",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }
