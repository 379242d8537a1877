"""API routers for forged."""

from .catalog import router as catalog_router
from .status import router as status_router
from .tasks import router as tasks_router

__all__ = [
    "catalog_router",
    "status_router",
    "tasks_router",
]
