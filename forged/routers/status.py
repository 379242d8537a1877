"""Status router for forged API.

Provides health check and status information.
"""

import logging
import time
from typing import Annotated

from fastapi import APIRouter
from fastapi import Depends

from forge_library.config import ForgeSettings
from forge_library.tasks import CompileExecutor

from .. import __version__
from ..dependencies import get_compile_executor
from ..dependencies import get_settings
from ..models import StatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["status"])

# Track daemon start time for uptime calculation
_start_time = time.time()


@router.get("/status", response_model=StatusResponse)
async def get_status(
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
    settings: Annotated[ForgeSettings, Depends(get_settings)],
) -> StatusResponse:
    """Get daemon status.

    Returns:
        Daemon status information including version, uptime and build load
    """
    return StatusResponse(
        status="running",
        version=__version__,
        uptime_seconds=time.time() - _start_time,
        software=executor.registry.software,
        active_builds=executor.active_count,
        tracked_tasks=len(executor.list_tasks()),
        max_concurrent_builds=settings.max_concurrent_builds,
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Simple health status
    """
    return {"status": "healthy"}
