"""Compile task endpoints: submit, status, cancel, logs and progress stream."""

import asyncio
import json
import logging
from datetime import UTC
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi.responses import PlainTextResponse
from sse_starlette import ServerSentEvent
from sse_starlette.sse import EventSourceResponse

from forge_library.compiler import ValidationFailedError
from forge_library.config import ForgeSettings
from forge_library.models.tasks import CompileTask
from forge_library.registry import ModuleRegistry
from forge_library.tasks import CompileExecutor
from forge_library.tasks import TaskNotFoundError

from ..dependencies import get_compile_executor
from ..dependencies import get_registry
from ..dependencies import get_settings
from ..models import CancelResponse
from ..models import CompileRequest
from ..models import SubmitResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/compile/tasks", tags=["tasks"])


@router.post("", response_model=SubmitResponse, status_code=201)
async def submit_task(
    request: CompileRequest,
    registry: Annotated[ModuleRegistry, Depends(get_registry)],
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
) -> SubmitResponse:
    """Start a build.

    Options are validated again here whatever the client checked before.
    The build runs in the background; poll the task for progress.

    Returns:
        New task id and estimated build time

    Raises:
        HTTPException: 400 with every validation error (no task is created)
    """
    try:
        task = await executor.submit(request.options, software=request.software)
    except ValidationFailedError as exc:
        raise HTTPException(status_code=400, detail={"error": "Validation failed", "details": exc.errors}) from exc
    except OSError as exc:
        logger.error(f"Failed to prepare build: {exc}")
        raise HTTPException(status_code=500, detail=f"Failed to prepare build: {exc}") from exc

    return SubmitResponse(
        task_id=task.id,
        estimated_time=registry.estimate_compile_time(request.options.modules),
    )


@router.get("", response_model=list[CompileTask])
async def list_tasks(
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
) -> list[CompileTask]:
    """List every task tracked since the daemon started, oldest first."""
    return executor.list_tasks()


@router.get("/{task_id}", response_model=CompileTask)
async def get_task(
    task_id: str,
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
) -> CompileTask:
    """Get a task snapshot.

    Raises:
        HTTPException: 404 if the task is unknown
    """
    task = executor.status(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


@router.post("/{task_id}/cancel", response_model=CancelResponse)
async def cancel_task(
    task_id: str,
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
    wait: Annotated[bool, Query(description="Wait for the build process to exit")] = False,
) -> CancelResponse:
    """Cancel a task.

    By default returns at once: the task is marked failed and the build is
    signalled without waiting for it to exit. With wait=true the call
    returns after the build process has gone (force killed after the grace
    period).

    Raises:
        HTTPException: 404 if the task is unknown
    """
    try:
        before = executor.status(task_id)
        if wait:
            task = await executor.cancel_and_wait(task_id)
        else:
            task = executor.cancel(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found") from exc

    if before is not None and before.status.is_terminal:
        message = f"Task already {task.status.value}"
    else:
        message = "Cancellation requested"
    return CancelResponse(task_id=task.id, status=task.status, error=task.error, message=message)


@router.get("/{task_id}/log", response_class=PlainTextResponse)
async def get_task_log(
    task_id: str,
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
) -> str:
    """Get the full build output kept on disk.

    Logs of completed builds are removed; failed builds keep theirs.

    Raises:
        HTTPException: 404 if the task is unknown or its log is gone
    """
    try:
        text = executor.read_log(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found") from exc
    if text is None:
        raise HTTPException(status_code=404, detail=f"No log retained for task {task_id}")
    return text


@router.get("/{task_id}/events")
async def task_event_stream(
    task_id: str,
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
    settings: Annotated[ForgeSettings, Depends(get_settings)],
) -> EventSourceResponse:
    """SSE stream of task snapshots until the task finishes.

    Events:
        - task: Snapshot, sent on connect and whenever the task changes
        - keepalive: Heartbeat while nothing changes (every 30s)
        - done: Final snapshot; the stream ends after it

    Raises:
        HTTPException: 404 if the task is unknown
    """
    if executor.status(task_id) is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")

    async def event_generator():
        """Poll the task and emit changed snapshots."""
        last_payload = None
        idle = 0.0

        try:
            while True:
                task = executor.status(task_id)
                if task is None:
                    break

                payload = task.model_dump_json(by_alias=True)
                if task.status.is_terminal:
                    yield ServerSentEvent(data=payload, event="done")
                    break

                if payload != last_payload:
                    last_payload = payload
                    idle = 0.0
                    yield ServerSentEvent(data=payload, event="task")
                elif idle >= 30.0:
                    idle = 0.0
                    yield ServerSentEvent(
                        data=json.dumps({"timestamp": datetime.now(UTC).isoformat()}),
                        event="keepalive",
                    )

                await asyncio.sleep(settings.events_poll_seconds)
                idle += settings.events_poll_seconds

        except asyncio.CancelledError:
            # Client disconnected (normal)
            logger.info(f"Task {task_id} event stream disconnected")

        finally:
            logger.debug(f"Task {task_id} event stream closed")

    return EventSourceResponse(event_generator())
