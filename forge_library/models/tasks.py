"""Compile task state models."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from .base import CamelCaseModel


class TaskStatus(str, Enum):
    """Compile task lifecycle status.

    State transitions:
    - PENDING: Task created, script written, process not started yet
    - RUNNING: Build process spawned
    - COMPLETED: Process exited with code 0
    - FAILED: Non-zero exit, spawn error, timeout or cancellation
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the lifecycle; terminal states share the last rank."""
        return {
            TaskStatus.PENDING: 0,
            TaskStatus.RUNNING: 1,
            TaskStatus.COMPLETED: 2,
            TaskStatus.FAILED: 2,
        }[self]


class CompileTask(CamelCaseModel):
    """One tracked compilation job.

    Owned by the executor, read by pollers through snapshots. Never persisted
    beyond the daemon's lifetime.
    """

    id: str = Field(description="Unique task identifier")
    software: str = Field(default="nginx", description="Software being built")
    version: str = Field(description="Source version being built")
    modules: list[str] = Field(default_factory=list, description="Selected catalog module ids")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current task status")
    progress: int = Field(default=0, ge=0, le=100, description="Heuristic progress percentage")
    current_step: str = Field(default="", description="Last step announced by the build script")
    logs: list[str] = Field(default_factory=list, description="Most recent output lines")
    start_time: datetime = Field(description="Task creation timestamp")
    end_time: datetime | None = Field(default=None, description="Timestamp of the terminal transition")
    error: str | None = Field(default=None, description="Failure reason if status is FAILED")
    pid: int | None = Field(default=None, description="OS process id of the build script")
