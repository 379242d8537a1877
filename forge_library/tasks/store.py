"""Task store: process-lifetime map of task id to compile task state.

Contract:
- Inputs: Tasks created by the executor, mutations from each task's worker
- Outputs: Immutable snapshots (deep copies) for pollers
- Side Effects: None beyond in-memory state; nothing survives a restart

The executor only talks to the TaskStore protocol, so a durable backend can
replace InMemoryTaskStore without touching it.
"""

import logging
from collections.abc import Callable
from collections.abc import Iterable
from typing import Protocol

from ..models.tasks import CompileTask
from ..models.tasks import TaskStatus
from .locks import ReadWriteLock

logger = logging.getLogger(__name__)

DEFAULT_LOG_CAPACITY = 100


class TaskNotFoundError(ValueError):
    """Raised when a task id is not tracked."""

    pass


class DuplicateTaskError(ValueError):
    """Raised when creating a task whose id is already tracked."""

    pass


class InvalidTransitionError(ValueError):
    """Raised when an update would break the task lifecycle rules."""

    pass


class TaskStore(Protocol):
    """Storage interface used by the executor."""

    def create(self, task: CompileTask) -> CompileTask: ...

    def get(self, task_id: str) -> CompileTask | None: ...

    def update(self, task_id: str, mutator: Callable[[CompileTask], None]) -> CompileTask: ...

    def append_logs(self, task_id: str, lines: Iterable[str]) -> None: ...

    def list(self) -> list[CompileTask]: ...


def check_transition(before: CompileTask, after: CompileTask) -> None:
    """Check that an update respects the task lifecycle.

    Rules:
    - status never leaves a terminal state
    - status moves forward only: pending -> running -> completed | failed
    - progress never decreases
    - a completed task has progress 100

    Raises:
        InvalidTransitionError: If any rule is broken
    """
    if before.status.is_terminal and after.status != before.status:
        raise InvalidTransitionError(
            f"Task {before.id} is already {before.status.value}, cannot move to {after.status.value}"
        )
    if after.status.rank < before.status.rank:
        raise InvalidTransitionError(
            f"Task {before.id} cannot move from {before.status.value} back to {after.status.value}"
        )
    if after.progress < before.progress:
        raise InvalidTransitionError(f"Task {before.id} progress cannot decrease ({before.progress} -> {after.progress})")
    if after.status == TaskStatus.COMPLETED and after.progress != 100:
        raise InvalidTransitionError(f"Task {before.id} cannot complete at {after.progress}% progress")


class InMemoryTaskStore:
    """Thread-safe in-memory TaskStore.

    Reads take the shared side of a read/write lock and return deep copies,
    so callers never hold references into the store. Updates are
    copy-on-write: the mutator edits a private copy that replaces the stored
    task only after the lifecycle rules pass.

    Args:
        log_capacity: Maximum log lines kept per task (oldest dropped first)
    """

    def __init__(self: "InMemoryTaskStore", log_capacity: int = DEFAULT_LOG_CAPACITY) -> None:
        if log_capacity < 1:
            raise ValueError("log_capacity must be at least 1")
        self.log_capacity = log_capacity
        self._tasks: dict[str, CompileTask] = {}
        self._lock = ReadWriteLock()

    def create(self: "InMemoryTaskStore", task: CompileTask) -> CompileTask:
        """Start tracking a task.

        Raises:
            DuplicateTaskError: If a task with the same id exists
        """
        stored = task.model_copy(deep=True)
        self._trim(stored)
        with self._lock.write_locked():
            if stored.id in self._tasks:
                raise DuplicateTaskError(f"Task already exists: {stored.id}")
            self._tasks[stored.id] = stored
        logger.debug(f"Tracking task {stored.id}")
        return stored.model_copy(deep=True)

    def get(self: "InMemoryTaskStore", task_id: str) -> CompileTask | None:
        with self._lock.read_locked():
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    def update(self: "InMemoryTaskStore", task_id: str, mutator: Callable[[CompileTask], None]) -> CompileTask:
        """Apply a mutation to a task atomically.

        Args:
            task_id: Task to change
            mutator: Function editing the task copy in place

        Returns:
            Snapshot of the updated task

        Raises:
            TaskNotFoundError: If task_id is not tracked
            InvalidTransitionError: If the change breaks lifecycle rules (task left unchanged)
        """
        with self._lock.write_locked():
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            draft = current.model_copy(deep=True)
            mutator(draft)
            if draft.id != current.id:
                raise InvalidTransitionError(f"Task id cannot change ({current.id} -> {draft.id})")
            check_transition(current, draft)
            self._trim(draft)
            self._tasks[task_id] = draft
            return draft.model_copy(deep=True)

    def append_logs(self: "InMemoryTaskStore", task_id: str, lines: Iterable[str]) -> None:
        """Append output lines, dropping the oldest beyond capacity.

        Raises:
            TaskNotFoundError: If task_id is not tracked
        """
        new_lines = list(lines)
        if not new_lines:
            return
        with self._lock.write_locked():
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            combined = current.logs + new_lines
            self._tasks[task_id] = current.model_copy(update={"logs": combined[-self.log_capacity :]})

    def list(self: "InMemoryTaskStore") -> list[CompileTask]:
        """All tracked tasks, oldest first."""
        with self._lock.read_locked():
            tasks = [t.model_copy(deep=True) for t in self._tasks.values()]
        return sorted(tasks, key=lambda t: t.start_time)

    def __len__(self: "InMemoryTaskStore") -> int:
        with self._lock.read_locked():
            return len(self._tasks)

    def _trim(self: "InMemoryTaskStore", task: CompileTask) -> None:
        if len(task.logs) > self.log_capacity:
            task.logs = task.logs[-self.log_capacity :]
