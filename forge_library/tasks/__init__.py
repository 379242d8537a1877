"""Compile task tracking and execution.

Public Interface:
    - CompileExecutor: Submit, supervise, cancel and inspect builds
    - TaskStore / InMemoryTaskStore: Task state storage
    - ReadWriteLock: Shared/exclusive lock used by the store
    - TaskNotFoundError / DuplicateTaskError / InvalidTransitionError: Store errors
"""

from .executor import CANCELLED_ERROR
from .executor import CompileExecutor
from .executor import new_task_id
from .locks import ReadWriteLock
from .store import DuplicateTaskError
from .store import InMemoryTaskStore
from .store import InvalidTransitionError
from .store import TaskNotFoundError
from .store import TaskStore
from .store import check_transition

__all__ = [
    "CANCELLED_ERROR",
    "CompileExecutor",
    "new_task_id",
    "ReadWriteLock",
    "DuplicateTaskError",
    "InMemoryTaskStore",
    "InvalidTransitionError",
    "TaskNotFoundError",
    "TaskStore",
    "check_transition",
]
