"""
Unit tests for the in-memory task store.

Tests snapshots, lifecycle rules, log buffer bounds and concurrent access.
"""

import threading
from datetime import UTC
from datetime import datetime
from datetime import timedelta

import pytest

from forge_library.models.tasks import CompileTask
from forge_library.models.tasks import TaskStatus
from forge_library.tasks import DuplicateTaskError
from forge_library.tasks import InMemoryTaskStore
from forge_library.tasks import InvalidTransitionError
from forge_library.tasks import TaskNotFoundError


def _task(task_id: str = "compile_1_abc", **kwargs) -> CompileTask:
    kwargs.setdefault("version", "1.26.3")
    kwargs.setdefault("start_time", datetime.now(UTC))
    return CompileTask(id=task_id, **kwargs)


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore(log_capacity=5)


@pytest.mark.unit
class TestTaskStoreBasics:
    """Test create, get and list."""

    def test_create_and_get(self, store: InMemoryTaskStore) -> None:
        """Test a created task can be read back."""
        store.create(_task(modules=["http_ssl_module"]))

        task = store.get("compile_1_abc")

        assert task is not None
        assert task.status == TaskStatus.PENDING
        assert task.modules == ["http_ssl_module"]

    def test_get_unknown_returns_none(self, store: InMemoryTaskStore) -> None:
        """Test unknown ids read as None."""
        assert store.get("missing") is None

    def test_duplicate_create_rejected(self, store: InMemoryTaskStore) -> None:
        """Test task ids are unique."""
        store.create(_task())

        with pytest.raises(DuplicateTaskError):
            store.create(_task())

    def test_snapshots_are_independent(self, store: InMemoryTaskStore) -> None:
        """Test mutating a snapshot does not change the stored task."""
        store.create(_task())

        snapshot = store.get("compile_1_abc")
        assert snapshot is not None
        snapshot.logs.append("tampered")
        snapshot.progress = 99

        fresh = store.get("compile_1_abc")
        assert fresh is not None
        assert fresh.logs == []
        assert fresh.progress == 0

    def test_list_is_oldest_first(self, store: InMemoryTaskStore) -> None:
        """Test list orders tasks by start time."""
        now = datetime.now(UTC)
        store.create(_task("b", start_time=now))
        store.create(_task("a", start_time=now - timedelta(minutes=5)))

        assert [t.id for t in store.list()] == ["a", "b"]
        assert len(store) == 2

    def test_zero_capacity_rejected(self) -> None:
        """Test the log buffer must hold at least one line."""
        with pytest.raises(ValueError):
            InMemoryTaskStore(log_capacity=0)


@pytest.mark.unit
class TestTaskStoreTransitions:
    """Test lifecycle rules enforced by update."""

    def test_forward_transitions_allowed(self, store: InMemoryTaskStore) -> None:
        """Test pending -> running -> completed succeeds."""
        store.create(_task())

        store.update("compile_1_abc", lambda t: setattr(t, "status", TaskStatus.RUNNING))

        def complete(t: CompileTask) -> None:
            t.status = TaskStatus.COMPLETED
            t.progress = 100

        task = store.update("compile_1_abc", complete)

        assert task.status == TaskStatus.COMPLETED

    def test_terminal_status_is_final(self, store: InMemoryTaskStore) -> None:
        """Test a failed task cannot be revived or completed."""
        store.create(_task(status=TaskStatus.FAILED))

        with pytest.raises(InvalidTransitionError):
            store.update("compile_1_abc", lambda t: setattr(t, "status", TaskStatus.RUNNING))

        def complete(t: CompileTask) -> None:
            t.status = TaskStatus.COMPLETED
            t.progress = 100

        with pytest.raises(InvalidTransitionError):
            store.update("compile_1_abc", complete)

    def test_status_cannot_go_back(self, store: InMemoryTaskStore) -> None:
        """Test running cannot return to pending."""
        store.create(_task(status=TaskStatus.RUNNING))

        with pytest.raises(InvalidTransitionError):
            store.update("compile_1_abc", lambda t: setattr(t, "status", TaskStatus.PENDING))

    def test_progress_cannot_decrease(self, store: InMemoryTaskStore) -> None:
        """Test progress only moves forward."""
        store.create(_task(status=TaskStatus.RUNNING, progress=45))

        with pytest.raises(InvalidTransitionError):
            store.update("compile_1_abc", lambda t: setattr(t, "progress", 30))

        task = store.get("compile_1_abc")
        assert task is not None
        assert task.progress == 45

    def test_completed_requires_full_progress(self, store: InMemoryTaskStore) -> None:
        """Test a task cannot complete below 100 percent."""
        store.create(_task(status=TaskStatus.RUNNING, progress=80))

        with pytest.raises(InvalidTransitionError):
            store.update("compile_1_abc", lambda t: setattr(t, "status", TaskStatus.COMPLETED))

    def test_rejected_update_leaves_task_unchanged(self, store: InMemoryTaskStore) -> None:
        """Test a failing mutation is not partially applied."""
        store.create(_task(status=TaskStatus.RUNNING, progress=50))

        def bad(t: CompileTask) -> None:
            t.current_step = "half applied"
            t.progress = 10

        with pytest.raises(InvalidTransitionError):
            store.update("compile_1_abc", bad)

        task = store.get("compile_1_abc")
        assert task is not None
        assert task.current_step == ""

    def test_update_unknown_raises(self, store: InMemoryTaskStore) -> None:
        """Test updating an untracked task raises TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            store.update("missing", lambda t: None)

    def test_failed_task_can_still_be_updated_in_place(self, store: InMemoryTaskStore) -> None:
        """Test terminal tasks accept changes that keep their status."""
        store.create(_task(status=TaskStatus.FAILED))

        task = store.update("compile_1_abc", lambda t: setattr(t, "error", "Cancelled by user"))

        assert task.error == "Cancelled by user"


@pytest.mark.unit
class TestTaskStoreLogs:
    """Test the bounded log buffer."""

    def test_logs_keep_most_recent_lines(self, store: InMemoryTaskStore) -> None:
        """Test only the newest lines up to capacity are kept."""
        store.create(_task())

        store.append_logs("compile_1_abc", [f"line {i}" for i in range(8)])

        task = store.get("compile_1_abc")
        assert task is not None
        assert task.logs == ["line 3", "line 4", "line 5", "line 6", "line 7"]

    def test_logs_bounded_across_appends(self, store: InMemoryTaskStore) -> None:
        """Test many small appends stay within capacity."""
        store.create(_task())

        for i in range(20):
            store.append_logs("compile_1_abc", [f"line {i}"])

        task = store.get("compile_1_abc")
        assert task is not None
        assert len(task.logs) == 5
        assert task.logs[-1] == "line 19"

    def test_create_trims_oversized_logs(self, store: InMemoryTaskStore) -> None:
        """Test tasks created with long logs are trimmed."""
        store.create(_task(logs=[str(i) for i in range(10)]))

        task = store.get("compile_1_abc")
        assert task is not None
        assert task.logs == ["5", "6", "7", "8", "9"]

    def test_append_to_terminal_task_allowed(self, store: InMemoryTaskStore) -> None:
        """Test output arriving after cancellation is still recorded."""
        store.create(_task(status=TaskStatus.FAILED))

        store.append_logs("compile_1_abc", ["late output"])

        task = store.get("compile_1_abc")
        assert task is not None
        assert task.logs == ["late output"]

    def test_append_unknown_raises(self, store: InMemoryTaskStore) -> None:
        """Test appending to an untracked task raises."""
        with pytest.raises(TaskNotFoundError):
            store.append_logs("missing", ["x"])


@pytest.mark.unit
class TestTaskStoreConcurrency:
    """Test concurrent writers and readers."""

    def test_concurrent_appends_and_reads(self) -> None:
        """Test parallel appends lose nothing and readers see bounded logs."""
        store = InMemoryTaskStore(log_capacity=1000)
        store.create(_task())
        errors: list[Exception] = []

        def writer(n: int) -> None:
            for i in range(100):
                store.append_logs("compile_1_abc", [f"{n}-{i}"])

        def reader() -> None:
            for _ in range(200):
                task = store.get("compile_1_abc")
                if task is None or len(task.logs) > 1000:
                    errors.append(AssertionError("bad snapshot"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        task = store.get("compile_1_abc")
        assert task is not None
        assert len(task.logs) == 500
        assert errors == []

    def test_concurrent_progress_updates_stay_monotonic(self) -> None:
        """Test racing progress bumps never move progress backwards."""
        store = InMemoryTaskStore()
        store.create(_task(status=TaskStatus.RUNNING))

        def bump(values: range) -> None:
            for value in values:

                def apply(t: CompileTask, value: int = value) -> None:
                    t.progress = max(t.progress, value)

                store.update("compile_1_abc", apply)

        threads = [threading.Thread(target=bump, args=(range(0, 101, step),)) for step in (1, 3, 7)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        task = store.get("compile_1_abc")
        assert task is not None
        assert task.progress == 100
