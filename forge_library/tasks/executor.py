"""Compile task executor.

Contract:
- Inputs: CompileOptions from the request layer
- Outputs: CompileTask snapshots; task state committed to a TaskStore
- Side Effects: Writes build scripts and output logs, spawns and signals
  build processes

Each submission gets one asyncio worker that supervises one child process.
The worker is the only writer of its task's progress and final state;
cancel() is the one exception and may mark a task failed at any point.
Control-plane calls (submit, status, cancel, list) never wait on build I/O.

Lifecycle: pending -> running -> completed | failed. A task becomes failed on
non-zero exit, spawn error, timeout, cancellation or daemon shutdown.
"""

import asyncio
import logging
import os
import signal
import time
import uuid
from collections import deque
from collections.abc import Callable
from collections.abc import Sequence
from datetime import UTC
from datetime import datetime
from pathlib import Path
from typing import IO

import psutil

from ..compiler.progress import FINAL_STEP
from ..compiler.progress import parse_info_line
from ..compiler.progress import parse_progress_line
from ..compiler.progress import strip_ansi
from ..compiler.script import generate_script
from ..compiler.validator import ValidationFailedError
from ..compiler.validator import validate_options
from ..config.settings import ForgeSettings
from ..models.catalog import Module
from ..models.compile import CompileOptions
from ..models.tasks import CompileTask
from ..models.tasks import TaskStatus
from ..registry.registry import ModuleRegistry
from ..storage.paths import get_compile_log_dir
from ..storage.paths import get_scripts_dir
from .store import InMemoryTaskStore
from .store import InvalidTransitionError
from .store import TaskNotFoundError
from .store import TaskStore

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Cancelled by user"
SHUTDOWN_ERROR = "Build interrupted by daemon shutdown"
QUEUED_STEP = "Queued"
WAITING_STEP = "Waiting for a build slot"
STARTING_STEP = "Starting build process"
CANCELLED_STEP = "Cancelled"
TRUNCATED_LINE = "[output line too long, truncated]"

# asyncio stream buffer limit per pipe
STREAM_LIMIT = 1024 * 1024
EXIT_POLL_SECONDS = 0.05

ScriptGenerator = Callable[[CompileOptions, Sequence[Module], Sequence[str]], str]


def new_task_id() -> str:
    """Generate a task id: compile_<epoch ms>_<9 hex chars>."""
    return f"compile_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _now() -> datetime:
    return datetime.now(UTC)


class CompileExecutor:
    """Runs generated build scripts as supervised background processes.

    Args:
        registry: Catalog used for validation and module resolution
        store: Task storage (default: InMemoryTaskStore sized from settings)
        settings: Daemon settings (default: ForgeSettings())
        generator: Script generator, injectable for tests
        scripts_dir: Where scripts are written (default: state/scripts)
        log_dir: Where output logs are written (default: logs/compile)

    Example:
        >>> executor = CompileExecutor(load_registry())
        >>> task = await executor.submit(CompileOptions(version="1.26.3", modules=["http_ssl_module"]))
        >>> executor.status(task.id).status
        <TaskStatus.PENDING: 'pending'>
    """

    def __init__(
        self: "CompileExecutor",
        registry: ModuleRegistry,
        store: TaskStore | None = None,
        settings: ForgeSettings | None = None,
        generator: ScriptGenerator = generate_script,
        scripts_dir: Path | None = None,
        log_dir: Path | None = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or ForgeSettings()
        self.store: TaskStore = store or InMemoryTaskStore(log_capacity=self.settings.log_buffer_lines)
        self._generator = generator
        self._scripts_dir = scripts_dir
        self._log_dir = log_dir
        self._slots = asyncio.Semaphore(self.settings.max_concurrent_builds)
        self._workers: dict[str, asyncio.Task] = {}
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    # ------------------------------------------------------------------ paths

    @property
    def scripts_dir(self: "CompileExecutor") -> Path:
        if self._scripts_dir is None:
            self._scripts_dir = get_scripts_dir()
        self._scripts_dir.mkdir(parents=True, exist_ok=True)
        return self._scripts_dir

    @property
    def log_dir(self: "CompileExecutor") -> Path:
        if self._log_dir is None:
            self._log_dir = get_compile_log_dir()
        self._log_dir.mkdir(parents=True, exist_ok=True)
        return self._log_dir

    def script_path(self: "CompileExecutor", task_id: str) -> Path:
        return self.scripts_dir / f"{self.registry.software}_{task_id}.sh"

    def log_path(self: "CompileExecutor", task_id: str) -> Path:
        return self.log_dir / f"{self.registry.software}_{task_id}.log"

    # ------------------------------------------------------------- operations

    async def submit(self: "CompileExecutor", options: CompileOptions, software: str = "nginx") -> CompileTask:
        """Validate options, write the build script and start a task.

        Returns as soon as the task exists; the build runs in the background.

        Args:
            options: Build options
            software: Software identifier (must match the catalog)

        Returns:
            Snapshot of the new pending task

        Raises:
            ValidationFailedError: If the selection or custom sources are invalid (no task created)
        """
        script = self._render(options, software)

        task_id = new_task_id()
        while self.store.get(task_id) is not None:
            task_id = new_task_id()

        script_path = self.script_path(task_id)
        self._write_script(script_path, script)

        task = CompileTask(
            id=task_id,
            software=software,
            version=options.version,
            modules=list(options.modules),
            status=TaskStatus.PENDING,
            progress=0,
            current_step=QUEUED_STEP,
            start_time=_now(),
        )
        snapshot = self.store.create(task)

        worker = asyncio.create_task(
            self._run(task_id, script_path, list(options.custom_modules)),
            name=f"compile-{task_id}",
        )
        self._workers[task_id] = worker
        worker.add_done_callback(lambda _: self._workers.pop(task_id, None))

        logger.info(
            f"Created task {task_id}: {software} {options.version} with {len(options.modules)} modules "
            f"and {len(options.custom_modules)} custom modules"
        )
        return snapshot

    def preview(self: "CompileExecutor", options: CompileOptions, software: str = "nginx") -> str:
        """Script a submission with these options would run. Creates no task.

        Raises:
            ValidationFailedError: If the selection or custom sources are invalid
        """
        return self._render(options, software)

    def _render(self: "CompileExecutor", options: CompileOptions, software: str) -> str:
        if software != self.registry.software:
            raise ValidationFailedError([f"Unsupported software: {software}"])

        result = validate_options(options, self.registry, self.settings.allowed_source_hosts)
        if not result.valid:
            logger.info(f"Rejected {software} {options.version} build: {len(result.errors)} validation error(s)")
            raise ValidationFailedError(result.errors)

        modules = self.registry.resolve(options.modules)
        return self._generator(options, modules, self.registry.base_dependencies)

    def status(self: "CompileExecutor", task_id: str) -> CompileTask | None:
        """Snapshot of a task, or None if it is not tracked."""
        return self.store.get(task_id)

    def list_tasks(self: "CompileExecutor") -> list[CompileTask]:
        """Snapshots of every tracked task, oldest first."""
        return self.store.list()

    def cancel(self: "CompileExecutor", task_id: str) -> CompileTask:
        """Cancel a task without waiting for its process to exit.

        Sends SIGTERM to the build's process tree when one is running, then
        marks the task failed straight away, whether or not the signal
        landed. Cancelling a finished task changes nothing.

        Args:
            task_id: Task to cancel

        Returns:
            Snapshot after cancellation

        Raises:
            TaskNotFoundError: If task_id is not tracked
        """
        return self._abort(task_id, CANCELLED_ERROR)

    async def cancel_and_wait(self: "CompileExecutor", task_id: str, timeout: float | None = None) -> CompileTask:
        """Cancel a task and wait for its worker to finish.

        Escalates to SIGKILL when the process tree has not exited after the
        grace period.

        Args:
            task_id: Task to cancel
            timeout: Grace period in seconds (default: settings.cancel_grace_seconds)

        Returns:
            Snapshot after the worker has finished (or given up)

        Raises:
            TaskNotFoundError: If task_id is not tracked
        """
        snapshot = self.cancel(task_id)
        grace = self.settings.cancel_grace_seconds if timeout is None else timeout
        await self._await_worker(task_id, grace)
        return self.store.get(task_id) or snapshot

    def read_log(self: "CompileExecutor", task_id: str) -> str | None:
        """Full on-disk output log of a task, if it is still retained.

        Raises:
            TaskNotFoundError: If task_id is not tracked
        """
        if self.store.get(task_id) is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        path = self.log_path(task_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    @property
    def active_count(self: "CompileExecutor") -> int:
        """Number of builds with a live worker."""
        return sum(1 for worker in self._workers.values() if not worker.done())

    async def shutdown(self: "CompileExecutor") -> None:
        """Stop every live build and wait for the workers to finish."""
        live = [task_id for task_id, worker in self._workers.items() if not worker.done()]
        if not live:
            return

        logger.info(f"Shutting down {len(live)} running build(s)")
        for task_id in live:
            try:
                self._abort(task_id, SHUTDOWN_ERROR)
            except TaskNotFoundError:
                continue

        for task_id in live:
            await self._await_worker(task_id, self.settings.cancel_grace_seconds)

        for task_id in live:
            worker = self._workers.get(task_id)
            if worker is not None and not worker.done():
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)

    # ----------------------------------------------------------------- worker

    async def _run(self: "CompileExecutor", task_id: str, script_path: Path, custom_urls: list[str]) -> None:
        """Supervise one task from admission to final state."""
        try:
            if self._slots.locked():
                self._set_step(task_id, WAITING_STEP)
            async with self._slots:
                if self._is_terminal(task_id):
                    logger.info(f"Task {task_id} finished before it was started")
                    return
                await self._execute(task_id, script_path, custom_urls)
        except asyncio.CancelledError:
            self._kill_process(task_id)
            self._fail(task_id, SHUTDOWN_ERROR)
            raise
        except Exception as e:
            logger.exception(f"Supervisor for task {task_id} crashed: {e}")
            self._kill_process(task_id)
            self._fail(task_id, f"Build supervisor error: {e}")
        finally:
            self._processes.pop(task_id, None)
            script_path.unlink(missing_ok=True)

    async def _execute(self: "CompileExecutor", task_id: str, script_path: Path, custom_urls: list[str]) -> None:
        try:
            self.store.update(task_id, _mark_running)
        except InvalidTransitionError:
            return

        log_path = self.log_path(task_id)
        timeout = self.settings.build_timeout_seconds

        with open(log_path, "w", encoding="utf-8", buffering=1) as log_file:
            try:
                proc = await asyncio.create_subprocess_exec(
                    self.settings.shell,
                    str(script_path),
                    *custom_urls,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                message = f"Failed to start build process: {e}"
                log_file.write(message + "\n")
                logger.error(f"Task {task_id}: {message}")
                self._fail(task_id, message)
                return

            self._processes[task_id] = proc
            if self._is_terminal(task_id):
                # Cancelled while the process was being spawned
                _signal_tree(proc.pid, kill=False)
            else:
                self.store.update(task_id, lambda t: setattr(t, "pid", proc.pid))
                logger.info(f"Task {task_id} started (PID {proc.pid})")

            pumps = asyncio.gather(
                self._pump(task_id, proc.stdout, log_file),
                self._pump(task_id, proc.stderr, log_file),
            )
            try:
                try:
                    if timeout:
                        returncode = await asyncio.wait_for(_wait_exit(proc), timeout)
                    else:
                        returncode = await _wait_exit(proc)
                except TimeoutError:
                    logger.warning(f"Task {task_id} exceeded {timeout}s, terminating")
                    await self._stop_process(proc)
                    await self._drain(task_id, proc, pumps)
                    log_file.write(f"Build timed out after {timeout} seconds\n")
                    self._fail(task_id, f"Build timed out after {timeout} seconds")
                    return

                await self._drain(task_id, proc, pumps)
            finally:
                pumps.cancel()

        self._finalize(task_id, returncode, log_path)

    async def _pump(self: "CompileExecutor", task_id: str, stream: asyncio.StreamReader | None, log_file: IO[str]) -> None:
        """Copy one output stream into the disk log and the task buffer."""
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                raw = (TRUNCATED_LINE + "\n").encode()
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            log_file.write(text + "\n")
            self._ingest(task_id, strip_ansi(text).rstrip("\r"))

    def _ingest(self: "CompileExecutor", task_id: str, line: str) -> None:
        self.store.append_logs(task_id, [line])

        progress = parse_progress_line(line)
        step = parse_info_line(line)
        if progress is None and step is None:
            return

        def apply(task: CompileTask) -> None:
            if task.status != TaskStatus.RUNNING:
                return
            if progress is not None and progress > task.progress:
                task.progress = progress
            if step is not None:
                task.current_step = step

        self.store.update(task_id, apply)

    def _finalize(self: "CompileExecutor", task_id: str, returncode: int, log_path: Path) -> None:
        task = self.store.get(task_id)
        if task is None:
            return
        if task.status.is_terminal:
            logger.info(f"Task {task_id} process exited with code {returncode} after it was marked {task.status.value}")
            return

        if returncode == 0:

            def complete(t: CompileTask) -> None:
                t.status = TaskStatus.COMPLETED
                t.progress = 100
                t.current_step = FINAL_STEP
                t.end_time = _now()
                t.error = None

            self.store.update(task_id, complete)
            log_path.unlink(missing_ok=True)
            logger.info(f"Task {task_id} completed")
            return

        if returncode < 0:
            error = f"Build terminated by signal {-returncode} (exit code {returncode})"
        else:
            error = f"Build failed with exit code {returncode}"
        self._fail(task_id, error)
        logger.warning(f"Task {task_id} failed: {error}; log kept at {log_path}")

    # ---------------------------------------------------------------- helpers

    def _abort(self: "CompileExecutor", task_id: str, error: str) -> CompileTask:
        task = self.store.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        if task.status.is_terminal:
            return task

        proc = self._processes.get(task_id)
        if proc is not None:
            if proc.returncode is None:
                _signal_tree(proc.pid, kill=False)
        elif task.pid is not None:
            _signal_tree(task.pid, kill=False)

        def mark_cancelled(t: CompileTask) -> None:
            t.status = TaskStatus.FAILED
            t.error = error
            t.current_step = CANCELLED_STEP
            t.end_time = _now()

        snapshot = self.store.update(task_id, mark_cancelled)
        logger.info(f"Task {task_id} cancelled: {error}")
        return snapshot

    def _fail(self: "CompileExecutor", task_id: str, error: str) -> None:
        """Mark a task failed unless it already reached a final state."""
        tail = self._read_tail(task_id)

        def mark_failed(t: CompileTask) -> None:
            if t.status.is_terminal:
                return
            t.status = TaskStatus.FAILED
            t.error = error
            t.end_time = _now()
            if tail:
                t.logs = tail

        try:
            self.store.update(task_id, mark_failed)
        except TaskNotFoundError:
            logger.warning(f"Task {task_id} disappeared before it could be marked failed")

    def _set_step(self: "CompileExecutor", task_id: str, step: str) -> None:
        def apply(t: CompileTask) -> None:
            if not t.status.is_terminal:
                t.current_step = step

        self.store.update(task_id, apply)

    def _is_terminal(self: "CompileExecutor", task_id: str) -> bool:
        task = self.store.get(task_id)
        return task is None or task.status.is_terminal

    def _read_tail(self: "CompileExecutor", task_id: str) -> list[str]:
        path = self.log_path(task_id)
        capacity = self.settings.log_buffer_lines
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                return [strip_ansi(line.rstrip("\r\n")) for line in deque(f, maxlen=capacity)]
        except FileNotFoundError:
            return []

    def _kill_process(self: "CompileExecutor", task_id: str) -> None:
        proc = self._processes.get(task_id)
        if proc is not None and proc.returncode is None:
            _signal_tree(proc.pid, kill=True)

    async def _stop_process(self: "CompileExecutor", proc: asyncio.subprocess.Process) -> None:
        """SIGTERM the tree, then SIGKILL it after the grace period."""
        _signal_tree(proc.pid, kill=False)
        try:
            await asyncio.wait_for(_wait_exit(proc), self.settings.cancel_grace_seconds)
        except TimeoutError:
            _signal_tree(proc.pid, kill=True)
            await _wait_exit(proc)

    async def _drain(self: "CompileExecutor", task_id: str, proc: asyncio.subprocess.Process, pumps: asyncio.Future) -> None:
        """Give the output pumps the grace period to reach EOF after the build exits.

        A background child that inherited stdout can hold the pipes open
        forever; such leftovers in the build's session are killed and their
        remaining output dropped.
        """
        try:
            await asyncio.wait_for(pumps, self.settings.cancel_grace_seconds)
        except TimeoutError:
            logger.warning(f"Task {task_id} exited but its output is still held open, stopping leftover processes")
            _signal_group(proc.pid)

    async def _await_worker(self: "CompileExecutor", task_id: str, grace: float) -> None:
        worker = self._workers.get(task_id)
        if worker is None or worker.done():
            return

        done, _ = await asyncio.wait({worker}, timeout=grace)
        if done:
            return

        logger.warning(f"Task {task_id} still running {grace}s after cancellation, force killing")
        self._kill_process(task_id)
        done, _ = await asyncio.wait({worker}, timeout=grace)
        if not done:
            logger.error(f"Task {task_id} worker did not finish after SIGKILL")

    @staticmethod
    def _write_script(path: Path, script: str) -> None:
        """Write the script atomically (temp file then rename) with mode 0755."""
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(script, encoding="utf-8")
        os.chmod(temp_path, 0o755)
        temp_path.replace(path)


def _mark_running(task: CompileTask) -> None:
    task.status = TaskStatus.RUNNING
    task.current_step = STARTING_STEP


async def _wait_exit(proc: asyncio.subprocess.Process) -> int:
    """Wait for the process itself to exit.

    Process.wait() also waits for the pipes to close, which a background
    child can delay indefinitely; returncode is set as soon as the exit is
    reaped.
    """
    while proc.returncode is None:
        await asyncio.sleep(EXIT_POLL_SECONDS)
    return proc.returncode


def _signal_group(pgid: int) -> None:
    """SIGKILL whatever is left in a build's process group."""
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug(f"Process group {pgid} already gone")
    except PermissionError as e:
        logger.warning(f"Cannot signal process group {pgid}: {e}")


def _signal_tree(pid: int, kill: bool) -> bool:
    """Send SIGTERM (or SIGKILL) to a process and all of its descendants.

    Args:
        pid: Root process id
        kill: Send SIGKILL instead of SIGTERM

    Returns:
        True if the root process existed and was signalled
    """
    try:
        root = psutil.Process(pid)
        targets = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} already exited")
        return False
    except psutil.AccessDenied as e:
        logger.warning(f"Cannot inspect process {pid}: {e}")
        return False

    for proc in targets:
        try:
            if kill:
                proc.kill()
            else:
                proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Failed to signal process {proc.pid}: {e}")
    return True
