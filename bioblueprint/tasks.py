"""In-memory task registry for asynchronous analysis runs.

The registry is the only state shared between concurrently running jobs.
Records live for a fixed retention window after creation, whatever their
status, and are lost when the process exits.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from bioblueprint.models import Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600.0
MIN_SWEEP_DELAY = 0.01


class NotFoundError(Exception):
    """An identifier is unknown to the registry or catalog."""

    pass


class TaskNotFoundError(NotFoundError):
    """Raised when a task id is unknown or its record has expired."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TaskRegistry:
    """Thread-safe store of task records with timed eviction.

    Records are dropped once their retention window has passed. A single
    background sweeper wakes at the earliest deadline and purges whatever
    has expired, so the number of threads does not grow with the number of
    tasks. Reads also check the deadline, so an expired task is never
    returned even if the sweeper has not run yet.

    Attributes:
        retention_seconds: How long a record is kept after creation.

    Example:
        ```python
        registry = TaskRegistry()
        task = registry.create("abc")
        registry.update("abc", status=TaskStatus.PROCESSING)
        registry.get("abc").status  # TaskStatus.PROCESSING
        ```
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        schedule_eviction: bool = True,
    ) -> None:
        """Initialize an empty registry.

        Args:
            retention_seconds: Lifetime of each record.
            clock: Monotonic time source used for deadlines.
            schedule_eviction: Run the background sweeper. When False,
                expired records are only dropped lazily on access.
        """
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._schedule_eviction = schedule_eviction
        self._lock = threading.Lock()
        self._tasks: dict[str, Task] = {}
        self._deadlines: dict[str, float] = {}
        self._sweeper: threading.Timer | None = None

    def create(self, task_id: str) -> Task:
        """Register a new pending task.

        Creating an id that already exists replaces the old record and
        restarts its retention window.
        """
        task = Task(id=task_id, status=TaskStatus.PENDING)

        with self._lock:
            self._drop(task_id)
            self._tasks[task_id] = task
            self._deadlines[task_id] = self._clock() + self.retention_seconds
            if self._schedule_eviction and self._sweeper is None:
                self._start_sweeper(self.retention_seconds)

        logger.debug(f"[{task_id}] Task created")
        return task

    def get(self, task_id: str) -> Task | None:
        """Return the task, or None if unknown or expired."""
        with self._lock:
            if self._expired(task_id):
                self._drop(task_id)
            return self._tasks.get(task_id)

    def require(self, task_id: str) -> Task:
        """Return the task.

        Raises:
            TaskNotFoundError: If the id is unknown or expired.
        """
        task = self.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def update(self, task_id: str, **fields: Any) -> Task | None:
        """Merge fields into an existing task.

        Unknown ids are ignored; a task is never created here.

        Returns:
            The updated task, or None if the id is unknown.
        """
        with self._lock:
            if self._expired(task_id):
                self._drop(task_id)
            task = self._tasks.get(task_id)
            if task is None:
                logger.debug(f"[{task_id}] Update ignored for unknown task")
                return None

            updated = task.model_copy(update=fields)
            self._tasks[task_id] = updated

        if "status" in fields:
            logger.debug(f"[{task_id}] Status: {updated.status.value}")
        return updated

    def list_all(self) -> list[Task]:
        """Snapshot of all live tasks, for diagnostics."""
        with self._lock:
            self._purge_expired()
            return list(self._tasks.values())

    def close(self) -> None:
        """Stop the sweeper and clear the registry."""
        with self._lock:
            if self._sweeper is not None:
                self._sweeper.cancel()
                self._sweeper = None
            self._tasks.clear()
            self._deadlines.clear()

    def __len__(self) -> int:
        return len(self.list_all())

    # -------------------------------------------------------------------------
    # Internals (callers hold the lock)
    # -------------------------------------------------------------------------

    def _expired(self, task_id: str) -> bool:
        deadline = self._deadlines.get(task_id)
        return deadline is not None and self._clock() >= deadline

    def _drop(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._deadlines.pop(task_id, None)

    def _purge_expired(self) -> int:
        now = self._clock()
        expired = [t for t, deadline in self._deadlines.items() if now >= deadline]
        for task_id in expired:
            self._drop(task_id)
            logger.debug(f"[{task_id}] Task expired")
        return len(expired)

    def _start_sweeper(self, delay: float) -> None:
        sweeper = threading.Timer(max(delay, MIN_SWEEP_DELAY), self._sweep)
        sweeper.daemon = True
        self._sweeper = sweeper
        sweeper.start()

    def _sweep(self) -> None:
        with self._lock:
            # close() or a newer sweeper took over
            if self._sweeper is not threading.current_thread():
                return
            self._sweeper = None
            self._purge_expired()
            if self._deadlines:
                self._start_sweeper(min(self._deadlines.values()) - self._clock())
