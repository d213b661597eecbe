"""Background compaction using a single-thread pool."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from devmind.store.db import Database

logger = structlog.get_logger()


class MaintenanceEvent(Enum):
    """Work items the maintenance worker understands."""

    COMPACT = "compact"


class WorkerState(Enum):
    """Maintenance worker state."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class WorkerStatus:
    """Current maintenance worker status."""

    state: WorkerState
    queue_size: int
    completed: int = 0
    last_error: str | None = None


@dataclass
class MaintenanceQueue:
    """Thread-safe set of pending maintenance events.

    Repeated events collapse: ten compaction requests queued before the
    worker gets to them run one VACUUM.
    """

    _pending: set[MaintenanceEvent] = field(default_factory=set, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def put(self, event: MaintenanceEvent) -> None:
        with self._lock:
            self._pending.add(event)

    def drain(self) -> list[MaintenanceEvent]:
        """Atomically take every pending event."""
        with self._lock:
            events = sorted(self._pending, key=lambda e: e.value)
            self._pending.clear()
        return events

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


@dataclass
class MaintenanceWorker:
    """
    Non-blocking consumer of the maintenance queue.

    Design:
    - Callers enqueue and return immediately; they never wait on the worker
    - One worker thread serializes VACUUM against itself
    - Failures are logged and recorded in status, never raised to callers
    """

    database: Database
    queue: MaintenanceQueue = field(default_factory=MaintenanceQueue)
    max_workers: int = 1  # Single worker for serialization

    _state: WorkerState = field(default=WorkerState.IDLE, init=False)
    _executor: ThreadPoolExecutor | None = field(default=None, init=False)
    _futures: list[Future[None]] = field(default_factory=list, init=False)
    _futures_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _completed: int = field(default=0, init=False)
    _last_error: str | None = field(default=None, init=False)

    def start(self) -> None:
        """Start the worker thread pool."""
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="devmind-maintenance",
        )
        self._state = WorkerState.IDLE
        logger.debug("maintenance_worker_started")

    def stop(self, wait_for_pending: bool = True) -> None:
        """Stop the worker, optionally letting queued work finish."""
        self._state = WorkerState.STOPPING
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_pending, cancel_futures=not wait_for_pending)
            self._executor = None
        self._state = WorkerState.STOPPED
        logger.debug("maintenance_worker_stopped")

    def submit(self, event: MaintenanceEvent) -> None:
        """Queue an event and schedule a flush. Never blocks on the work itself."""
        self.queue.put(event)
        if self._executor is None or self._state in (WorkerState.STOPPING, WorkerState.STOPPED):
            logger.debug("maintenance_event_deferred", maintenance_event=event.value)
            return
        future = self._executor.submit(self._flush)
        with self._futures_lock:
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(future)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every scheduled flush has finished.

        Returns:
            True if the worker went idle within the timeout.
        """
        with self._futures_lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _flush(self) -> None:
        events = self.queue.drain()
        if not events:
            return
        self._state = WorkerState.RUNNING
        try:
            for event in events:
                if event is MaintenanceEvent.COMPACT:
                    self.compact()
                self._completed += 1
            self._last_error = None
        except Exception as e:
            self._last_error = str(e)
            logger.warning("maintenance_vacuum_failed", error=str(e))
        finally:
            if self._state is WorkerState.RUNNING:
                self._state = WorkerState.IDLE

    def compact(self) -> None:
        """VACUUM the database. Runs on the calling thread."""
        self.database.vacuum()
        logger.info("maintenance_compacted", path=str(self.database.db_path))

    @property
    def status(self) -> WorkerStatus:
        """Get current worker status."""
        return WorkerStatus(
            state=self._state,
            queue_size=len(self.queue),
            completed=self._completed,
            last_error=self._last_error,
        )
