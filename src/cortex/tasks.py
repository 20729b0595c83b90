"""
Bounded background task queue for fire-and-forget side effects.

store() and recall() hand embedding, ledger commits, auto-linking,
entity extraction and access tracking to this queue so the caller never
waits on them. Every failure is captured, logged and published as a
task.failed event; a full queue rejects new work instead of blocking.
"""

import logging
import queue
import threading
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from .event_bus import EventBus
from .events import BackgroundTaskFailedEvent

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class TaskFailure:
    """A captured background task exception."""
    task_name: str
    error: str
    traceback: str
    timestamp: datetime = field(default_factory=datetime.now)


class BackgroundTaskQueue:
    """
    Fixed pool of daemon workers draining a bounded queue.

    Usage:
        tasks = BackgroundTaskQueue(workers=2, max_size=256, event_bus=bus)
        tasks.submit("embed", embed_memory, memory_id)
        tasks.join()      # wait for the queue to drain
        tasks.shutdown()

    With synchronous=True tasks run inline on submit (still with error
    capture), which keeps tests and one-shot CLI commands deterministic.
    """

    def __init__(self,
                 workers: int = 2,
                 max_size: int = 256,
                 event_bus: Optional[EventBus] = None,
                 synchronous: bool = False,
                 max_failures: int = 100):
        self.synchronous = synchronous
        self.failures: deque = deque(maxlen=max_failures)
        self._event_bus = event_bus
        self._queue: queue.Queue = queue.Queue(maxsize=max_size)
        self._workers = []
        self._shutdown = False
        self._lock = threading.Lock()

        if not synchronous:
            for i in range(workers):
                worker = threading.Thread(
                    target=self._worker_loop,
                    name=f"cortex-task-{i}",
                    daemon=True
                )
                worker.start()
                self._workers.append(worker)

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> bool:
        """
        Schedule fn(*args, **kwargs).

        Returns:
            False if the queue is full or shut down, True otherwise
        """
        if self._shutdown:
            logger.warning(f"Task queue shut down, dropping task {name}")
            return False

        if self.synchronous:
            self._run(name, fn, args, kwargs)
            return True

        try:
            self._queue.put_nowait((name, fn, args, kwargs))
        except queue.Full:
            logger.warning(f"Task queue full, dropping task {name}")
            return False
        return True

    def _run(self, name: str, fn: Callable[..., Any], args, kwargs) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as e:
            failure = TaskFailure(name, str(e), traceback.format_exc())
            self.failures.append(failure)
            logger.error(f"Background task {name} failed: {e}", exc_info=True)
            if self._event_bus is not None:
                self._event_bus.publish(BackgroundTaskFailedEvent(task_name=name, error=str(e)))

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._run(*item)
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every queued task has finished."""
        if not self.synchronous:
            self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the workers after the tasks already queued. Idempotent."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True

        for _ in self._workers:
            self._queue.put(_STOP)
        if wait:
            for worker in self._workers:
                worker.join(timeout=30)
        self._workers = []
