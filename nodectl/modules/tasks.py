"""Background task dispatch for long-running remote workflows."""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from ..config import Config

logger = logging.getLogger("tasks")


class TaskRunner:
    """Runs fire-and-forget work on a thread pool.

    Every submission returns a ``Future`` and is tracked until it finishes,
    so callers (and tests) can wait for background work deterministically
    with ``wait_all`` instead of sleeping.
    """

    def __init__(self, max_workers: Optional[int] = None):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or Config.TASK_WORKERS,
            thread_name_prefix="nodectl-task",
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Schedule ``fn(*args, **kwargs)`` in the background.

        Failures are logged with the task name; they never propagate to
        the submitter.
        """
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)
            if f.cancelled():
                logger.warning(f"Task '{name}' was cancelled")
                return
            error = f.exception()
            if error is not None:
                logger.error(f"❌ Task '{name}' failed: {error}", exc_info=error)
            else:
                logger.debug(f"Task '{name}' finished")

        future.add_done_callback(_done)
        logger.debug(f"Dispatched task '{name}'")
        return future

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """Block until all tracked tasks finish; True if none remain."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks)
