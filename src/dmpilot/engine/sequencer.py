"""Per-conversation serialization over a shared worker pool."""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)


class KeyedSequencer:
    """Runs tasks one at a time per key, different keys in parallel.

    Tasks for the same key run in submission order. A key holds at most one
    worker thread at a time, so a busy conversation cannot starve the pool.
    """

    def __init__(self, max_workers: int = 8):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dmpilot-worker")
        self._lock = threading.Lock()
        self._queues: dict[Hashable, deque] = {}

    def run_exclusive(self, key: Hashable, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``fn(*args, **kwargs)`` after every earlier task for ``key``."""
        future: Future = Future()
        with self._lock:
            queue = self._queues.get(key)
            if queue is not None:
                queue.append((future, fn, args, kwargs))
                return future
            self._queues[key] = deque()
        self._start(key, future, fn, args, kwargs)
        return future

    def pending(self, key: Hashable) -> int:
        """Tasks for ``key`` waiting behind the running one (0 when idle)."""
        with self._lock:
            queue = self._queues.get(key)
            return len(queue) if queue is not None else 0

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; with ``wait`` block until queued tasks finish."""
        self._executor.shutdown(wait=wait)

    def _start(self, key: Hashable, future: Future, fn: Callable, args: tuple, kwargs: dict) -> None:
        try:
            self._executor.submit(self._run, key, future, fn, args, kwargs)
        except RuntimeError as e:
            # Executor already shut down
            with self._lock:
                self._queues.pop(key, None)
            future.set_exception(e)

    def _run(self, key: Hashable, future: Future, fn: Callable, args: tuple, kwargs: dict) -> None:
        # Drain the key's queue on this worker so the key keeps its slot
        while True:
            if future.set_running_or_notify_cancel():
                try:
                    future.set_result(fn(*args, **kwargs))
                except Exception as e:
                    logger.exception(f"Task for {key!r} failed")
                    future.set_exception(e)
            with self._lock:
                queue = self._queues[key]
                if not queue:
                    del self._queues[key]
                    return
                future, fn, args, kwargs = queue.popleft()
