"""
Task runners for fire-and-forget calculation dispatch.

The orchestrator owns one runner. Submitted tasks are not awaited by the
HTTP request that spawned them; the thread-pool runner is drained when the
application shuts down.
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class TaskRunner(Protocol):
    def submit(self, fn: Callable[[], None]) -> None:
        ...

    def shutdown(self, wait: bool = True) -> None:
        ...


def _log_failure(future: concurrent.futures.Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Dispatch task crashed", exc_info=exc)


class ThreadPoolTaskRunner:
    """Runs each task on a shared thread pool."""

    def __init__(self, max_workers: int = 32):
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="calc-dispatch"
        )

    def submit(self, fn: Callable[[], None]) -> None:
        future = self._executor.submit(fn)
        future.add_done_callback(_log_failure)

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Draining calculation dispatch pool (wait=%s)", wait)
        self._executor.shutdown(wait=wait)


class InlineTaskRunner:
    """Runs tasks immediately on the caller's thread. Used in tests and dev."""

    def submit(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            logger.exception("Dispatch task crashed")

    def shutdown(self, wait: bool = True) -> None:
        return None
