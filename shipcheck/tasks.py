"""Background execution of stage work, detached from webhook requests."""

from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from .logging import get_logger

logger = get_logger("tasks")

T = TypeVar("T")


class BackgroundTasks:
    """Fire-and-forget task runner.

    Requests never wait on the returned futures; they exist so the process
    can drain work on shutdown and so tests can observe completion.
    """

    def __init__(self, executor: Optional[Executor] = None, *, max_workers: int = 4) -> None:
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="shipcheck-task"
        )

    def spawn(self, name: str, work: Callable[[], T]) -> "Future[T]":
        logger.debug("Spawning background task %s", name)
        future = self._executor.submit(work)
        future.add_done_callback(lambda done: _log_unexpected(name, done))
        return future

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_unexpected(name: str, future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("Background task %s crashed: %s", name, error, exc_info=error)


__all__ = ["BackgroundTasks"]
