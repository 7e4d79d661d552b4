from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from tests._fixtures.repo_builder import RepoBuilder


@pytest.fixture(autouse=True)
def _propagating_logs() -> Iterator[None]:
    """Undo ``configure_logging`` side effects so caplog sees shipcheck records."""
    logger = logging.getLogger("shipcheck")
    yield
    logger.propagate = True
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture
def repo_builder(tmp_path: Path) -> RepoBuilder:
    """Provide a reusable repo builder rooted at the pytest tmp_path."""
    return RepoBuilder(tmp_path)


class ImmediateExecutor(Executor):
    """Runs submitted work inline so background results are visible at once."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # surfaced through the future
            future.set_exception(exc)
        return future


@pytest.fixture
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()
