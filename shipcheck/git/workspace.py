"""Scoped temporary working copies of a repository."""

from __future__ import annotations

import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from ..errors import CleanupError
from ..logging import get_logger
from .vcs import VersionControl

logger = get_logger("workspace")


@contextmanager
def temporary_checkout(
    vcs: VersionControl,
    remote_url: str,
    commit_sha: str,
    *,
    prefix: str = "shipcheck-",
    remover: Callable[[Path], None] | None = None,
) -> Iterator[Path]:
    """Clone ``remote_url`` at ``commit_sha`` into a directory removed on exit.

    Removal happens on every exit path. If it fails while another error is
    already propagating, the failure is only logged so the original error
    reaches the caller; otherwise it raises :class:`CleanupError`.
    """
    remove = remover or _remove_tree
    directory = Path(tempfile.mkdtemp(prefix=prefix))
    repo_path = directory / "repository"
    try:
        vcs.clone(remote_url, repo_path)
        vcs.checkout(repo_path, commit_sha)
        yield repo_path
    except BaseException:
        _cleanup(directory, remove, escalate=False)
        raise
    else:
        _cleanup(directory, remove, escalate=True)


def _cleanup(directory: Path, remove: Callable[[Path], None], *, escalate: bool) -> None:
    logger.debug("Deleting temporary checkout %s", directory)
    try:
        remove(directory)
    except OSError as exc:
        logger.error("Failed to delete temporary checkout %s: %s", directory, exc)
        if escalate:
            raise CleanupError(f"failed to delete temporary checkout {directory}: {exc}") from exc


def _remove_tree(directory: Path) -> None:
    shutil.rmtree(directory)


__all__ = ["temporary_checkout"]
