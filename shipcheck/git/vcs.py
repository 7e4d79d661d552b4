"""Version-control operations backed by the git CLI."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from ..errors import VersionControlError
from ..logging import get_logger
from ..models import ChangeEntry, ChangeKind

logger = get_logger("git")

_NULL_SHA = "0" * 40

_STATUS_KINDS = {
    "A": ChangeKind.CREATED,
    "C": ChangeKind.CREATED,
    "M": ChangeKind.UPDATED,
    "T": ChangeKind.UPDATED,
    "D": ChangeKind.DELETED,
}


class VersionControl(Protocol):
    """Narrow interface the stages use to obtain a repository and its changes."""

    def clone(self, remote_url: str, destination: Path) -> Path: ...

    def checkout(self, repo_path: Path, commit_sha: str) -> None: ...

    def changed_paths(
        self, repo_path: Path, before_sha: Optional[str], after_sha: str
    ) -> List[ChangeEntry]: ...

    def commit_message(self, repo_path: Path, commit_sha: str) -> str: ...

    def tracked_files(self, repo_path: Path, commit_sha: str) -> List[Path]: ...


def is_null_sha(sha: Optional[str]) -> bool:
    """True for the missing/all-zero SHA GitHub sends for brand-new refs."""
    return not sha or sha == _NULL_SHA


class GitCLI:
    """Runs git commands through an injectable runner."""

    def __init__(self, runner: Callable[..., str] | None = None, executable: str = "git") -> None:
        self._runner = runner or self._default_runner
        self.executable = executable

    def clone(self, remote_url: str, destination: Path) -> Path:
        destination = Path(destination)
        self._run(["clone", "--quiet", remote_url, str(destination)], cwd=destination.parent)
        return destination

    def checkout(self, repo_path: Path, commit_sha: str) -> None:
        self._run(["checkout", "--quiet", "--detach", commit_sha], cwd=repo_path)

    def changed_paths(
        self, repo_path: Path, before_sha: Optional[str], after_sha: str
    ) -> List[ChangeEntry]:
        """Return the files touched between two commits as absolute paths.

        Identical SHAs mean nothing changed and no diff is computed. A missing
        ``before_sha`` (first push of a branch) treats every tracked file at
        ``after_sha`` as created.
        """
        repo_path = Path(repo_path)
        if before_sha == after_sha:
            logger.info("Commit range %s..%s is empty; nothing changed", before_sha, after_sha)
            return []

        if is_null_sha(before_sha):
            return [
                ChangeEntry(path=path, kind=ChangeKind.CREATED)
                for path in self.tracked_files(repo_path, after_sha)
            ]

        # -z keeps paths unquoted; --relative scopes them to repo_path, which may
        # be a subdirectory of the work tree.
        output = self._run(
            ["diff", "--name-status", "--no-renames", "--relative", "-z", before_sha or "", after_sha],
            cwd=repo_path,
        )
        return self._parse_name_status(repo_path, output)

    def commit_message(self, repo_path: Path, commit_sha: str) -> str:
        return self._run(["log", "-1", "--format=%B", commit_sha], cwd=repo_path).strip()

    def tracked_files(self, repo_path: Path, commit_sha: str) -> List[Path]:
        """Every file tracked at ``commit_sha`` below ``repo_path``, as absolute paths."""
        output = self._run(["ls-tree", "-r", "--name-only", "-z", commit_sha], cwd=repo_path)
        return [Path(repo_path) / name for name in _fields(output)]

    # ------------------------------------------------------------------
    # Internals

    @staticmethod
    def _parse_name_status(repo_path: Path, output: str) -> List[ChangeEntry]:
        changes: List[ChangeEntry] = []
        fields = _fields(output)
        if len(fields) % 2:
            raise VersionControlError(f"unexpected diff output: {output!r}")
        for status, path in zip(fields[::2], fields[1::2]):
            kind = _STATUS_KINDS.get(status[:1])
            if kind is None:
                raise VersionControlError(f"unsupported change status {status!r} for {path}")
            logger.debug("%s: %s", kind.value, path)
            changes.append(ChangeEntry(path=repo_path / path, kind=kind))
        return changes

    def _run(self, args: Sequence[str], *, cwd: Path) -> str:
        command = [self.executable, *args]
        try:
            return self._runner(command, cwd=cwd)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or f"exit status {exc.returncode}"
            raise VersionControlError(f"git {args[0]} failed: {detail}") from exc
        except FileNotFoundError as exc:
            raise VersionControlError(f"Unable to locate '{self.executable}' executable") from exc

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=True,
            encoding="utf-8",
            errors="surrogateescape",
            capture_output=True,
        )
        return completed.stdout


def _fields(output: str) -> List[str]:
    """Split NUL-terminated git output; paths are taken verbatim."""
    return [field for field in output.split("\0") if field]


__all__ = ["GitCLI", "VersionControl", "is_null_sha"]
