"""Core data models shared across shipcheck components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Optional, Sequence

from .errors import InvalidTransition


@dataclass(frozen=True, order=True)
class Module:
    """A directory subtree with its own dependency manifest."""

    directory: Path

    @property
    def name(self) -> str:
        return self.directory.name


@dataclass(frozen=True, order=True)
class Application:
    """A directory holding a runnable entry point."""

    directory: Path

    @property
    def name(self) -> str:
        return self.directory.name


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEntry:
    """A single file touched between two commits."""

    path: Path
    kind: ChangeKind


@dataclass(frozen=True)
class BuildPlan:
    """Applications to rebuild and the modules that must be vendored first."""

    rebuild_apps: FrozenSet[Application] = frozenset()
    vendor_modules: FrozenSet[Module] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.rebuild_apps and not self.vendor_modules


@dataclass(frozen=True)
class Installation:
    """Authorization context for API calls made on behalf of one repository."""

    owner: str
    repository: str
    installation_id: int


@dataclass(frozen=True)
class RegistryCredentials:
    username: str
    password: str
    registry: str = "docker.io"


class CheckRunStatus(str, Enum):
    CREATED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Conclusion(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class CheckRunAction:
    """A button offered on a completed check run."""

    identifier: str
    label: str
    description: str


@dataclass(frozen=True)
class Annotation:
    """A finding attached to a line range of a file in the repository."""

    path: str
    start_line: int
    end_line: int
    level: str
    message: str
    title: Optional[str] = None
    start_column: Optional[int] = None
    end_column: Optional[int] = None


_ALLOWED_TRANSITIONS = {
    CheckRunStatus.CREATED: {CheckRunStatus.IN_PROGRESS, CheckRunStatus.COMPLETED},
    CheckRunStatus.IN_PROGRESS: {CheckRunStatus.COMPLETED},
    CheckRunStatus.COMPLETED: set(),
}


@dataclass
class CheckRun:
    """Local mirror of an externally visible check run.

    Only the workflow mutates it, through :meth:`start` and :meth:`complete`;
    ``completed`` is terminal and the conclusion is only ever set there.
    """

    name: str
    head_sha: str
    run_id: int
    status: CheckRunStatus = CheckRunStatus.CREATED
    conclusion: Optional[Conclusion] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    actions: List[CheckRunAction] = field(default_factory=list)
    annotations: List[Annotation] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status is CheckRunStatus.COMPLETED

    def start(self) -> None:
        self._move(CheckRunStatus.IN_PROGRESS)

    def complete(
        self,
        conclusion: Conclusion,
        *,
        title: str,
        summary: str,
        actions: Sequence[CheckRunAction] = (),
        annotations: Sequence[Annotation] = (),
    ) -> None:
        self._move(CheckRunStatus.COMPLETED)
        self.conclusion = conclusion
        self.title = title
        self.summary = summary
        self.actions = list(actions)
        self.annotations = list(annotations)

    def _move(self, target: CheckRunStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"check run '{self.name}' cannot move from {self.status.value} to {target.value}"
            )
        self.status = target


@dataclass(frozen=True)
class StageResult:
    """Terminal outcome of one stage, applied to its check run exactly once."""

    conclusion: Conclusion
    title: str
    summary: str
    actions: Sequence[CheckRunAction] = ()
    annotations: Sequence[Annotation] = ()


@dataclass(frozen=True)
class CheckRunUpdate:
    """Payload sent to the status service when a check run changes."""

    name: str
    status: CheckRunStatus
    conclusion: Optional[Conclusion] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    actions: Sequence[CheckRunAction] = ()
    annotations: Sequence[Annotation] = ()

    @classmethod
    def from_run(cls, run: CheckRun) -> "CheckRunUpdate":
        return cls(
            name=run.name,
            status=run.status,
            conclusion=run.conclusion,
            title=run.title,
            summary=run.summary,
            actions=tuple(run.actions),
            annotations=tuple(run.annotations),
        )
