"""Check-run workflow: one handler per stage, driven by webhook events.

Each stage creates its check run while the webhook request is still open,
then hands the heavy work to a background task. That task produces exactly
one :class:`~shipcheck.models.StageResult`, which is folded into the check run
in a single place (:meth:`StageHandler._finish`), whatever the outcome.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Generic, List, Optional, Type, TypeVar

from .build import BuildOrchestrator, DockerImageBuilder, GoModVendorer, ImageBuilder, Vendorer
from .config import RepositoryConfig, ServiceConfig, load_repository_config
from .errors import (
    CleanupError,
    CollaboratorError,
    ConfigError,
    PayloadError,
    StatusServiceError,
    TopologyError,
)
from .events import DeploymentProtectionEvent, Event, RunEvent, SuiteEvent, extract_run_id
from .git import GitCLI, VersionControl, temporary_checkout
from .github import APPROVED, REJECTED, AppAuthenticator, GitHubClient, StatusService
from .impact import resolve
from .lint import GolangciLinter, Linter, annotations_for
from .logging import StageLogger, get_logger, stage_logger
from .models import (
    CheckRun,
    CheckRunAction,
    CheckRunStatus,
    CheckRunUpdate,
    Conclusion,
    RegistryCredentials,
    StageResult,
)
from .repo_index import RepositoryIndexer
from .tasks import BackgroundTasks

logger = get_logger("workflow")

LINT_STAGE = "Lint"
RELEASE_STAGE = "Release application"
DEPLOY_STAGE = "Deploy to production"

RELEASE_ACTION = CheckRunAction(
    identifier="release_image",
    label="Release application",
    description="Build and push",
)
RETRY_RELEASE_ACTION = CheckRunAction(
    identifier="release_image_retry",
    label="Retry release",
    description="Retry build and push",
)

_EXPECTED_FAILURES = (CollaboratorError, StatusServiceError, PayloadError)
_CONFIGURATION_FAILURES = (TopologyError, ConfigError)

E = TypeVar("E", bound=Event)


@dataclass
class CheckRunWorkflow:
    """Collaborators and settings shared by every stage.

    Built once from explicit configuration; tests substitute fakes per
    instance instead of patching module state.
    """

    status: StatusService
    vcs: VersionControl
    linter: Linter
    vendorer: Vendorer
    image_builder: ImageBuilder
    credentials: RegistryCredentials
    tasks: BackgroundTasks = field(default_factory=BackgroundTasks)
    version_for: Callable[[str], str] = lambda sha: sha[:12]
    approval_keyword: str = "approve"

    @classmethod
    def from_config(cls, config: ServiceConfig, *, tasks: BackgroundTasks | None = None) -> "CheckRunWorkflow":
        authenticator = AppAuthenticator(config.app_id, config.private_key, api_url=config.api_url)
        return cls(
            status=GitHubClient(authenticator.installation_token, api_url=config.api_url),
            vcs=GitCLI(),
            linter=GolangciLinter(),
            vendorer=GoModVendorer(),
            image_builder=DockerImageBuilder(),
            credentials=config.registry,
            tasks=tasks or BackgroundTasks(),
            version_for=config.version_for,
            approval_keyword=config.approval_keyword,
        )

    def stages(self) -> List["StageHandler[Any]"]:
        return [LintStage(self), ReleaseStage(self), DeploymentReviewStage(self)]

    def indexer_for(self, config: RepositoryConfig) -> RepositoryIndexer:
        return RepositoryIndexer(
            manifest_name=config.manifest,
            entrypoint_name=config.entrypoint,
            exclude_dirs=config.exclude_dirs,
        )


class StageHandler(ABC, Generic[E]):
    """Advances the workflow for one event variant."""

    event_type: ClassVar[Type[Event]]
    name: ClassVar[str]
    initial_status: ClassVar[Optional[CheckRunStatus]] = None

    def __init__(self, workflow: CheckRunWorkflow) -> None:
        self.workflow = workflow

    def accepts(self, event: Event) -> bool:
        return isinstance(event, self.event_type)

    def validate(self, event: E) -> None:
        """Reject events whose payload cannot drive this stage."""

    @abstractmethod
    def head_sha(self, event: E) -> str:
        """Commit the stage's check run is attached to."""

    @abstractmethod
    def run(self, event: E) -> StageResult:
        """Do the stage's work. Runs in the background."""

    @abstractmethod
    def on_failure(self, error: Exception) -> StageResult:
        """Result reported when the work raised."""

    def on_configuration_error(self, error: Exception) -> StageResult:
        title = (
            "Invalid repository layout"
            if isinstance(error, TopologyError)
            else "Invalid repository configuration"
        )
        return StageResult(Conclusion.FAILURE, title=title, summary=str(error))

    def advance(self, event: E) -> "Future[CheckRun]":
        """Create the check run, then spawn the work that completes it.

        Creation happens synchronously so API failures reach the webhook
        response; everything after it is detached.
        """
        self.validate(event)
        head_sha = self.head_sha(event)
        run_id = self.workflow.status.create_check_run(
            event.installation, self.name, head_sha, self.initial_status
        )
        run = CheckRun(name=self.name, head_sha=head_sha, run_id=run_id)
        if self.initial_status is CheckRunStatus.IN_PROGRESS:
            run.start()
        return self.workflow.tasks.spawn(
            f"{self.name} #{run_id}", lambda: self._finish(event, run)
        )

    def _finish(self, event: E, run: CheckRun) -> CheckRun:
        log = stage_logger("workflow", self.name, run.run_id)
        result = self._capture(event, log)
        run.complete(
            result.conclusion,
            title=result.title,
            summary=result.summary,
            actions=result.actions,
            annotations=result.annotations,
        )
        log.info("Finished with %s: %s", result.conclusion.value, result.title)
        try:
            self.workflow.status.update_check_run(
                event.installation, run.run_id, CheckRunUpdate.from_run(run)
            )
        except StatusServiceError as exc:
            log.error("Failed to report %s result for check run %d: %s", self.name, run.run_id, exc)
        return run

    def _capture(self, event: E, log: StageLogger) -> StageResult:
        try:
            return self.run(event)
        except _CONFIGURATION_FAILURES as exc:
            log.error("Repository configuration problem: %s", exc)
            return self.on_configuration_error(exc)
        except _EXPECTED_FAILURES as exc:
            log.error("Failed: %s", exc)
            return self.on_failure(exc)
        except Exception as exc:
            # Task boundary: nothing may escape into the detached thread unreported.
            log.exception("Crashed")
            return self.on_failure(exc)

    def in_checkout(self, remote_url: str, commit_sha: str, work: Callable[[Path], StageResult]) -> StageResult:
        """Run ``work`` against a fresh clone at ``commit_sha``.

        A failed cleanup after successful work is logged as critical but
        does not replace the work's result.
        """
        results: List[StageResult] = []
        try:
            with temporary_checkout(self.workflow.vcs, remote_url, commit_sha) as repo_path:
                results.append(work(repo_path))
        except CleanupError as exc:
            if not results:
                raise
            logger.critical("Temporary checkout leaked: %s", exc)
        return results[0]


class LintStage(StageHandler[SuiteEvent]):
    event_type = SuiteEvent
    name = LINT_STAGE

    def head_sha(self, event: SuiteEvent) -> str:
        return event.head_sha

    def run(self, event: SuiteEvent) -> StageResult:
        return self.in_checkout(event.repository.clone_url, event.head_sha, self._lint)

    def on_failure(self, error: Exception) -> StageResult:
        return StageResult(
            Conclusion.FAILURE,
            title="Failed to run linters",
            summary=f"failed to run linters: {error}",
        )

    def _lint(self, repo_path: Path) -> StageResult:
        index = self.workflow.indexer_for(load_repository_config(repo_path)).index(repo_path)
        issue_count = 0
        annotations = []
        for module in sorted(index.modules):
            report = self.workflow.linter.run(module.directory)
            issue_count += len(report.issues)
            annotations.extend(
                annotations_for(report.issues, module_dir=module.directory, repo_root=index.root)
            )

        if issue_count:
            return StageResult(
                Conclusion.FAILURE,
                title="Linter failed",
                summary=_lint_summary(issue_count, len(annotations)),
                annotations=annotations,
            )
        return StageResult(
            Conclusion.SUCCESS,
            title="Linters passed",
            summary=f"No issues found in {_plural(len(index.modules), 'module')}.",
            actions=[RELEASE_ACTION],
        )


class ReleaseStage(StageHandler[RunEvent]):
    event_type = RunEvent
    name = RELEASE_STAGE
    initial_status = CheckRunStatus.IN_PROGRESS
    triggers = frozenset({RELEASE_ACTION.identifier, RETRY_RELEASE_ACTION.identifier})

    def accepts(self, event: Event) -> bool:
        return (
            isinstance(event, RunEvent)
            and event.action == "requested_action"
            and event.requested_action in self.triggers
        )

    def head_sha(self, event: RunEvent) -> str:
        return event.head_sha

    def run(self, event: RunEvent) -> StageResult:
        target = event.after_sha or event.head_sha
        return self.in_checkout(
            event.repository.clone_url,
            target,
            lambda repo_path: self._release(repo_path, event.before_sha, target),
        )

    def on_failure(self, error: Exception) -> StageResult:
        return StageResult(
            Conclusion.FAILURE,
            title="Release failed",
            summary=str(error),
            actions=[RETRY_RELEASE_ACTION],
        )

    def _release(self, repo_path: Path, before_sha: Optional[str], after_sha: str) -> StageResult:
        config = load_repository_config(repo_path)
        index = self.workflow.indexer_for(config).index(repo_path)
        changes = self.workflow.vcs.changed_paths(index.root, before_sha, after_sha)
        plan = resolve(index, changes)

        orchestrator = BuildOrchestrator(
            self.workflow.vendorer,
            self.workflow.image_builder,
            registry_prefix=config.registry_prefix,
        )
        outcome = orchestrator.execute(
            plan, index.root, self.workflow.credentials, self.workflow.version_for(after_sha)
        )

        if not outcome.images:
            return StageResult(
                Conclusion.SUCCESS,
                title="Nothing to release",
                summary="No application was affected by the changes in this commit range.",
            )
        return StageResult(
            Conclusion.SUCCESS,
            title=f"Released {_plural(len(outcome.images), 'application')}",
            summary="\n".join(f"- `{image}`" for image in outcome.images),
        )


class DeploymentReviewStage(StageHandler[DeploymentProtectionEvent]):
    event_type = DeploymentProtectionEvent
    name = DEPLOY_STAGE
    initial_status = CheckRunStatus.IN_PROGRESS
    comment = "signed-off by shipcheck"

    def accepts(self, event: Event) -> bool:
        return isinstance(event, DeploymentProtectionEvent) and event.action == "requested"

    def validate(self, event: DeploymentProtectionEvent) -> None:
        extract_run_id(event.callback_url)

    def head_sha(self, event: DeploymentProtectionEvent) -> str:
        return event.deployment_sha

    def run(self, event: DeploymentProtectionEvent) -> StageResult:
        return self.in_checkout(
            event.repository.clone_url,
            event.deployment_sha,
            lambda repo_path: self._review(repo_path, event),
        )

    def on_failure(self, error: Exception) -> StageResult:
        return StageResult(
            Conclusion.FAILURE,
            title="Deployment review failed",
            summary=str(error),
        )

    def _review(self, repo_path: Path, event: DeploymentProtectionEvent) -> StageResult:
        message = self.workflow.vcs.commit_message(repo_path, event.deployment_sha)
        logger.debug("Commit message for %s: %s", event.deployment_sha, message)
        keyword = self.workflow.approval_keyword
        approved = keyword in message
        self.workflow.status.review_deployment(
            event.installation,
            event.workflow_run_id,
            state=APPROVED if approved else REJECTED,
            environment=event.environment,
            comment=self.comment,
        )
        if approved:
            return StageResult(
                Conclusion.SUCCESS,
                title="Deployment approved",
                summary=f"Deployment to {event.environment} approved: the commit message contains '{keyword}'.",
            )
        return StageResult(
            Conclusion.FAILURE,
            title="Deployment rejected",
            summary=f"Deployment to {event.environment} rejected: the commit message does not contain '{keyword}'.",
        )


def _lint_summary(issue_count: int, annotated: int) -> str:
    summary = f"Linters reported {_plural(issue_count, 'issue')}."
    skipped = issue_count - annotated
    if skipped:
        summary += f" {_plural(skipped, 'issue')} without a message could not be annotated."
    return summary


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


__all__ = [
    "CheckRunWorkflow",
    "DEPLOY_STAGE",
    "DeploymentReviewStage",
    "LINT_STAGE",
    "LintStage",
    "RELEASE_ACTION",
    "RELEASE_STAGE",
    "RETRY_RELEASE_ACTION",
    "ReleaseStage",
    "StageHandler",
]
