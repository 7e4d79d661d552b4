"""Tests for the check-run workflow stages."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from shipcheck import workflow as workflow_module
from shipcheck.errors import (
    BuildError,
    CleanupError,
    LintError,
    PayloadError,
    StatusServiceError,
    VendorError,
    VersionControlError,
)
from shipcheck.events import DeploymentProtectionEvent, Repository, RunEvent, SuiteEvent
from shipcheck.lint import LintIssue, LintReport, Position
from shipcheck.models import (
    ChangeEntry,
    ChangeKind,
    CheckRunStatus,
    CheckRunUpdate,
    Conclusion,
    Installation,
    RegistryCredentials,
)
from shipcheck.tasks import BackgroundTasks
from shipcheck.workflow import (
    RELEASE_ACTION,
    RETRY_RELEASE_ACTION,
    CheckRunWorkflow,
    DeploymentReviewStage,
    LintStage,
    ReleaseStage,
)

REPOSITORY = Repository(owner="acme", name="mono", clone_url="https://github.com/acme/mono.git")
HEAD = "c" * 40
BEFORE = "a" * 40
AFTER = "b" * 40

TWO_MODULES = {
    "a/go.mod": "module example.com/a\n",
    "a/cmd/main.go": "package main\n",
    "b/go.mod": "module example.com/b\n",
    "b/cmd/main.go": "package main\n",
}


class FakeStatus:
    def __init__(self, *, fail_update: bool = False) -> None:
        self.fail_update = fail_update
        self.created: List[tuple] = []
        self.updates: List[tuple] = []
        self.reviews: List[dict] = []

    def create_check_run(self, installation, name, head_sha, status=None):  # type: ignore[no-untyped-def]
        self.created.append((installation, name, head_sha, status))
        return 100 + len(self.created)

    def update_check_run(self, installation: Installation, run_id: int, update: CheckRunUpdate) -> None:
        self.updates.append((run_id, update))
        if self.fail_update:
            raise StatusServiceError("Bad credentials", status=401)

    def review_deployment(self, installation, workflow_run_id, *, state, environment, comment):  # type: ignore[no-untyped-def]
        self.reviews.append(
            {"run_id": workflow_run_id, "state": state, "environment": environment, "comment": comment}
        )

    @property
    def last(self) -> CheckRunUpdate:
        return self.updates[-1][1]


class FakeVCS:
    def __init__(
        self,
        files: Dict[str, str],
        *,
        changes: Optional[List[str]] = None,
        message: str = "",
        fail_clone: bool = False,
    ) -> None:
        self.files = files
        self.changes = changes or []
        self.message = message
        self.fail_clone = fail_clone
        self.checkouts: List[str] = []
        self.diffs: List[tuple] = []

    def clone(self, remote_url: str, destination: Path) -> Path:
        if self.fail_clone:
            raise VersionControlError("git clone failed: repository not found")
        for relative, content in self.files.items():
            path = destination / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        destination.mkdir(parents=True, exist_ok=True)
        return destination

    def checkout(self, repo_path: Path, commit_sha: str) -> None:
        self.checkouts.append(commit_sha)

    def changed_paths(self, repo_path: Path, before_sha, after_sha):  # type: ignore[no-untyped-def]
        self.diffs.append((before_sha, after_sha))
        if before_sha == after_sha:
            return []
        return [ChangeEntry(path=repo_path / change, kind=ChangeKind.UPDATED) for change in self.changes]

    def commit_message(self, repo_path: Path, commit_sha: str) -> str:
        return self.message

    def tracked_files(self, repo_path: Path, commit_sha: str) -> List[Path]:
        return [repo_path / relative for relative in self.files]


class FakeLinter:
    def __init__(self, issues: Optional[Dict[str, List[LintIssue]]] = None, *, error: bool = False) -> None:
        self.issues = issues or {}
        self.error = error
        self.modules: List[str] = []

    def run(self, module_dir: Path) -> LintReport:
        self.modules.append(module_dir.name)
        if self.error:
            raise LintError("Unable to locate 'golangci-lint' executable")
        return LintReport(issues=list(self.issues.get(module_dir.name, [])))


class FakeVendorer:
    def __init__(self) -> None:
        self.calls: List[str] = []

    def vendor(self, module_dir: Path) -> None:
        self.calls.append(module_dir.name)


class FakeImageBuilder:
    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.calls: List[tuple] = []

    def build_and_push(self, repo_dir, app_relative_dir, registry_repository, version, credentials):  # type: ignore[no-untyped-def]
        self.calls.append((app_relative_dir, registry_repository, version))
        if app_relative_dir == self.fail_on:
            raise BuildError(repo_dir / app_relative_dir, "build failed: exit status 1")
        return f"{credentials.username}/{registry_repository}:{version}"


def _workflow(
    immediate_executor,  # type: ignore[no-untyped-def]
    *,
    vcs: FakeVCS,
    status: Optional[FakeStatus] = None,
    linter: Optional[FakeLinter] = None,
    vendorer: Optional[FakeVendorer] = None,
    builder: Optional[FakeImageBuilder] = None,
) -> CheckRunWorkflow:
    return CheckRunWorkflow(
        status=status or FakeStatus(),
        vcs=vcs,
        linter=linter or FakeLinter(),
        vendorer=vendorer or FakeVendorer(),
        image_builder=builder or FakeImageBuilder(),
        credentials=RegistryCredentials(username="acme", password="s3cret"),
        tasks=BackgroundTasks(immediate_executor),
        version_for=lambda sha: sha[:7],
    )


def _suite_event() -> SuiteEvent:
    return SuiteEvent(
        action="requested",
        installation_id=1,
        repository=REPOSITORY,
        head_sha=HEAD,
        before_sha=BEFORE,
        after_sha=AFTER,
    )


def _release_event(before: str = BEFORE, after: str = AFTER, action: str = "release_image") -> RunEvent:
    return RunEvent(
        action="requested_action",
        installation_id=1,
        repository=REPOSITORY,
        head_sha=after,
        before_sha=before,
        after_sha=after,
        requested_action=action,
    )


def _deploy_event(callback: str = "https://api.github.com/repos/acme/mono/actions/runs/555/deployment_protection_rule") -> DeploymentProtectionEvent:
    return DeploymentProtectionEvent(
        action="requested",
        installation_id=1,
        repository=REPOSITORY,
        environment="production",
        deployment_sha=HEAD,
        callback_url=callback,
    )


def _issue(text: str) -> LintIssue:
    return LintIssue(from_linter="errcheck", text=text, severity="", position=Position("cmd/main.go", 4, 2))


# ----------------------------------------------------------------------
# Lint


def test_lint_success_offers_release_action(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    linter = FakeLinter()
    vcs = FakeVCS(TWO_MODULES)
    workflow = _workflow(immediate_executor, vcs=vcs, status=status, linter=linter)

    run = LintStage(workflow).advance(_suite_event()).result()

    assert status.created[0][1:] == ("Lint", HEAD, None)
    assert vcs.checkouts == [HEAD]
    assert sorted(linter.modules) == ["a", "b"]
    assert run.status is CheckRunStatus.COMPLETED
    assert run.conclusion is Conclusion.SUCCESS
    update = status.last
    assert update.conclusion is Conclusion.SUCCESS
    assert list(update.actions) == [RELEASE_ACTION]
    assert RELEASE_ACTION.identifier == "release_image"
    assert RELEASE_ACTION.label == "Release application"
    assert RELEASE_ACTION.description == "Build and push"


def test_lint_findings_fail_with_one_annotation_per_message(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    linter = FakeLinter({"a": [_issue("Error return value is not checked"), _issue("")]})
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES), status=status, linter=linter)

    LintStage(workflow).advance(_suite_event()).result()

    assert len(status.updates) == 1
    update = status.last
    assert update.conclusion is Conclusion.FAILURE
    assert update.title == "Linter failed"
    assert len(update.annotations) == 1
    assert update.annotations[0].path == "a/cmd/main.go"
    assert update.actions == ()


def test_lint_invocation_failure(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    workflow = _workflow(
        immediate_executor, vcs=FakeVCS(TWO_MODULES), status=status, linter=FakeLinter(error=True)
    )

    LintStage(workflow).advance(_suite_event()).result()

    update = status.last
    assert update.conclusion is Conclusion.FAILURE
    assert update.title == "Failed to run linters"
    assert update.summary.startswith("failed to run linters: ")
    assert update.annotations == ()


def test_lint_clone_failure_is_reported(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS({}, fail_clone=True), status=status)

    run = LintStage(workflow).advance(_suite_event()).result()

    assert run.conclusion is Conclusion.FAILURE
    assert "repository not found" in status.last.summary


# ----------------------------------------------------------------------
# Release


def test_release_builds_changed_module_only(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    vcs = FakeVCS(TWO_MODULES, changes=["a/internal/x.go"])
    vendorer = FakeVendorer()
    builder = FakeImageBuilder()
    workflow = _workflow(immediate_executor, vcs=vcs, status=status, vendorer=vendorer, builder=builder)

    run = ReleaseStage(workflow).advance(_release_event()).result()

    assert status.created[0][1:] == ("Release application", AFTER, CheckRunStatus.IN_PROGRESS)
    assert vcs.checkouts == [AFTER]
    assert vcs.diffs == [(BEFORE, AFTER)]
    assert vendorer.calls == ["a"]
    assert builder.calls == [("a/cmd", "shipcheck-cmd", AFTER[:7])]
    assert run.conclusion is Conclusion.SUCCESS
    assert "acme/shipcheck-cmd:bbbbbbb" in status.last.summary


def test_release_with_identical_shas_builds_nothing(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    vendorer = FakeVendorer()
    builder = FakeImageBuilder()
    workflow = _workflow(
        immediate_executor,
        vcs=FakeVCS(TWO_MODULES, changes=["a/x.go"]),
        status=status,
        vendorer=vendorer,
        builder=builder,
    )

    run = ReleaseStage(workflow).advance(_release_event(before=AFTER, after=AFTER)).result()

    assert vendorer.calls == []
    assert builder.calls == []
    assert run.status is CheckRunStatus.COMPLETED
    assert run.conclusion is Conclusion.SUCCESS
    assert status.last.title == "Nothing to release"


def test_release_build_failure_offers_retry(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    vendorer = FakeVendorer()
    builder = FakeImageBuilder(fail_on="a/cmd")
    workflow = _workflow(
        immediate_executor,
        vcs=FakeVCS(TWO_MODULES, changes=["a/x.go", "b/y.go"]),
        status=status,
        vendorer=vendorer,
        builder=builder,
    )

    run = ReleaseStage(workflow).advance(_release_event()).result()

    # Both modules vendor first; the first failing build stops the rest.
    assert vendorer.calls == ["a", "b"]
    assert [call[0] for call in builder.calls] == ["a/cmd"]
    assert run.conclusion is Conclusion.FAILURE
    assert list(status.last.actions) == [RETRY_RELEASE_ACTION]
    assert RETRY_RELEASE_ACTION.identifier == "release_image_retry"
    assert RETRY_RELEASE_ACTION.label == "Retry release"
    assert RETRY_RELEASE_ACTION.description == "Retry build and push"


def test_release_vendor_failure_offers_retry(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    class FailingVendorer(FakeVendorer):
        def vendor(self, module_dir: Path) -> None:
            super().vendor(module_dir)
            raise VendorError(module_dir, "go: missing go.sum entry")

    status = FakeStatus()
    builder = FakeImageBuilder()
    workflow = _workflow(
        immediate_executor,
        vcs=FakeVCS(TWO_MODULES, changes=["a/x.go"]),
        status=status,
        vendorer=FailingVendorer(),
        builder=builder,
    )

    ReleaseStage(workflow).advance(_release_event()).result()

    assert builder.calls == []
    assert status.last.conclusion is Conclusion.FAILURE
    assert "vendor failed for module" in status.last.summary
    assert list(status.last.actions) == [RETRY_RELEASE_ACTION]


def test_release_clone_failure_offers_retry(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS({}, fail_clone=True), status=status)

    ReleaseStage(workflow).advance(_release_event(action="release_image_retry")).result()

    assert status.last.conclusion is Conclusion.FAILURE
    assert list(status.last.actions) == [RETRY_RELEASE_ACTION]


def test_release_nested_modules_fail_without_retry(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    files = {"go.mod": "module example.com/root\n", "svc/go.mod": "module example.com/svc\n"}
    workflow = _workflow(immediate_executor, vcs=FakeVCS(files, changes=["svc/x.go"]), status=status)

    ReleaseStage(workflow).advance(_release_event()).result()

    assert status.last.conclusion is Conclusion.FAILURE
    assert status.last.title == "Invalid repository layout"
    assert status.last.actions == ()


def test_release_honours_repository_registry_prefix(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    builder = FakeImageBuilder()
    files = dict(TWO_MODULES, **{".shipcheck.yml": "registry_prefix: monocrat\n"})
    workflow = _workflow(immediate_executor, vcs=FakeVCS(files, changes=["b/go.mod"]), builder=builder)

    ReleaseStage(workflow).advance(_release_event()).result()

    assert builder.calls == [("b/cmd", "monocrat-cmd", AFTER[:7])]


def test_release_ignores_unrelated_actions(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES))
    stage = ReleaseStage(workflow)

    assert stage.accepts(_release_event())
    assert stage.accepts(_release_event(action="release_image_retry"))
    assert not stage.accepts(_release_event(action="fix_lint"))


# ----------------------------------------------------------------------
# Deployment review


def test_deploy_approves_when_message_contains_keyword(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    vcs = FakeVCS(TWO_MODULES, message="Bump api, approve")
    workflow = _workflow(immediate_executor, vcs=vcs, status=status)

    run = DeploymentReviewStage(workflow).advance(_deploy_event()).result()

    assert status.created[0][1:] == ("Deploy to production", HEAD, CheckRunStatus.IN_PROGRESS)
    assert vcs.checkouts == [HEAD]
    assert status.reviews == [
        {"run_id": 555, "state": "approved", "environment": "production", "comment": "signed-off by shipcheck"}
    ]
    assert run.conclusion is Conclusion.SUCCESS


def test_deploy_rejects_without_keyword(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES, message="Bump api"), status=status)

    run = DeploymentReviewStage(workflow).advance(_deploy_event()).result()

    assert status.reviews[0]["state"] == "rejected"
    assert run.conclusion is Conclusion.FAILURE
    assert status.last.title == "Deployment rejected"


def test_deploy_malformed_callback_creates_no_check_run(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES), status=status)

    with pytest.raises(PayloadError):
        DeploymentReviewStage(workflow).advance(
            _deploy_event("https://api.github.com/repos/acme/mono/deployments/1")
        )

    assert status.created == []


# ----------------------------------------------------------------------
# Finalization


def test_failed_result_delivery_is_logged(immediate_executor, caplog: pytest.LogCaptureFixture) -> None:  # type: ignore[no-untyped-def]
    status = FakeStatus(fail_update=True)
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES), status=status)

    caplog.set_level(logging.ERROR, logger="shipcheck")
    run = LintStage(workflow).advance(_suite_event()).result()

    assert run.is_completed
    assert any("Failed to report Lint result" in message for message in caplog.messages)


def test_unexpected_errors_are_caught_at_the_task_boundary(immediate_executor) -> None:  # type: ignore[no-untyped-def]
    class ExplodingLinter(FakeLinter):
        def run(self, module_dir: Path) -> LintReport:
            raise KeyError("Pos")

    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES), status=status, linter=ExplodingLinter())

    run = LintStage(workflow).advance(_suite_event()).result()

    assert run.conclusion is Conclusion.FAILURE
    assert len(status.updates) == 1


def test_failures_are_logged_with_stage_and_run_id(immediate_executor, caplog: pytest.LogCaptureFixture) -> None:  # type: ignore[no-untyped-def]
    files = {"go.mod": "module example.com/root\n", "svc/go.mod": "module example.com/svc\n"}
    workflow = _workflow(immediate_executor, vcs=FakeVCS(files, changes=["svc/x.go"]))

    caplog.set_level(logging.ERROR, logger="shipcheck")
    ReleaseStage(workflow).advance(_release_event()).result()

    assert any(
        message.startswith("[Release application #101] Repository configuration problem")
        for message in caplog.messages
    )


def test_leaked_checkout_keeps_the_stage_result(
    immediate_executor, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture, tmp_path: Path
) -> None:  # type: ignore[no-untyped-def]
    @contextmanager
    def leaky_checkout(vcs, remote_url, commit_sha):  # type: ignore[no-untyped-def]
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "go.mod").write_text("module example.com/a\n", encoding="utf-8")
        yield tmp_path
        raise CleanupError("failed to delete temporary checkout: read-only")

    monkeypatch.setattr(workflow_module, "temporary_checkout", leaky_checkout)
    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS({}), status=status)

    caplog.set_level(logging.CRITICAL, logger="shipcheck")
    run = LintStage(workflow).advance(_suite_event()).result()

    assert run.conclusion is Conclusion.SUCCESS
    assert status.last.title == "Linters passed"
    assert any("Temporary checkout leaked" in message for message in caplog.messages)


def test_cleanup_failure_without_a_result_fails_the_stage(
    immediate_executor, monkeypatch: pytest.MonkeyPatch
) -> None:  # type: ignore[no-untyped-def]
    @contextmanager
    def broken_checkout(vcs, remote_url, commit_sha):  # type: ignore[no-untyped-def]
        raise CleanupError("failed to delete temporary checkout: busy")
        yield  # pragma: no cover

    monkeypatch.setattr(workflow_module, "temporary_checkout", broken_checkout)
    status = FakeStatus()
    workflow = _workflow(immediate_executor, vcs=FakeVCS(TWO_MODULES), status=status)

    run = LintStage(workflow).advance(_suite_event()).result()

    assert run.conclusion is Conclusion.FAILURE
    assert status.last.title == "Failed to run linters"
