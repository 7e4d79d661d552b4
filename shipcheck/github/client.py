"""Check-run and deployment-review calls against the GitHub REST API."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..errors import StatusServiceError
from ..logging import get_logger
from ..models import Annotation, CheckRunAction, CheckRunStatus, CheckRunUpdate, Installation
from .http import ApiRequest, ApiResponse, Transport, send, urllib_transport

logger = get_logger("github.client")

# GitHub accepts at most 50 annotations per request; later batches are appended.
MAX_ANNOTATIONS_PER_REQUEST = 50
# Check-run output text fields are capped at 65535 characters.
_MAX_TEXT = 65535

APPROVED = "approved"
REJECTED = "rejected"


class StatusService(Protocol):
    """Narrow interface the workflow uses to publish check-run state."""

    def create_check_run(
        self,
        installation: Installation,
        name: str,
        head_sha: str,
        status: Optional[CheckRunStatus] = None,
    ) -> int: ...

    def update_check_run(self, installation: Installation, run_id: int, update: CheckRunUpdate) -> None: ...

    def review_deployment(
        self,
        installation: Installation,
        workflow_run_id: int,
        *,
        state: str,
        environment: str,
        comment: str,
    ) -> None: ...


class GitHubClient:
    """StatusService implementation authenticated as an app installation."""

    def __init__(
        self,
        token_provider: Callable[[int], str],
        *,
        api_url: str = "https://api.github.com",
        transport: Transport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self._transport = transport or urllib_transport

    def create_check_run(
        self,
        installation: Installation,
        name: str,
        head_sha: str,
        status: Optional[CheckRunStatus] = None,
    ) -> int:
        payload: Dict[str, Any] = {"name": name, "head_sha": head_sha}
        if status is not None:
            payload["status"] = status.value
        response = self._call(installation, "POST", self._repo_url(installation, "check-runs"), payload)
        body = response.json()
        run_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(run_id, int):
            raise StatusServiceError("check run response did not include an id", status=response.status)
        logger.info("Created check run '%s' (%d) for %s", name, run_id, head_sha)
        return run_id

    def update_check_run(self, installation: Installation, run_id: int, update: CheckRunUpdate) -> None:
        url = self._repo_url(installation, f"check-runs/{run_id}")
        batches = _batches(update.annotations, MAX_ANNOTATIONS_PER_REQUEST)
        self._call(installation, "PATCH", url, check_run_payload(update, batches[0]))
        for batch in batches[1:]:
            # Output must be repeated; annotations accumulate across updates.
            self._call(
                installation,
                "PATCH",
                url,
                {"name": update.name, "output": _output(update, batch)},
            )

    def review_deployment(
        self,
        installation: Installation,
        workflow_run_id: int,
        *,
        state: str,
        environment: str,
        comment: str,
    ) -> None:
        logger.info(
            "Reviewing deployment for environment %s and workflow run %d: %s",
            environment,
            workflow_run_id,
            state,
        )
        self._call(
            installation,
            "POST",
            self._repo_url(installation, f"actions/runs/{workflow_run_id}/deployment_protection_rule"),
            {"environment_name": environment, "state": state, "comment": comment},
        )

    # ------------------------------------------------------------------
    # Internals

    def _repo_url(self, installation: Installation, suffix: str) -> str:
        return f"{self.api_url}/repos/{installation.owner}/{installation.repository}/{suffix}"

    def _call(self, installation: Installation, method: str, url: str, payload: Dict[str, Any]) -> ApiResponse:
        token = self._token_provider(installation.installation_id)
        return send(
            self._transport,
            ApiRequest(
                method=method,
                url=url,
                headers={"Authorization": f"Bearer {token}"},
                payload=payload,
            ),
        )


def check_run_payload(update: CheckRunUpdate, annotations: Sequence[Annotation] = ()) -> Dict[str, Any]:
    """Request body for a check-run PATCH."""
    payload: Dict[str, Any] = {"name": update.name, "status": update.status.value}
    if update.conclusion is not None:
        payload["conclusion"] = update.conclusion.value
    if update.title or update.summary or annotations:
        payload["output"] = _output(update, annotations)
    if update.actions:
        payload["actions"] = [_action(action) for action in update.actions]
    return payload


def _output(update: CheckRunUpdate, annotations: Sequence[Annotation]) -> Dict[str, Any]:
    title = update.title or update.name
    output: Dict[str, Any] = {
        "title": _truncate(title),
        "summary": _truncate(update.summary or title),
    }
    if annotations:
        output["annotations"] = [_annotation(annotation) for annotation in annotations]
    return output


def _action(action: CheckRunAction) -> Dict[str, str]:
    return {
        "label": action.label,
        "description": action.description,
        "identifier": action.identifier,
    }


def _annotation(annotation: Annotation) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "path": annotation.path,
        "start_line": annotation.start_line,
        "end_line": annotation.end_line,
        "annotation_level": annotation.level,
        "message": annotation.message,
    }
    if annotation.title:
        payload["title"] = annotation.title
    # Columns are only accepted for single-line annotations.
    if annotation.start_line == annotation.end_line and annotation.start_column:
        payload["start_column"] = annotation.start_column
        payload["end_column"] = annotation.end_column or annotation.start_column
    return payload


def _batches(items: Sequence[Annotation], size: int) -> List[Sequence[Annotation]]:
    if not items:
        return [()]
    return [items[index : index + size] for index in range(0, len(items), size)]


def _truncate(text: str) -> str:
    if len(text) <= _MAX_TEXT:
        return text
    return text[: _MAX_TEXT - 1] + "…"


__all__ = [
    "APPROVED",
    "GitHubClient",
    "MAX_ANNOTATIONS_PER_REQUEST",
    "REJECTED",
    "StatusService",
    "check_run_payload",
]
