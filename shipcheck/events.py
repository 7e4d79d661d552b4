"""Typed records for the webhook events shipcheck reacts to.

Only the fields the stages consume are extracted, so the rest of the code
never touches the raw GitHub payload shape.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .errors import PayloadError
from .models import Installation

_RUN_ID_PATTERN = re.compile(r"runs/([^/]*)")


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str
    clone_url: str


@dataclass(frozen=True)
class SuiteEvent:
    """``check_suite``: a commit was pushed and its checks were requested."""

    action: str
    installation_id: int
    repository: Repository
    head_sha: str
    before_sha: Optional[str] = None
    after_sha: Optional[str] = None

    @property
    def installation(self) -> Installation:
        return _installation(self.repository, self.installation_id)


@dataclass(frozen=True)
class RunEvent:
    """``check_run``: a check run changed or a user pressed one of its actions."""

    action: str
    installation_id: int
    repository: Repository
    head_sha: str
    before_sha: Optional[str] = None
    after_sha: Optional[str] = None
    requested_action: Optional[str] = None

    @property
    def installation(self) -> Installation:
        return _installation(self.repository, self.installation_id)


@dataclass(frozen=True)
class DeploymentProtectionEvent:
    """``deployment_protection_rule``: a deployment waits for our approval."""

    action: str
    installation_id: int
    repository: Repository
    environment: str
    deployment_sha: str
    callback_url: str

    @property
    def installation(self) -> Installation:
        return _installation(self.repository, self.installation_id)

    @property
    def workflow_run_id(self) -> int:
        return extract_run_id(self.callback_url)


Event = Union[SuiteEvent, RunEvent, DeploymentProtectionEvent]


def parse_event(event_type: str, payload: Mapping[str, Any]) -> Optional[Event]:
    """Build the typed event for ``event_type``; ``None`` when unsupported."""
    if not isinstance(payload, Mapping):
        raise PayloadError("webhook payload must be a JSON object")

    if event_type == "check_suite":
        suite = _mapping(payload, "check_suite")
        return SuiteEvent(
            action=_str(payload, "action"),
            installation_id=_installation_id(payload),
            repository=_repository(payload),
            head_sha=_str(suite, "head_sha"),
            before_sha=_optional_str(suite, "before"),
            after_sha=_optional_str(suite, "after"),
        )

    if event_type == "check_run":
        run = _mapping(payload, "check_run")
        suite = run.get("check_suite") if isinstance(run.get("check_suite"), Mapping) else {}
        requested = payload.get("requested_action")
        return RunEvent(
            action=_str(payload, "action"),
            installation_id=_installation_id(payload),
            repository=_repository(payload),
            head_sha=_str(run, "head_sha"),
            before_sha=_optional_str(suite, "before"),
            after_sha=_optional_str(suite, "after"),
            requested_action=(
                _optional_str(requested, "identifier") if isinstance(requested, Mapping) else None
            ),
        )

    if event_type == "deployment_protection_rule":
        deployment = _mapping(payload, "deployment")
        return DeploymentProtectionEvent(
            action=_str(payload, "action"),
            installation_id=_installation_id(payload),
            repository=_repository(payload),
            environment=_optional_str(payload, "environment") or _str(deployment, "environment"),
            deployment_sha=_str(deployment, "sha"),
            callback_url=_str(payload, "deployment_callback_url"),
        )

    return None


def extract_run_id(callback_url: str) -> int:
    """Return the workflow run id from a deployment callback URL.

    ``.../actions/runs/4810948216/deployment_protection_rule`` yields
    ``4810948216``.
    """
    segments = _RUN_ID_PATTERN.findall(callback_url)
    if not segments:
        raise PayloadError(f"invalid deployment callback URL: {callback_url!r}")
    segment = segments[-1]
    if not segment.isdigit():
        raise PayloadError(f"invalid workflow run id {segment!r} in {callback_url!r}")
    return int(segment)


def _installation(repository: Repository, installation_id: int) -> Installation:
    return Installation(owner=repository.owner, repository=repository.name, installation_id=installation_id)


def _repository(payload: Mapping[str, Any]) -> Repository:
    repo = _mapping(payload, "repository")
    owner = _mapping(repo, "owner")
    return Repository(
        owner=_str(owner, "login"),
        name=_str(repo, "name"),
        clone_url=_str(repo, "clone_url"),
    )


def _installation_id(payload: Mapping[str, Any]) -> int:
    installation = _mapping(payload, "installation")
    value = installation.get("id")
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadError("payload field 'installation.id' must be an integer")
    return value


def _mapping(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key)
    if not isinstance(value, Mapping):
        raise PayloadError(f"payload field '{key}' must be an object")
    return value


def _str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise PayloadError(f"payload field '{key}' must be a non-empty string")
    return value


def _optional_str(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) and value else None


__all__ = [
    "DeploymentProtectionEvent",
    "Event",
    "Repository",
    "RunEvent",
    "SuiteEvent",
    "extract_run_id",
    "parse_event",
]
