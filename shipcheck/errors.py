"""Exception hierarchy shared across shipcheck components."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class ShipcheckError(RuntimeError):
    """Base class for every error raised by shipcheck."""


class ConfigError(ShipcheckError):
    """Raised when required configuration is missing or invalid."""


class PayloadError(ShipcheckError):
    """Raised when a webhook payload lacks the fields a stage needs."""


class TopologyError(ShipcheckError):
    """Raised when a repository layout breaks the module invariants.

    This is a configuration problem of the repository itself, so stages report
    it distinctly and never offer a retry for it.
    """

    def __init__(self, message: str, conflicts: Sequence[tuple[Path, Path]] = ()) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)


class CollaboratorError(ShipcheckError):
    """Raised when an external tool or service fails while doing stage work."""


class VersionControlError(CollaboratorError):
    """Raised when cloning, checking out or diffing a repository fails."""


class IndexingError(CollaboratorError):
    """Raised when the repository tree cannot be walked."""


class LintError(CollaboratorError):
    """Raised when the linter cannot be invoked (as opposed to reporting findings)."""


class VendorError(CollaboratorError):
    """Raised when dependency vendoring fails for a module."""

    def __init__(self, module: Path, detail: str) -> None:
        super().__init__(f"vendor failed for module {module}: {detail}")
        self.module = module


class BuildError(CollaboratorError):
    """Raised when building or pushing an application image fails."""

    def __init__(self, application: Path, detail: str) -> None:
        super().__init__(f"build and push failed for application {application}: {detail}")
        self.application = application


class StatusServiceError(ShipcheckError):
    """Raised when the check-run API rejects a request."""

    def __init__(self, message: str, errors: Sequence[object] = (), status: int | None = None) -> None:
        self.message = message
        self.errors = list(errors)
        self.status = status
        super().__init__(self._render())

    def _render(self) -> str:
        prefix = f"[{self.status}] " if self.status is not None else ""
        if not self.errors:
            return f"{prefix}{self.message}"
        details = "; ".join(str(error) for error in self.errors)
        return f"{prefix}{self.message}: {details}"


class CleanupError(ShipcheckError):
    """Raised when a temporary working directory cannot be removed."""


class InvalidTransition(ShipcheckError):
    """Raised when a check run is moved through an illegal state change."""


__all__ = [
    "BuildError",
    "CleanupError",
    "CollaboratorError",
    "ConfigError",
    "IndexingError",
    "InvalidTransition",
    "LintError",
    "PayloadError",
    "ShipcheckError",
    "StatusServiceError",
    "TopologyError",
    "VendorError",
    "VersionControlError",
]
