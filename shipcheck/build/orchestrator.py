"""Execution of a resolved build plan."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from ..logging import get_logger
from ..models import Application, BuildPlan, RegistryCredentials
from .image import ImageBuilder
from .vendor import Vendorer

logger = get_logger("build")


@dataclass
class BuildOutcome:
    """Images pushed by a successful execution, in build order."""

    images: List[str] = field(default_factory=list)
    vendored: List[Path] = field(default_factory=list)


def application_coordinates(repo_root: Path, application: Application) -> Tuple[str, str]:
    """Return ``(display_name, relative_dir)`` for an application.

    The display name is the application directory's last segment with
    underscores turned into hyphens, which keeps it valid as a registry name.
    """
    name = application.directory.name.replace("_", "-")
    relative = application.directory.relative_to(repo_root).as_posix()
    return name, relative


class BuildOrchestrator:
    """Vendors affected modules, then builds and pushes affected applications.

    Execution is fail-fast: the first vendor failure stops before any build,
    and the first build failure stops the remaining builds. Errors propagate
    as :class:`~shipcheck.errors.VendorError` or
    :class:`~shipcheck.errors.BuildError`.
    """

    def __init__(
        self,
        vendorer: Vendorer,
        image_builder: ImageBuilder,
        *,
        registry_prefix: str = "shipcheck",
    ) -> None:
        self.vendorer = vendorer
        self.image_builder = image_builder
        self.registry_prefix = registry_prefix

    def execute(
        self,
        plan: BuildPlan,
        repo_root: Path,
        credentials: RegistryCredentials,
        version: str,
    ) -> BuildOutcome:
        outcome = BuildOutcome()
        if plan.is_empty:
            logger.info("Build plan is empty; nothing to vendor or build")
            return outcome

        for module in sorted(plan.vendor_modules):
            self.vendorer.vendor(module.directory)
            outcome.vendored.append(module.directory)

        for app in sorted(plan.rebuild_apps):
            name, relative_dir = application_coordinates(repo_root, app)
            logger.info("Build and push %s (%s)", name, relative_dir)
            image = self.image_builder.build_and_push(
                repo_root,
                relative_dir,
                f"{self.registry_prefix}-{name}",
                version,
                credentials,
            )
            outcome.images.append(image)

        return outcome


__all__ = ["BuildOrchestrator", "BuildOutcome", "application_coordinates"]
