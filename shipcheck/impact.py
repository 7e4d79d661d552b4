"""Change-impact resolution: which applications a commit range must rebuild."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Set

from .logging import get_logger
from .models import Application, BuildPlan, ChangeEntry, Module
from .repo_index import RepositoryIndex

logger = get_logger("impact")


def touched_modules(index: RepositoryIndex, changes: Iterable[ChangeEntry]) -> Dict[Module, List[ChangeEntry]]:
    """Bucket changes by the module whose directory contains them."""
    buckets: Dict[Module, List[ChangeEntry]] = {}
    for change in changes:
        path = change.path if change.path.is_absolute() else index.root / change.path
        module = index.module_for_path(path)
        if module is None:
            logger.debug("Change %s is outside every module", path)
            continue
        buckets.setdefault(module, []).append(change)
    return buckets


def resolve(index: RepositoryIndex, changes: Iterable[ChangeEntry]) -> BuildPlan:
    """Return the applications to rebuild and the modules to vendor.

    Every application owned by a module with at least one changed path is
    rebuilt; applications in untouched modules are left alone even when they
    share a parent directory. ``vendor_modules`` is derived from the rebuilt
    applications, so a touched module that owns no application is not vendored.
    """
    buckets = touched_modules(index, changes)

    rebuild: Set[Application] = set()
    for module in buckets:
        rebuild.update(index.applications_of(module))

    vendor: Set[Module] = set()
    for app in rebuild:
        owner = index.owner_of(app)
        if owner is not None:
            vendor.add(owner)

    plan = BuildPlan(rebuild_apps=frozenset(rebuild), vendor_modules=frozenset(vendor))
    logger.info(
        "Resolved plan: %d applications to rebuild, %d modules to vendor",
        len(plan.rebuild_apps),
        len(plan.vendor_modules),
    )
    return plan


def describe_plan(plan: BuildPlan, root: Path) -> List[str]:
    """Human-readable lines for a plan, relative to the repository root."""
    lines: List[str] = []
    for module in sorted(plan.vendor_modules):
        lines.append(f"vendor  {_relative(module.directory, root)}")
    for app in sorted(plan.rebuild_apps):
        lines.append(f"rebuild {_relative(app.directory, root)}")
    return lines


def _relative(path: Path, root: Path) -> str:
    try:
        relative = path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()
    return relative if relative != "." else "."


__all__ = ["describe_plan", "resolve", "touched_modules"]
