"""Repository walking and module/application discovery."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from .errors import IndexingError, TopologyError
from .logging import get_logger
from .models import Application, Module
from .paths import PrefixLookup, nested_pairs

_EXCLUDED_DIRS = frozenset({".git", ".github"})

logger = get_logger("repo_index")


@dataclass
class RepositoryIndex:
    """Modules and applications discovered in one checked-out repository."""

    root: Path
    modules: FrozenSet[Module]
    applications: FrozenSet[Application]
    _owners: Dict[Application, Module] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        lookup: PrefixLookup[Module] = PrefixLookup(
            (module.directory, module) for module in self.modules
        )
        self._lookup = lookup
        self._owners = {}
        self._members: Dict[Module, List[Application]] = {}
        for app in sorted(self.applications):
            owner = lookup.find(app.directory)
            if owner is not None:
                self._owners[app] = owner
                self._members.setdefault(owner, []).append(app)

    def owner_of(self, application: Application) -> Optional[Module]:
        """Return the module whose directory is the nearest ancestor of the app."""
        return self._owners.get(application)

    def module_for_path(self, path: Path) -> Optional[Module]:
        """Return the module whose directory contains ``path``."""
        return self._lookup.find(path)

    def applications_of(self, module: Module) -> List[Application]:
        return list(self._members.get(module, ()))

    @property
    def orphans(self) -> List[Application]:
        """Applications outside every module; never part of a build plan."""
        return sorted(app for app in self.applications if app not in self._owners)


class RepositoryIndexer:
    """Walks a repository tree to find manifest and entry-point files."""

    def __init__(
        self,
        *,
        manifest_name: str = "go.mod",
        entrypoint_name: str = "main.go",
        exclude_dirs: Iterable[str] = (),
    ) -> None:
        self.manifest_name = manifest_name
        self.entrypoint_name = entrypoint_name
        self.exclude_dirs = _EXCLUDED_DIRS | frozenset(exclude_dirs)

    def index(self, root: str | Path) -> RepositoryIndex:
        """Return the modules and applications under ``root``.

        Any traversal error aborts the whole index; there is no partial result.
        """
        root_path = Path(root).expanduser()
        if not root_path.exists():
            raise IndexingError(f"Repository path not found: {root}")
        if not root_path.is_dir():
            raise IndexingError(f"Repository path is not a directory: {root}")
        root_path = root_path.resolve()

        modules: set[Module] = set()
        applications: set[Application] = set()
        for directory, filenames in self._walk(root_path):
            if self.manifest_name in filenames:
                modules.add(Module(directory))
            if self.entrypoint_name in filenames:
                applications.add(Application(directory))

        conflicts = nested_pairs(module.directory for module in modules)
        if conflicts:
            described = ", ".join(f"{inner} inside {outer}" for outer, inner in conflicts)
            raise TopologyError(f"nested modules are not supported: {described}", conflicts)

        index = RepositoryIndex(
            root=root_path,
            modules=frozenset(modules),
            applications=frozenset(applications),
        )
        logger.debug(
            "Indexed %s: %d modules, %d applications",
            root_path,
            len(index.modules),
            len(index.applications),
        )
        for orphan in index.orphans:
            logger.warning("Application %s has no owning module; it will never be rebuilt", orphan.directory)
        return index

    def _walk(self, root: Path) -> Iterable[tuple[Path, Sequence[str]]]:
        def _raise(error: OSError) -> None:
            raise IndexingError(f"cannot read {error.filename}: {error.strerror}") from error

        for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
            dirnames[:] = [name for name in dirnames if name not in self.exclude_dirs]
            yield Path(dirpath), filenames


__all__ = ["RepositoryIndex", "RepositoryIndexer"]
