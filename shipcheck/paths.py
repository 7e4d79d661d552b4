"""Directory-boundary path helpers.

Ownership and impact tests compare whole path segments, so ``/repo/foo`` never
claims anything under ``/repo/foo2``.
"""

from __future__ import annotations

from bisect import bisect_right
from pathlib import Path
from typing import Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")


def directory_key(path: Path) -> str:
    """Return the separator-terminated POSIX form of a directory."""
    text = path.as_posix()
    return text if text.endswith("/") else f"{text}/"


def is_within(path: Path, directory: Path) -> bool:
    """True when ``path`` equals ``directory`` or lies anywhere below it."""
    return directory_key(path).startswith(directory_key(directory))


def is_strictly_within(path: Path, directory: Path) -> bool:
    return path != directory and is_within(path, directory)


class PrefixLookup(Generic[T]):
    """Maps a path to the value registered for its enclosing directory.

    Registered directories must not nest. Under that rule the only directory
    that can contain a path is the greatest key sorting at or before it, so a
    lookup is a single bisection.
    """

    def __init__(self, entries: Iterable[Tuple[Path, T]]) -> None:
        pairs = sorted((directory_key(directory), value) for directory, value in entries)
        self._keys: List[str] = [key for key, _ in pairs]
        self._values: List[T] = [value for _, value in pairs]

    def __len__(self) -> int:
        return len(self._keys)

    def find(self, path: Path) -> Optional[T]:
        """Return the value of the directory enclosing ``path`` (or equal to it)."""
        key = directory_key(path)
        index = bisect_right(self._keys, key) - 1
        if index < 0:
            return None
        if key.startswith(self._keys[index]):
            return self._values[index]
        return None


def nested_pairs(directories: Iterable[Path]) -> List[Tuple[Path, Path]]:
    """Return ``(outer, inner)`` pairs where one directory contains another."""
    ordered = sorted(directories, key=directory_key)
    conflicts: List[Tuple[Path, Path]] = []
    open_dirs: Dict[str, Path] = {}
    stack: List[str] = []
    for directory in ordered:
        key = directory_key(directory)
        while stack and not key.startswith(stack[-1]):
            stack.pop()
        for outer in stack:
            conflicts.append((open_dirs[outer], directory))
        stack.append(key)
        open_dirs[key] = directory
    return conflicts


__all__ = ["PrefixLookup", "directory_key", "is_strictly_within", "is_within", "nested_pairs"]
