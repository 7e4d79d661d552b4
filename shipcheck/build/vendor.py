"""Dependency vendoring for Go modules."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Iterable, Protocol

from ..errors import VendorError
from ..logging import get_logger

logger = get_logger("build.vendor")


class Vendorer(Protocol):
    def vendor(self, module_dir: Path) -> None: ...


class GoModVendorer:
    """Runs ``go mod vendor`` so private dependencies are available to image builds."""

    def __init__(self, runner: Callable[..., str] | None = None, executable: str = "go") -> None:
        self._runner = runner or self._default_runner
        self.executable = executable

    def vendor(self, module_dir: Path) -> None:
        logger.info("Vendoring dependencies for %s", module_dir)
        try:
            self._runner([self.executable, "mod", "vendor"], cwd=Path(module_dir))
        except FileNotFoundError as exc:
            raise VendorError(Path(module_dir), f"unable to locate '{self.executable}'") from exc
        except subprocess.CalledProcessError as exc:
            output = (exc.stdout or "").strip() or f"exit status {exc.returncode}"
            raise VendorError(Path(module_dir), output) from exc

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=True,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        return completed.stdout


__all__ = ["GoModVendorer", "Vendorer"]
