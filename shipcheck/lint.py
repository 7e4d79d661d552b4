"""Linter collaborator backed by golangci-lint's JSON report."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Protocol, Sequence

from .errors import LintError
from .logging import get_logger
from .models import Annotation

logger = get_logger("lint")

# golangci-lint exits with this code when it found issues, which is not a failure to run.
_ISSUES_EXIT_CODE = 42

_ANNOTATION_LEVELS = {
    "warning": "warning",
    "info": "notice",
    "notice": "notice",
}


@dataclass(frozen=True)
class Position:
    filename: str
    line: int
    column: int = 0
    offset: int = 0


@dataclass(frozen=True)
class LintIssue:
    """A single finding reported by one of the linters."""

    from_linter: str
    text: str
    severity: str
    position: Position


@dataclass
class LintReport:
    issues: List[LintIssue] = field(default_factory=list)


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str = ""


class Linter(Protocol):
    def run(self, module_dir: Path) -> LintReport: ...


class GolangciLinter:
    """Runs ``golangci-lint`` inside a module directory."""

    def __init__(
        self,
        runner: Callable[..., RunResult] | None = None,
        *,
        executable: str = "golangci-lint",
        extra_args: Sequence[str] = (),
    ) -> None:
        self._runner = runner or self._default_runner
        self.executable = executable
        self.extra_args = list(extra_args)

    def run(self, module_dir: Path) -> LintReport:
        args = [
            self.executable,
            "run",
            "--out-format",
            "json",
            "--issues-exit-code",
            str(_ISSUES_EXIT_CODE),
            *self.extra_args,
        ]
        try:
            result = self._runner(args, cwd=Path(module_dir))
        except FileNotFoundError as exc:
            raise LintError(f"Unable to locate '{self.executable}' executable") from exc

        if result.returncode not in (0, _ISSUES_EXIT_CODE):
            detail = (result.stderr or result.stdout).strip() or f"exit status {result.returncode}"
            if "unknown flag: --out-format" in detail:
                # v2 replaced --out-format with --output.json.path.
                raise LintError(
                    f"{self.executable} in {module_dir} does not accept --out-format; golangci-lint v1.x is required"
                )
            raise LintError(f"{self.executable} failed in {module_dir}: {detail}")

        report = parse_report(result.stdout)
        logger.debug("Linted %s: %d issues", module_dir, len(report.issues))
        return report

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path) -> RunResult:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=False,
            text=True,
            capture_output=True,
        )
        return RunResult(completed.returncode, completed.stdout, completed.stderr)


def parse_report(output: str) -> LintReport:
    """Parse golangci-lint ``--out-format json`` output."""
    if not output.strip():
        return LintReport()
    try:
        payload = json.loads(output)
    except json.JSONDecodeError as exc:
        raise LintError(f"linter returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise LintError("linter report must be a JSON object")

    issues: List[LintIssue] = []
    for raw in payload.get("Issues") or []:
        if not isinstance(raw, dict):
            continue
        pos = raw.get("Pos") if isinstance(raw.get("Pos"), dict) else {}
        issues.append(
            LintIssue(
                from_linter=str(raw.get("FromLinter") or ""),
                text=str(raw.get("Text") or ""),
                severity=str(raw.get("Severity") or ""),
                position=Position(
                    filename=str(pos.get("Filename") or ""),
                    line=_as_int(pos.get("Line")),
                    column=_as_int(pos.get("Column")),
                    offset=_as_int(pos.get("Offset")),
                ),
            )
        )
    return LintReport(issues=issues)


def annotations_for(issues: Iterable[LintIssue], *, module_dir: Path, repo_root: Path) -> List[Annotation]:
    """One annotation per issue that carries text; empty findings are dropped."""
    annotations: List[Annotation] = []
    for issue in issues:
        if not issue.text:
            continue
        line = max(issue.position.line, 1)
        column = issue.position.column or None
        annotations.append(
            Annotation(
                path=_repository_path(issue.position.filename, module_dir, repo_root),
                start_line=line,
                end_line=line,
                level=_ANNOTATION_LEVELS.get(issue.severity.lower(), "failure"),
                title=issue.text,
                message=f"{issue.text} ({issue.from_linter})" if issue.from_linter else issue.text,
                start_column=column,
                end_column=column,
            )
        )
    return annotations


def _repository_path(filename: str, module_dir: Path, repo_root: Path) -> str:
    # Linter filenames are relative to the module; annotations need repository paths.
    candidate = Path(filename)
    if not candidate.is_absolute():
        candidate = module_dir / candidate
    try:
        return candidate.relative_to(repo_root).as_posix()
    except ValueError:
        return filename


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return 0
    return 0


__all__ = [
    "GolangciLinter",
    "LintIssue",
    "LintReport",
    "Linter",
    "Position",
    "RunResult",
    "annotations_for",
    "parse_report",
]
