"""CLI entrypoints for shipcheck commands."""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path

from .config import ServiceConfig, load_repository_config
from .errors import ConfigError, ShipcheckError
from .git import GitCLI
from .impact import describe_plan, resolve
from .lint import GolangciLinter, annotations_for
from .logging import configure_logging
from .repo_index import RepositoryIndexer
from .service import run_service


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Repository root or a directory inside it (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipcheck",
        description="Lint, release and gate deployments of multi-module Go repositories.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the webhook service.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="0.0.0.0", help="Interface to bind.")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (defaults to $PORT or 8080).",
    )

    plan_parser = subparsers.add_parser(
        "plan",
        help="Show which applications a commit range would rebuild.",
    )
    _add_verbose_option(plan_parser, suppress_default=True)
    _add_path_argument(plan_parser)
    plan_parser.add_argument(
        "--before",
        default=None,
        help="Start of the commit range (omit to treat every tracked file as new).",
    )
    plan_parser.add_argument(
        "--after",
        default="HEAD",
        help="End of the commit range.",
    )
    plan_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the plan as JSON.",
    )

    lint_parser = subparsers.add_parser(
        "lint",
        help="Run the linters over every module in a repository.",
    )
    _add_verbose_option(lint_parser, suppress_default=True)
    _add_path_argument(lint_parser)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for shipcheck commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    if args.command == "serve":
        try:
            config = ServiceConfig.from_env()
        except ConfigError as exc:
            parser.exit(1, f"{exc}\n")
        if args.port is not None:
            config = dataclasses.replace(config, port=args.port)
        run_service(config, host=args.host)
    elif args.command == "plan":
        try:
            _plan(Path(args.path), args.before, args.after, as_json=bool(args.json))
        except ShipcheckError as exc:
            parser.exit(1, f"shipcheck plan failed: {exc}\nRun with --verbose for more details.\n")
    elif args.command == "lint":
        try:
            issues = _lint(Path(args.path))
        except ShipcheckError as exc:
            parser.exit(1, f"shipcheck lint failed: {exc}\nRun with --verbose for more details.\n")
        if issues:
            parser.exit(1, f"{issues} issue(s) found\n")
        print("No issues found")
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _indexer(root: Path) -> RepositoryIndexer:
    config = load_repository_config(root)
    return RepositoryIndexer(
        manifest_name=config.manifest,
        entrypoint_name=config.entrypoint,
        exclude_dirs=config.exclude_dirs,
    )


def _plan(root: Path, before: str | None, after: str, *, as_json: bool) -> None:
    index = _indexer(root).index(root)
    changes = GitCLI().changed_paths(index.root, before, after)
    plan = resolve(index, changes)
    lines = describe_plan(plan, index.root)
    if as_json:
        print(
            json.dumps(
                {
                    "vendor": [_relative(module.directory, index.root) for module in sorted(plan.vendor_modules)],
                    "rebuild": [_relative(app.directory, index.root) for app in sorted(plan.rebuild_apps)],
                },
                indent=2,
            )
        )
    elif lines:
        print("\n".join(lines))
    else:
        print("Nothing to rebuild")


def _relative(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()


def _lint(root: Path) -> int:
    index = _indexer(root).index(root)
    linter = GolangciLinter()
    count = 0
    for module in sorted(index.modules):
        report = linter.run(module.directory)
        count += len(report.issues)
        for annotation in annotations_for(report.issues, module_dir=module.directory, repo_root=index.root):
            print(f"{annotation.path}:{annotation.start_line}: {annotation.message}")
    return count


if __name__ == "__main__":
    main(sys.argv[1:])
