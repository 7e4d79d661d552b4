"""Tests for module and application discovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipcheck.errors import IndexingError, TopologyError
from shipcheck.models import Application, Module
from shipcheck.repo_index import RepositoryIndexer
from tests._fixtures.repo_builder import RepoBuilder


def test_index_discovers_modules_and_applications(repo_builder: RepoBuilder) -> None:
    foo = repo_builder.module("foo")
    foo_app = repo_builder.app("foo/cmd/server")
    bar = repo_builder.module("bar")
    bar_app = repo_builder.app("bar")
    repo_builder.write({"README.md": "# demo\n"})

    index = repo_builder.index()

    assert index.root == repo_builder.path()
    assert index.modules == {Module(foo), Module(bar)}
    assert index.applications == {Application(foo_app), Application(bar_app)}
    assert index.owner_of(Application(foo_app)) == Module(foo)
    # An entry point next to its manifest is owned by that module.
    assert index.owner_of(Application(bar_app)) == Module(bar)
    assert index.applications_of(Module(foo)) == [Application(foo_app)]


def test_index_ownership_respects_segment_boundaries(repo_builder: RepoBuilder) -> None:
    foo = repo_builder.module("foo")
    foo2_app = repo_builder.app("foo2/cmd")

    index = repo_builder.index()

    assert index.owner_of(Application(foo2_app)) is None
    assert index.applications_of(Module(foo)) == []
    assert index.orphans == [Application(foo2_app)]


def test_index_skips_excluded_directories(repo_builder: RepoBuilder) -> None:
    repo_builder.module("svc")
    repo_builder.write(
        {
            ".git/hooks/go.mod": "module hooks\n",
            ".github/tools/main.go": "package main\n",
            "vendor/example.com/dep/go.mod": "module dep\n",
        }
    )

    default_index = repo_builder.index()
    assert len(default_index.modules) == 2
    assert all(".git" not in module.directory.parts for module in default_index.modules)
    assert default_index.applications == frozenset()

    indexer = RepositoryIndexer(exclude_dirs=["vendor"])
    index = indexer.index(repo_builder.path())
    assert {module.name for module in index.modules} == {"svc"}


def test_index_rejects_nested_modules(repo_builder: RepoBuilder) -> None:
    outer = repo_builder.module("platform")
    inner = repo_builder.module("platform/plugins/auth")

    with pytest.raises(TopologyError) as excinfo:
        repo_builder.index()

    assert excinfo.value.conflicts == [(outer, inner)]
    assert "nested modules" in str(excinfo.value)


def test_index_root_module_nests_everything(repo_builder: RepoBuilder) -> None:
    repo_builder.module(".")
    repo_builder.module("tools")

    with pytest.raises(TopologyError):
        repo_builder.index()


def test_index_missing_root_raises(tmp_path: Path) -> None:
    with pytest.raises(IndexingError):
        RepositoryIndexer().index(tmp_path / "missing")


def test_index_root_must_be_directory(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(IndexingError):
        RepositoryIndexer().index(target)


def test_index_uses_custom_file_names(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"svc/Cargo.toml": "[package]\n", "svc/src/main.rs": "fn main() {}\n"})

    index = RepositoryIndexer(manifest_name="Cargo.toml", entrypoint_name="main.rs").index(
        repo_builder.path()
    )

    assert [module.name for module in index.modules] == ["svc"]
    assert [app.name for app in index.applications] == ["src"]
    app = next(iter(index.applications))
    assert index.owner_of(app) == next(iter(index.modules))
