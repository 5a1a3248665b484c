"""Tests for branch filters and job selection."""

from __future__ import annotations

from pathlib import Path

import pytest

from graphci.config import load_pipeline
from graphci.filters import branch_matches, pattern_matches, select_jobs
from graphci.model import BranchFilter, Workflow, WorkflowJob


def test_fixture_runs_nothing_on_main(fixture_config: Path) -> None:
    wf = load_pipeline(fixture_config).workflows["build_and_test"]

    selection = select_jobs(wf, "main")

    assert not any(s.selected for s in selection.values())
    assert selection["setup-build-environment"].reason == "branch 'main' not in ['non-existant-branch']"
    assert selection["test-build-1"].reason == "requires job(s) not run: ['setup-build-environment']"
    assert selection["create-beta-package"].reason == (
        "requires job(s) not run: ['test-build-1', 'test-build-2']"
    )


def test_fixture_runs_everything_on_listed_branch(fixture_config: Path) -> None:
    wf = load_pipeline(fixture_config).workflows["build_and_test"]

    selection = select_jobs(wf, "non-existant-branch")

    assert all(s.selected for s in selection.values())
    assert list(selection) == [
        "setup-build-environment",
        "test-build-1",
        "test-build-2",
        "create-beta-package",
    ]


@pytest.mark.parametrize(
    ("pattern", "branch", "expected"),
    [
        ("main", "main", True),
        ("main", "main-2", False),
        ("/release-.*/", "release-1.2", True),
        ("/release-.*/", "hotfix/release-1.2", False),
        ("/feature/.+/", "feature/login", True),
    ],
)
def test_pattern_matches(pattern: str, branch: str, expected: bool) -> None:
    assert pattern_matches(pattern, branch) is expected


def test_ignore_wins_over_only() -> None:
    flt = BranchFilter(only=("/.*/",), ignore=("main",))

    assert branch_matches(flt, "develop")
    assert not branch_matches(flt, "main")


def test_ignore_only_filter() -> None:
    flt = BranchFilter(ignore=("/wip-.*/",))

    assert branch_matches(flt, "main")
    assert not branch_matches(flt, "wip-parser")


def test_unknown_branch_only_runs_unfiltered_jobs() -> None:
    wf = Workflow(
        name="wf",
        jobs=[
            WorkflowJob(name="lint", job="lint"),
            WorkflowJob(name="deploy", job="deploy", filters=BranchFilter(only=("main",))),
        ],
    )

    selection = select_jobs(wf, None)

    assert selection["lint"].selected
    assert not selection["deploy"].selected


def test_ignored_branch_reason() -> None:
    wf = Workflow(
        name="wf",
        jobs=[WorkflowJob(name="docs", job="docs", filters=BranchFilter(ignore=("gh-pages",)))],
    )

    assert select_jobs(wf, "gh-pages")["docs"].reason == "branch 'gh-pages' ignored by ['gh-pages']"
