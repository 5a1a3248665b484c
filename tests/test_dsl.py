"""Tests for building pipelines in Python."""

from __future__ import annotations

from pathlib import Path

import pytest

from graphci import (
    attach_workspace,
    checkout,
    job,
    matrix,
    persist_to_workspace,
    pipeline,
    run,
    run_workflow,
    store_artifacts,
    use,
    workflow,
)
from graphci.errors import ConfigError
from graphci.model import ALWAYS, CHECKOUT, SUCCESS


def test_job_needs_steps() -> None:
    with pytest.raises(ValueError, match="at least one step"):
        job("empty")


def test_persist_needs_paths() -> None:
    with pytest.raises(ValueError):
        persist_to_workspace("/tmp/keys", [])


def test_step_builders() -> None:
    step = checkout(path="src")
    assert step.kind == CHECKOUT
    assert step.data == {"path": "src"}

    art = store_artifacts("~/.sfdx/sfdx.log", "sfdx-logs", when=ALWAYS)
    assert art.data == {"path": "~/.sfdx/sfdx.log", "destination": "sfdx-logs"}
    assert art.when == ALWAYS


def test_use_normalizes_single_values() -> None:
    wj = use("deploy", context="org-global", only="main", ignore="/wip-.*/")

    assert wj.name == wj.job == "deploy"
    assert wj.context == ["org-global"]
    assert wj.filters.only == ("main",)
    assert wj.filters.ignore == ("/wip-.*/",)


def test_pipeline_rejects_duplicate_jobs() -> None:
    a = job("a", run("a", "echo a"))

    with pytest.raises(ValueError, match="Duplicate job name"):
        pipeline([a, a])


def test_pipeline_validates_workflows() -> None:
    a = job("a", run("a", "echo a"))

    with pytest.raises(ConfigError):
        pipeline([a], [workflow("wf", use(a, requires=["missing"]))])


def test_matrix_builds_one_job_per_value() -> None:
    jobs = matrix("py", ["3.11", "3.12"]).jobs(
        lambda v: job(f"test-{v}", run("test", "echo $PY"), env={"PY": v})
    )

    assert [j.name for j in jobs] == ["test-3.11", "test-3.12"]
    assert jobs[1].env == {"PY": "3.12"}


def test_python_pipeline_runs(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    build = job(
        "build",
        run("Build", "mkdir -p dist && echo artifact > dist/app.txt"),
        persist_to_workspace(".", ["dist"]),
    )
    ship = job(
        "ship",
        attach_workspace("~/ws"),
        run("Ship", "test -f ~/ws/dist/app.txt"),
    )
    p = pipeline([build, ship], [workflow("release", use(build), use(ship, requires=["build"]))])

    result = run_workflow(p, project_dir=project, branch="main", print_plan=False)

    assert result.statuses == {"build": SUCCESS, "ship": SUCCESS}
