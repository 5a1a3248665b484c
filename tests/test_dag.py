"""Tests for the workflow job graph."""

from __future__ import annotations

from pathlib import Path

import pytest

from graphci.config import load_pipeline
from graphci.dag import ancestors, build_dag, topo_levels, topo_order
from graphci.errors import ConfigError, CycleError
from graphci.model import WorkflowJob


def _wj(name: str, *requires: str) -> WorkflowJob:
    return WorkflowJob(name=name, job=name, requires=list(requires))


def test_fixture_workflow_stages(fixture_config: Path) -> None:
    wf = load_pipeline(fixture_config).workflows["build_and_test"]

    adj, indeg = build_dag(wf.jobs)

    assert topo_levels(adj, indeg) == [
        ["setup-build-environment"],
        ["test-build-1", "test-build-2"],
        ["create-beta-package"],
    ]


def test_levels_do_not_mutate_indegrees() -> None:
    adj, indeg = build_dag([_wj("a"), _wj("b", "a")])

    topo_levels(adj, indeg)

    assert indeg == {"a": 0, "b": 1}


def test_cycle_reports_stuck_nodes() -> None:
    adj, indeg = build_dag([_wj("root"), _wj("a", "root", "c"), _wj("b", "a"), _wj("c", "b")])

    with pytest.raises(CycleError) as exc:
        topo_levels(adj, indeg)

    assert exc.value.nodes == ["a", "b", "c"]


def test_missing_requirement() -> None:
    with pytest.raises(ConfigError) as exc:
        build_dag([_wj("test", "lint"), _wj("deploy", "test", "package")])

    assert exc.value.problems == [
        "'test' requires missing job 'lint'",
        "'deploy' requires missing job 'package'",
    ]


def test_duplicate_names() -> None:
    with pytest.raises(ConfigError, match="Duplicate job names"):
        build_dag([_wj("a"), _wj("a")])


def test_topo_order_is_stable() -> None:
    jobs = [_wj("z"), _wj("b", "z"), _wj("a", "z"), _wj("end", "a", "b")]

    assert topo_order(jobs) == ["z", "a", "b", "end"]


def test_ancestors_are_transitive() -> None:
    jobs = [_wj("setup"), _wj("t1", "setup"), _wj("t2", "setup"), _wj("pkg", "t1", "t2"), _wj("other")]

    assert ancestors(jobs, "pkg") == {"setup", "t1", "t2"}
    assert ancestors(jobs, "setup") == set()


def test_repeated_requirement_counts_once() -> None:
    adj, indeg = build_dag([_wj("setup"), _wj("test", "setup", "setup")])

    assert indeg == {"setup": 0, "test": 1}
    assert topo_levels(adj, indeg) == [["setup"], ["test"]]
