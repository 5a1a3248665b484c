"""Tests for the graphci command line."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from graphci.cli import cli


@pytest.fixture
def in_project(project: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(project)
    return project


def _copy_fixture(fixture_config: Path, project: Path) -> Path:
    dest = project / ".circleci" / "config.yml"
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(fixture_config, dest)
    return dest


def test_validate(in_project: Path, fixture_config: Path) -> None:
    _copy_fixture(fixture_config, in_project)

    result = CliRunner().invoke(cli, ["validate"])

    assert result.exit_code == 0
    assert "is valid" in result.output
    assert "Jobs: 4" in result.output


def test_validate_reports_problems(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          a:
            steps: [{run: echo a}]
        workflows:
          wf:
            jobs: [a, ghost]
        """
    )

    result = CliRunner().invoke(cli, ["validate"])

    assert result.exit_code == 1
    assert "'ghost' is not defined under jobs" in result.output


def test_validate_rejects_bad_branch_regex(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          a:
            steps: [{run: echo a}]
        workflows:
          wf:
            jobs:
              - a:
                  filters:
                    branches:
                      only: /release-[/
        """
    )

    result = CliRunner().invoke(cli, ["validate"])

    assert result.exit_code == 1
    assert "invalid branch pattern '/release-[/'" in result.output


def test_validate_missing_config(in_project: Path) -> None:
    result = CliRunner().invoke(cli, ["validate"])

    assert result.exit_code == 1
    assert "No configuration found" in result.output


def test_plan_on_listed_branch(in_project: Path, fixture_config: Path) -> None:
    _copy_fixture(fixture_config, in_project)

    result = CliRunner().invoke(cli, ["plan", "--branch", "non-existant-branch"])

    assert result.exit_code == 0
    assert "=== Stage 1: setup-build-environment ===" in result.output
    assert "=== Stage 2: test-build-1, test-build-2 ===" in result.output
    assert "=== Stage 3: create-beta-package ===" in result.output


def test_plan_on_other_branch_runs_nothing(in_project: Path, fixture_config: Path) -> None:
    _copy_fixture(fixture_config, in_project)

    result = CliRunner().invoke(cli, ["plan", "--branch", "main"])

    assert result.exit_code == 0
    assert "No jobs would run on this branch." in result.output
    assert "setup-build-environment (not run: branch 'main' not in ['non-existant-branch'])" in result.output


def test_process_prints_normalized_yaml(in_project: Path, fixture_config: Path) -> None:
    _copy_fixture(fixture_config, in_project)

    result = CliRunner().invoke(cli, ["process"])

    assert result.exit_code == 0
    doc = yaml.safe_load(result.output)
    assert doc["workflows"]["build_and_test"]["jobs"][0] == {
        "setup-build-environment": {
            "context": ["org-global"],
            "filters": {"branches": {"only": ["non-existant-branch"]}},
        }
    }
    assert doc["jobs"]["test-build-1"]["steps"][0] == "checkout"


def test_run_success(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          hello:
            steps:
              - run: echo "hello from $MESSAGE_FROM"
        workflows:
          main:
            jobs: [hello]
        """
    )

    result = CliRunner().invoke(cli, ["run", "--branch", "main", "-e", "MESSAGE_FROM=cli"])

    assert result.exit_code == 0, result.output
    assert "hello: SUCCESS" in result.output
    logs = list((in_project / ".graphci" / "runs").glob("*/jobs/hello/output.log"))
    assert len(logs) == 1
    assert "hello from cli" in logs[0].read_text(encoding="utf-8")


def test_run_failure_exits_non_zero(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          broken:
            steps: [{run: exit 1}]
          downstream:
            steps: [{run: echo never}]
        workflows:
          main:
            jobs:
              - broken
              - downstream:
                  requires: [broken]
        """
    )

    result = CliRunner().invoke(cli, ["run", "--branch", "main"])

    assert result.exit_code == 1
    assert "broken: FAILED" in result.output
    assert "downstream: BLOCKED" in result.output


def test_run_single_job(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          lint:
            steps: [{run: echo linting}]
        """
    )

    result = CliRunner().invoke(cli, ["run", "--job", "lint"])

    assert result.exit_code == 0, result.output
    assert "lint: SUCCESS" in result.output


def test_run_unknown_job(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          lint:
            steps: [{run: echo linting}]
        """
    )

    result = CliRunner().invoke(cli, ["run", "--job", "deploy"])

    assert result.exit_code == 1
    assert "No job named 'deploy'" in result.output


def test_run_rejects_malformed_env(in_project: Path, write_config) -> None:
    write_config(
        """
        version: 2
        jobs:
          lint:
            steps: [{run: echo linting}]
        """
    )

    result = CliRunner().invoke(cli, ["run", "--job", "lint", "-e", "NOEQUALS"])

    assert result.exit_code == 2
    assert "expected KEY=VALUE" in result.output
