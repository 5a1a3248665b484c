"""Test configuration and fixtures."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest
import yaml

from graphci.config import parse_config
from graphci.model import Pipeline
from graphci.ui.console import Console, set_console

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def quiet_console() -> None:
    """Every test starts from a fresh, non-debug console."""
    set_console(Console())


@pytest.fixture
def fixture_config() -> Path:
    """Path of the four-job scratch-org configuration."""
    return FIXTURES / "beta_package.yml"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Provide an empty project directory (not a git repository)."""
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def make_pipeline() -> Callable[[str], Pipeline]:
    """Build a Pipeline from an inline YAML document."""

    def _make(text: str) -> Pipeline:
        return parse_config(yaml.safe_load(textwrap.dedent(text)))

    return _make


@pytest.fixture
def write_config(project: Path) -> Callable[[str], Path]:
    """Write an inline YAML document to <project>/.circleci/config.yml."""

    def _write(text: str) -> Path:
        path = project / ".circleci" / "config.yml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return _write
