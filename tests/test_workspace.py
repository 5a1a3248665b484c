"""Tests for the run workspace and artifact storage."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from graphci.workspace import ArtifactStore, WorkspaceConflict, WorkspaceStore, summarize_junit


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def store(tmp_path: Path) -> WorkspaceStore:
    return WorkspaceStore(tmp_path / "workspace")


def test_persist_then_attach(tmp_path: Path, store: WorkspaceStore) -> None:
    src = tmp_path / "src"
    _write(src / "keys" / "dev-hub.key", "secret")
    _write(src / "build" / "app.zip", "zip")

    written = store.persist("setup", src, ["keys/dev-hub.key", "build"])
    files = store.attach(store.layers(["setup"]), tmp_path / "out")

    assert written == ["build/app.zip", "keys/dev-hub.key"]
    assert files == written
    assert (tmp_path / "out" / "keys" / "dev-hub.key").read_text(encoding="utf-8") == "secret"


def test_persist_accumulates_within_a_job(tmp_path: Path, store: WorkspaceStore) -> None:
    src = tmp_path / "src"
    _write(src / "a.txt", "a")
    _write(src / "b.txt", "b")

    store.persist("setup", src, ["a.txt"])
    store.persist("setup", src, ["b.txt"])

    layer = store.layer("setup")
    assert layer is not None
    assert layer.files == ("a.txt", "b.txt")

    store.attach([layer], tmp_path / "out")
    assert (tmp_path / "out" / "a.txt").exists()
    assert (tmp_path / "out" / "b.txt").exists()


def test_persist_globs(tmp_path: Path, store: WorkspaceStore) -> None:
    src = tmp_path / "src"
    _write(src / "one.key", "1")
    _write(src / "two.key", "2")
    _write(src / "notes.txt", "n")

    assert store.persist("setup", src, ["*.key"]) == ["one.key", "two.key"]


def test_persist_unmatched_path(tmp_path: Path, store: WorkspaceStore) -> None:
    src = tmp_path / "src"
    src.mkdir()

    with pytest.raises(FileNotFoundError, match="did not match any files"):
        store.persist("setup", src, ["missing.key"])


def test_persist_missing_root(tmp_path: Path, store: WorkspaceStore) -> None:
    with pytest.raises(FileNotFoundError, match="workspace root does not exist"):
        store.persist("setup", tmp_path / "nope", ["x"])


def test_jobs_without_a_layer_are_skipped(store: WorkspaceStore) -> None:
    assert store.layer("never-persisted") is None
    assert store.layers(["never-persisted"]) == []


def test_concurrent_jobs_writing_the_same_file_conflict(tmp_path: Path, store: WorkspaceStore) -> None:
    _write(tmp_path / "t1" / "report.txt", "from t1")
    _write(tmp_path / "t2" / "report.txt", "from t2")
    store.persist("test-build-1", tmp_path / "t1", ["report.txt"])
    store.persist("test-build-2", tmp_path / "t2", ["report.txt"])

    related = {"test-build-1": {"setup"}, "test-build-2": {"setup"}}
    with pytest.raises(WorkspaceConflict) as exc:
        store.attach(store.layers(["test-build-1", "test-build-2"]), tmp_path / "out", related=related)

    assert exc.value.path == "report.txt"
    assert exc.value.jobs == ("test-build-1", "test-build-2")


def test_downstream_layer_overrides_its_ancestor(tmp_path: Path, store: WorkspaceStore) -> None:
    _write(tmp_path / "setup" / "version.txt", "1")
    _write(tmp_path / "build" / "version.txt", "2")
    store.persist("setup", tmp_path / "setup", ["version.txt"])
    store.persist("build", tmp_path / "build", ["version.txt"])

    store.attach(
        store.layers(["setup", "build"]),
        tmp_path / "out",
        related={"setup": set(), "build": {"setup"}},
    )

    assert (tmp_path / "out" / "version.txt").read_text(encoding="utf-8") == "2"


def test_store_artifacts_uses_destination(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "run")
    log = _write(tmp_path / "sfdx.log", "log line")

    dest = store.store_artifacts("setup", log, "sfdx-logs")

    assert dest == (tmp_path / "run" / "artifacts" / "setup" / "sfdx-logs").resolve()
    assert dest.read_text(encoding="utf-8") == "log line"


def test_store_test_results_writes_summary(tmp_path: Path) -> None:
    results = tmp_path / "test-results"
    _write(
        results / "apex" / "junit.xml",
        """<testsuites>
          <testsuite name="apex" tests="3">
            <testcase name="ok"/>
            <testcase name="broken"><failure message="boom"/></testcase>
            <testcase name="later"><skipped/></testcase>
          </testsuite>
        </testsuites>""",
    )
    store = ArtifactStore(tmp_path / "run")

    summary = store.store_test_results("test-build-1", results)

    assert (summary.tests, summary.failures, summary.skipped) == (3, 1, 1)
    written = json.loads(
        (tmp_path / "run" / "test-results" / "test-build-1" / "summary.json").read_text(encoding="utf-8")
    )
    assert written["tests"] == 3


def test_summarize_junit_records_unparsable_files(tmp_path: Path) -> None:
    _write(tmp_path / "bad.xml", "<testsuite")
    _write(tmp_path / "other.xml", "<coverage/>")
    _write(
        tmp_path / "suite.xml",
        '<testsuite><testcase name="a"/><testcase name="b"><error/></testcase></testsuite>',
    )

    summary = summarize_junit(tmp_path)

    assert summary.unparsed == ["bad.xml"]
    assert summary.files == 1
    assert (summary.tests, summary.errors) == (2, 1)


def test_persist_rejects_paths_outside_the_root(tmp_path: Path, store: WorkspaceStore) -> None:
    src = tmp_path / "src"
    _write(src / "sub" / "keep.txt", "keep")
    _write(src / "x.txt", "x")

    with pytest.raises(ValueError, match="inside the workspace root"):
        store.persist("setup", src / "sub", ["../x.txt"])

    assert store.layer("setup") is None


def test_store_artifacts_rejects_escaping_destination(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "run")
    log = _write(tmp_path / "sfdx.log", "log line")

    with pytest.raises(ValueError, match="inside the job's artifacts"):
        store.store_artifacts("setup", log, "../../x")

    assert not (tmp_path / "x").exists()


def test_store_artifacts_normalizes_destination(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "run")
    log = _write(tmp_path / "sfdx.log", "log line")

    dest = store.store_artifacts("setup", log, "logs/../sfdx-logs")

    assert dest == (tmp_path / "run" / "artifacts" / "setup" / "sfdx-logs").resolve()
