# workspace.py
from __future__ import annotations

import io
import json
import os
import posixpath
import shutil
import tarfile
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Run workspace:
#   every job that runs persist_to_workspace contributes one layer:
#     workspace/<job>.tar.gz + workspace/<job>.manifest.json
#   attach_workspace extracts the layers of all upstream jobs, in
#   topological order, into the requested directory.
#
# Artifacts / test results are plain copies under the run directory:
#   artifacts/<job>/<destination>
#   test-results/<job>/...
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class Layer:
    job: str
    archive: Path
    files: Tuple[str, ...]


@dataclass
class WorkspaceConflict(Exception):
    path: str
    jobs: Tuple[str, str]

    def __str__(self) -> str:
        return (
            f"Concurrent upstream jobs persisted the same file: {self.path} "
            f"(jobs: {self.jobs[0]}, {self.jobs[1]})"
        )


def _relpath(p: Path, root: Path) -> str:
    return str(_normalized(p).relative_to(_normalized(root))).replace("\\", "/")


def _normalized(p: Path) -> Path:
    return Path(os.path.normpath(p.absolute()))


def _is_within(p: Path, root: Path) -> bool:
    return _normalized(p).is_relative_to(_normalized(root))


def _display(p: Path, root: Path) -> str:
    return os.path.relpath(_normalized(p), _normalized(root)).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file() or p.is_symlink():
            yield p


def _resolve_globs(root: Path, patterns: List[str]) -> Tuple[List[Path], List[str]]:
    """
    Expand persist_to_workspace `paths` into concrete paths under root.
    Supports:
      - file path: "dev-hub.key"
      - dir path:  "build/"
      - glob:      "reports/**", "*.key"

    Returns (paths, patterns_that_matched_nothing). Raises ValueError
    when a pattern reaches outside root.
    """
    out: List[Path] = []
    unmatched: List[str] = []
    outside: List[str] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = root / pat
        if p.exists():
            out.append(p)
            continue

        matches = sorted(root.glob(pat))
        matches = [m for m in matches if m.exists()]
        if not matches:
            unmatched.append(pat)
        out.extend(matches)

    # lexical check, so symlinks inside root stay persistable
    for p in out:
        if not _is_within(p, root):
            outside.append(_display(p, root))
    if outside:
        raise ValueError(f"Paths must stay inside the workspace root {root}: {sorted(set(outside))}")

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq, unmatched


class WorkspaceStore:
    """
    File-based run workspace:
      root/
        <job_name>.tar.gz
        <job_name>.manifest.json
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def archive_path(self, job_name: str) -> Path:
        return self.root / f"{job_name}.tar.gz"

    def manifest_path(self, job_name: str) -> Path:
        return self.root / f"{job_name}.manifest.json"

    def persist(self, job_name: str, root: Path, paths: List[str]) -> List[str]:
        """
        Add `paths` (relative to `root`) to the job's layer.

        Several persist steps in one job accumulate into the same layer.
        Returns the relative file names written. Raises FileNotFoundError
        when a pattern matches nothing and ValueError when one leaves root.
        """
        root = Path(root).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"workspace root does not exist: {root}")

        resolved, unmatched = _resolve_globs(root, paths)
        if unmatched:
            raise FileNotFoundError(f"The specified paths did not match any files in {root}: {unmatched}")

        files: Dict[str, Path] = {}
        for p in resolved:
            if p.is_dir() and not p.is_symlink():
                for f in _iter_files_under(p):
                    files[_relpath(f, root)] = f
            else:
                files[_relpath(p, root)] = p

        with self._lock:
            previous = self._read_manifest(job_name)
            staged: Dict[str, bytes] = {}
            art = self.archive_path(job_name)
            if art.exists():
                # tarfile cannot append to a compressed archive, rebuild it
                with tarfile.open(str(art), mode="r:gz") as tar:
                    for member in tar.getmembers():
                        if member.isfile() and member.name not in files:
                            extracted = tar.extractfile(member)
                            if extracted is not None:
                                staged[member.name] = extracted.read()

            tmp = art.with_suffix(".gz.tmp")
            try:
                with tarfile.open(str(tmp), mode="w:gz") as tar:
                    for name, payload in sorted(staged.items()):
                        info = tarfile.TarInfo(name=name)
                        info.size = len(payload)
                        info.mtime = int(time.time())
                        tar.addfile(info, fileobj=io.BytesIO(payload))
                    for rel, src in sorted(files.items()):
                        tar.add(str(src), arcname=rel, recursive=False)
                tmp.replace(art)
            finally:
                if tmp.exists():
                    tmp.unlink(missing_ok=True)

            all_files = sorted(set(previous.get("files", [])) | set(files))
            manifest = {
                "job": job_name,
                "files": all_files,
                "generated_at_unix": int(time.time()),
            }
            self.manifest_path(job_name).write_text(
                json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )

        return sorted(files)

    def _read_manifest(self, job_name: str) -> Dict:
        man = self.manifest_path(job_name)
        if not man.exists():
            return {}
        return json.loads(man.read_text(encoding="utf-8"))

    def layer(self, job_name: str) -> Optional[Layer]:
        art = self.archive_path(job_name)
        if not art.exists():
            return None
        manifest = self._read_manifest(job_name)
        return Layer(job=job_name, archive=art, files=tuple(manifest.get("files", [])))

    def layers(self, job_names: Iterable[str]) -> List[Layer]:
        """Layers of `job_names` in the order given; jobs without a layer are skipped."""
        out = []
        for name in job_names:
            layer = self.layer(name)
            if layer is not None:
                out.append(layer)
        return out

    def attach(
        self,
        layers: List[Layer],
        target: Path,
        *,
        related: Optional[Dict[str, set]] = None,
    ) -> List[str]:
        """
        Extract `layers` (already in topological order) into `target`.

        `related` maps a job to its ancestors; two layers containing the same
        file conflict unless one job is an ancestor of the other.
        """
        related = related or {}
        owner: Dict[str, str] = {}
        for layer in layers:
            for f in layer.files:
                prev = owner.get(f)
                if prev is not None:
                    ordered = prev in related.get(layer.job, set()) or layer.job in related.get(prev, set())
                    if not ordered:
                        raise WorkspaceConflict(path=f, jobs=(prev, layer.job))
                owner[f] = layer.job

        target = Path(target)
        target.mkdir(parents=True, exist_ok=True)
        for layer in layers:
            with tarfile.open(str(layer.archive), mode="r:gz") as tar:
                tar.extractall(path=str(target), filter="data")
        return sorted(owner)


class ArtifactStore:
    """
    Artifacts and test results of a run:
      root/
        artifacts/<job>/<destination>
        test-results/<job>/...
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.artifacts_dir = self.root / "artifacts"
        self.test_results_dir = self.root / "test-results"

    def store_artifacts(self, job_name: str, src: Path, destination: str | None = None) -> Path:
        dest_name = posixpath.normpath((destination or src.name).replace("\\", "/")).strip("/")
        if dest_name in ("", "."):
            dest_name = src.name
        if dest_name == ".." or dest_name.startswith("../"):
            raise ValueError(f"Artifact destination must stay inside the job's artifacts: {destination!r}")
        dest = self.artifacts_dir / job_name / dest_name
        _copy_into(src, dest)
        return dest

    def store_test_results(self, job_name: str, src: Path) -> "TestSummary":
        dest = self.test_results_dir / job_name
        if src.is_dir():
            _copy_into(src, dest)
        else:
            _copy_into(src, dest / src.name)
        summary = summarize_junit(dest)
        (dest / "summary.json").write_text(json.dumps(summary.to_dict(), indent=2), encoding="utf-8")
        return summary


def _copy_into(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if src.is_dir():
        shutil.copytree(src, dest, dirs_exist_ok=True)
    else:
        shutil.copy2(src, dest)


@dataclass
class TestSummary:
    files: int = 0
    tests: int = 0
    failures: int = 0
    errors: int = 0
    skipped: int = 0
    unparsed: List[str] = field(default_factory=list)

    __test__ = False  # not a pytest class

    def to_dict(self) -> Dict:
        return {
            "files": self.files,
            "tests": self.tests,
            "failures": self.failures,
            "errors": self.errors,
            "skipped": self.skipped,
            "unparsed": self.unparsed,
        }


def summarize_junit(root: Path) -> TestSummary:
    """Count tests / failures / errors / skipped across JUnit XML files under root."""
    summary = TestSummary()
    for path in _iter_files_under(root):
        if path.suffix.lower() != ".xml":
            continue
        try:
            tree = ET.parse(path)
        except ET.ParseError:
            summary.unparsed.append(_relpath(path, root))
            continue

        node = tree.getroot()
        if node.tag not in ("testsuite", "testsuites"):
            continue
        suites = [node] if node.tag == "testsuite" else node.findall("testsuite")
        summary.files += 1
        for suite in suites:
            cases = suite.findall(".//testcase")
            summary.tests += len(cases)
            for case in cases:
                if case.find("failure") is not None:
                    summary.failures += 1
                elif case.find("error") is not None:
                    summary.errors += 1
                elif case.find("skipped") is not None:
                    summary.skipped += 1
    return summary
