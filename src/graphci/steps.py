# steps.py
from __future__ import annotations

import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

from .errors import CIError, StepFailure
from .git_facts import git
from .model import (
    ATTACH_WORKSPACE,
    CHECKOUT,
    PERSIST_TO_WORKSPACE,
    RUN,
    STORE_ARTIFACTS,
    STORE_TEST_RESULTS,
    Job,
    Step,
)
from .ui.console import get_console
from .workspace import ArtifactStore, WorkspaceConflict, WorkspaceStore


@dataclass
class JobContext:
    """Everything a step needs to know about the job it belongs to."""
    name: str                      # workflow job name
    job: Job
    host: object                   # LocalHost | DockerHost
    env: Dict[str, str]
    workdir: str                   # host-side working directory
    shell: str
    workspace: WorkspaceStore
    artifacts: ArtifactStore
    project_dir: Path
    state_dir: Path
    no_output_timeout: float | None
    log: Callable[[str], None]
    # upstream jobs in topological order, and each job's ancestors
    upstream: List[str] = field(default_factory=list)
    related: Dict[str, set] = field(default_factory=dict)


# ----------------------------------------------------------------------
# run
# ----------------------------------------------------------------------

def _run(step: Step, ctx: JobContext) -> None:
    cwd = ctx.host.expand(step.cwd, ctx.workdir) if step.cwd else ctx.workdir
    env = dict(ctx.env)
    env.update(step.env)

    timeout = step.no_output_timeout if step.no_output_timeout is not None else ctx.no_output_timeout
    result = ctx.host.run(
        step.run,
        cwd=cwd,
        env=env,
        shell=step.shell or ctx.shell,
        no_output_timeout=timeout,
        on_line=ctx.log,
    )

    if result.timed_out or result.exit_code != 0:
        raise StepFailure(
            job=ctx.name,
            step=step.name,
            cmd=step.run,
            exit_code=result.exit_code,
            output=result.output[-4000:],
            timed_out=result.timed_out,
        )


# ----------------------------------------------------------------------
# checkout
# ----------------------------------------------------------------------

def _ignore_for_checkout(state_dir: Path, project_dir: Path):
    state_name = state_dir.name if state_dir.parent == project_dir else None

    def ignore(directory: str, names: List[str]) -> List[str]:
        skipped = [n for n in names if n == ".git"]
        if state_name and Path(directory).resolve() == project_dir and state_name in names:
            skipped.append(state_name)
        return skipped

    return ignore


def _checkout(step: Step, ctx: JobContext) -> None:
    target = ctx.host.expand(step.data["path"], ctx.workdir) if step.data.get("path") else ctx.workdir
    project_dir = ctx.project_dir.resolve()

    with tempfile.TemporaryDirectory(prefix="graphci-checkout-") as tmp:
        src = Path(tmp) / "src"
        if git.is_repo(project_dir):
            root = git.repo_root(project_dir)
            try:
                git.clone(root, src, ref=git.head_sha(root))
            except subprocess.CalledProcessError as e:
                raise CIError(
                    kind="checkout_failed",
                    job=ctx.name,
                    step=step.name,
                    message=f"git clone of {root} failed",
                    details={"exit_code": e.returncode},
                )
            ctx.log(f"Cloned {root} at {git.head_sha(src)}")
        else:
            shutil.copytree(
                project_dir,
                src,
                symlinks=True,
                ignore=_ignore_for_checkout(ctx.state_dir.resolve(), project_dir),
            )
            ctx.log(f"Copied {project_dir} (not a git repository)")

        ctx.host.push(src, target)


# ----------------------------------------------------------------------
# workspace
# ----------------------------------------------------------------------

def _persist_to_workspace(step: Step, ctx: JobContext) -> None:
    workspace = ctx.workspace
    root = ctx.host.expand(step.data["root"], ctx.workdir)

    with ctx.host.fetch(root) as local_root:
        try:
            files = workspace.persist(ctx.name, local_root, list(step.data["paths"]))
        except FileNotFoundError as e:
            raise CIError(
                kind="workspace_paths_missing",
                job=ctx.name,
                step=step.name,
                message=str(e),
                details={"root": root},
            )
        except ValueError as e:
            raise CIError(
                kind="workspace_paths_outside_root",
                job=ctx.name,
                step=step.name,
                message=str(e),
                details={"root": root},
            )
    for f in files:
        ctx.log(f"persisted {f}")


def _attach_workspace(step: Step, ctx: JobContext) -> None:
    workspace = ctx.workspace
    at = ctx.host.expand(step.data["at"], ctx.workdir)
    layers = workspace.layers(ctx.upstream)

    if not layers:
        get_console().print_info(f"[{ctx.name}] workspace: no upstream job persisted anything")

    with tempfile.TemporaryDirectory(prefix="graphci-attach-") as tmp:
        try:
            files = workspace.attach(layers, Path(tmp), related=ctx.related)
        except WorkspaceConflict as e:
            raise CIError(
                kind="workspace_conflict",
                job=ctx.name,
                step=step.name,
                message=str(e),
                details={"path": e.path},
            )
        ctx.host.push(Path(tmp), at)

    for f in files:
        ctx.log(f"attached {f}")


# ----------------------------------------------------------------------
# artifacts / test results
# ----------------------------------------------------------------------

def _store_artifacts(step: Step, ctx: JobContext) -> None:
    path = ctx.host.expand(step.data["path"], ctx.workdir)
    with ctx.host.fetch(path) as local:
        if not local.exists():
            get_console().print_info(f"[{ctx.name}] No artifact files found at {path}")
            return
        try:
            dest = ctx.artifacts.store_artifacts(ctx.name, local, step.data.get("destination"))
        except ValueError as e:
            raise CIError(
                kind="artifact_destination_invalid",
                job=ctx.name,
                step=step.name,
                message=str(e),
                details={"hint": "Use a destination relative to the job's artifacts directory."},
            )
    ctx.log(f"stored artifacts {path} -> {dest}")


def _store_test_results(step: Step, ctx: JobContext) -> None:
    path = ctx.host.expand(step.data["path"], ctx.workdir)
    with ctx.host.fetch(path) as local:
        if not local.exists():
            get_console().print_info(f"[{ctx.name}] No test results found at {path}")
            return
        summary = ctx.artifacts.store_test_results(ctx.name, local)
    get_console().print_test_summary(ctx.name, summary)


STEP_HANDLERS: Dict[str, Callable[[Step, JobContext], None]] = {
    RUN: _run,
    CHECKOUT: _checkout,
    PERSIST_TO_WORKSPACE: _persist_to_workspace,
    ATTACH_WORKSPACE: _attach_workspace,
    STORE_ARTIFACTS: _store_artifacts,
    STORE_TEST_RESULTS: _store_test_results,
}


def execute_step(step: Step, ctx: JobContext) -> None:
    try:
        handler = STEP_HANDLERS[step.kind]
    except KeyError:
        raise ValueError(f"[{ctx.name}] step '{step.name}' has unknown kind {step.kind!r}")
    handler(step, ctx)
