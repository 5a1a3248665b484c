# runner.py
from __future__ import annotations

import json
import os
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from . import settings
from .config import parse_duration
from .contexts import ContextStore
from .dag import ancestors, build_dag, topo_order
from .errors import CIError, StepFailure
from .filters import select_jobs
from .git_facts import git
from .hosts import DockerHost, LocalHost
from .model import (
    ALWAYS,
    BLOCKED,
    CANCELED,
    FAILED,
    NOT_RUN,
    ON_FAIL,
    SUCCESS,
    Job,
    JobResult,
    Pipeline,
    RunResult,
    StepResult,
    Workflow,
    WorkflowJob,
)
from .steps import JobContext, execute_step
from .ui.console import get_console
from .workspace import ArtifactStore, WorkspaceStore

# local checkout ---> workflow selection ---> stages ---> jobs ---> steps

SKIPPED = "skipped"


class BuildCounter:
    """Monotonic build numbers persisted in <state_dir>/build_num."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            current = 0
            if self.path.exists():
                text = self.path.read_text(encoding="utf-8").strip()
                current = int(text) if text.isdigit() else 0
            current += 1
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(f"{current}\n", encoding="utf-8")
            return current


@dataclass
class RunContext:
    """Per-run state shared by every job of the run."""
    run_id: str
    run_dir: Path
    project_dir: Path
    state_dir: Path
    branch: Optional[str]
    sha: Optional[str]
    executor: str
    contexts: ContextStore
    workspace: WorkspaceStore
    artifacts: ArtifactStore
    counter: BuildCounter
    extra_env: Dict[str, str] = field(default_factory=dict)
    no_output_timeout: Optional[float] = None


def _new_run(
    *,
    project_dir: str | Path,
    state_dir: str | Path,
    branch: Optional[str],
    executor: str,
    contexts: Optional[ContextStore],
    extra_env: Optional[Dict[str, str]],
    no_output_timeout: Optional[float],
) -> RunContext:
    if executor not in ("local", "docker"):
        raise ValueError(f"Unknown executor {executor!r}; expected 'local' or 'docker'")

    project = Path(project_dir).resolve()
    state = Path(state_dir)
    if not state.is_absolute():
        state = project / state
    state = state.resolve()

    run_id = f"{time.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"
    run_dir = state / "runs" / run_id
    (run_dir / "jobs").mkdir(parents=True, exist_ok=True)

    sha = git.head_sha(project) if git.is_repo(project) else None

    if no_output_timeout is None:
        no_output_timeout = parse_duration(settings.NO_OUTPUT_TIMEOUT)

    return RunContext(
        run_id=run_id,
        run_dir=run_dir,
        project_dir=project,
        state_dir=state,
        branch=branch,
        sha=sha,
        executor=executor,
        contexts=contexts or ContextStore(),
        workspace=WorkspaceStore(run_dir / "workspace"),
        artifacts=ArtifactStore(run_dir),
        counter=BuildCounter(state / "build_num"),
        extra_env=dict(extra_env or {}),
        no_output_timeout=no_output_timeout,
    )


# ----------------------------------------------------------------------
# Single job
# ----------------------------------------------------------------------

def _should_run(when: str, job_failed: bool) -> bool:
    if when == ALWAYS:
        return True
    if when == ON_FAIL:
        return job_failed
    return not job_failed


def _make_host(job: Job, name: str, run: RunContext, job_dir: Path):
    if run.executor == "docker":
        if not job.image:
            raise CIError(
                kind="no_image",
                job=name,
                step=None,
                message="the docker executor needs a `docker:` image on the job",
                details={"hint": "Add `docker: [{image: ...}]` or use --executor local."},
            )
        container = re.sub(r"[^a-zA-Z0-9_.-]", "-", f"graphci-{run.run_id}-{name}")
        return DockerHost(name, job.image, container)
    return LocalHost(job_dir)


def _builtin_env(name: str, build_num: int, workdir: str, run: RunContext) -> Dict[str, str]:
    env = {
        "CI": "true",
        "CIRCLECI": "true",
        "GRAPHCI": "true",
        "CIRCLE_BUILD_NUM": str(build_num),
        "CIRCLE_JOB": name,
        "CIRCLE_WORKFLOW_ID": run.run_id,
        "CIRCLE_WORKING_DIRECTORY": workdir,
        "CIRCLE_PROJECT_REPONAME": run.project_dir.name,
        "CIRCLE_NODE_INDEX": "0",
        "CIRCLE_NODE_TOTAL": "1",
    }
    if run.branch:
        env["CIRCLE_BRANCH"] = run.branch
    if run.sha:
        env["CIRCLE_SHA1"] = run.sha
    return env


def _run_job(
    job: Job,
    name: str,
    run: RunContext,
    *,
    context_names: List[str],
    upstream: List[str],
    related: Dict[str, Set[str]],
) -> JobResult:
    """
    Run one job to completion. Step failures are recorded in the result;
    only unexpected errors propagate.
    """
    console = get_console()
    build_num = run.counter.next()
    job_dir = run.run_dir / "jobs" / name
    job_dir.mkdir(parents=True, exist_ok=True)

    result = JobResult(name=name, status=SUCCESS, build_num=build_num)
    console.print_job_start(name, build_num)
    started = time.monotonic()

    missing = [c for c in context_names if c not in run.contexts]
    if missing:
        err = CIError(
            kind="context_missing",
            job=name,
            step=None,
            message=f"unknown context(s): {missing}",
            details={"hint": "Define them in the contexts file (see --contexts)."},
        )
        result.status = FAILED
        result.error = str(err)
        console.print_failure(name, str(err), hint=err.details["hint"], is_job=True)
        return result

    failed = False
    with (job_dir / "output.log").open("a", encoding="utf-8") as log_file:

        def log(line: str) -> None:
            log_file.write(line + "\n")
            log_file.flush()
            console.print_debug(f"[{name}] {line}")

        host = None
        try:
            host = _make_host(job, name, run, job_dir)
            host.start()

            workdir = host.expand(job.working_directory)
            env = _builtin_env(name, build_num, workdir, run)
            env.update(run.contexts.env_for(context_names))
            env.update(run.extra_env)
            env.update(job.env)

            ctx = JobContext(
                name=name,
                job=job,
                host=host,
                env=env,
                workdir=workdir,
                shell=job.shell or host.default_shell(),
                workspace=run.workspace,
                artifacts=run.artifacts,
                project_dir=run.project_dir,
                state_dir=run.state_dir,
                no_output_timeout=run.no_output_timeout,
                log=log,
                upstream=upstream,
                related=related,
            )

            for step in job.steps:
                if not _should_run(step.when, failed):
                    console.print_step_skipped(name, step.name, step.when)
                    result.steps.append(StepResult(step.name, step.kind, SKIPPED))
                    continue

                console.print_step(name, step.name)
                log(f"==> {step.name}")
                t0 = time.monotonic()
                try:
                    execute_step(step, ctx)
                    result.steps.append(StepResult(step.name, step.kind, SUCCESS, 0, time.monotonic() - t0))
                except StepFailure as e:
                    failed = True
                    result.error = result.error or str(e)
                    result.steps.append(StepResult(step.name, step.kind, FAILED, e.exit_code, time.monotonic() - t0))
                    console.print_failure(step.name, str(e), exit_code=e.exit_code, output=e.output)
                except CIError as e:
                    failed = True
                    result.error = result.error or str(e)
                    result.steps.append(StepResult(step.name, step.kind, FAILED, None, time.monotonic() - t0))
                    console.print_failure(step.name, str(e), hint=e.details.get("hint"))
                except Exception as e:
                    # later `always` / `on_fail` steps still run
                    failed = True
                    message = f"{type(e).__name__}: {e}"
                    result.error = result.error or message
                    result.steps.append(StepResult(step.name, step.kind, FAILED, None, time.monotonic() - t0))
                    log(message)
                    console.print_failure(step.name, message)
                    if console.debug:
                        console.print_exception(e)

        except CIError as e:
            failed = True
            result.error = str(e)
            console.print_failure(name, str(e), hint=e.details.get("hint"), is_job=True)
        finally:
            if host is not None:
                host.stop()

    result.status = FAILED if failed else SUCCESS
    console.print_job_status(name, result.status, time.monotonic() - started)
    return result


def _write_summary(run: RunContext, workflow: Optional[str], results: Dict[str, JobResult]) -> None:
    summary = {
        "run_id": run.run_id,
        "workflow": workflow,
        "branch": run.branch,
        "sha": run.sha,
        "executor": run.executor,
        "jobs": [r.to_dict() for r in results.values()],
    }
    (run.run_dir / "summary.json").write_text(json.dumps(summary, indent=2), encoding="utf-8")


def run_job(
    pipeline: Pipeline,
    job_name: str,
    *,
    project_dir: str | Path = ".",
    state_dir: str | Path = settings.STATE_DIR,
    branch: Optional[str] = None,
    executor: str = settings.EXECUTOR,
    contexts: Optional[ContextStore] = None,
    context_names: Optional[List[str]] = None,
    extra_env: Optional[Dict[str, str]] = None,
    no_output_timeout: Optional[float] = None,
) -> RunResult:
    """Run a single job definition outside of any workflow."""
    if job_name not in pipeline.jobs:
        raise KeyError(f"Unknown job {job_name!r}. Known jobs: {sorted(pipeline.jobs)}")

    run = _new_run(
        project_dir=project_dir,
        state_dir=state_dir,
        branch=branch,
        executor=executor,
        contexts=contexts,
        extra_env=extra_env,
        no_output_timeout=no_output_timeout,
    )
    result = _run_job(
        pipeline.jobs[job_name],
        job_name,
        run,
        context_names=list(context_names or []),
        upstream=[],
        related={},
    )
    results = {job_name: result}
    _write_summary(run, None, results)
    return RunResult(run_id=run.run_id, workflow=None, branch=branch, run_dir=run.run_dir, jobs=results)


# ----------------------------------------------------------------------
# Workflow scheduler
# ----------------------------------------------------------------------

def resolve_workflow(pipeline: Pipeline, name: Optional[str]) -> Workflow:
    """Pick the named workflow, or the only one when no name is given."""
    if name is not None:
        try:
            return pipeline.workflows[name]
        except KeyError:
            raise KeyError(f"Unknown workflow {name!r}. Known workflows: {sorted(pipeline.workflows)}")
    if len(pipeline.workflows) == 1:
        return next(iter(pipeline.workflows.values()))
    if not pipeline.workflows:
        raise KeyError("The configuration declares no workflows; run a single job with --job")
    raise KeyError(f"Several workflows declared, pick one: {sorted(pipeline.workflows)}")


def run_workflow(
    pipeline: Pipeline,
    workflow_name: Optional[str] = None,
    *,
    project_dir: str | Path = ".",
    state_dir: str | Path = settings.STATE_DIR,
    branch: Optional[str] = None,
    executor: str = settings.EXECUTOR,
    max_workers: Optional[int] = settings.MAX_WORKERS,
    fail_fast: bool = False,
    contexts: Optional[ContextStore] = None,
    extra_env: Optional[Dict[str, str]] = None,
    no_output_timeout: Optional[float] = None,
    print_plan: bool = True,
) -> RunResult:
    """
    Scheduler + orchestrator:

    - Selects the jobs whose branch filters pass (and whose requirements run).
    - Submits every job whose requirements all succeeded; a completion
      unlocks its dependents.
    - A failed job blocks its dependents; independent jobs keep going
      unless fail_fast is set.
    """
    console = get_console()
    wf = resolve_workflow(pipeline, workflow_name)

    selection = select_jobs(wf, branch)
    selected: List[WorkflowJob] = [wj for wj in wf.jobs if selection[wj.name].selected]
    if print_plan:
        console.print_header(f"Plan for workflow '{wf.name}'")
        for name, sel in selection.items():
            if sel.selected:
                console.print_plan_job(name, sel.reason)
            else:
                console.print_plan_job_skipped(name, sel.reason)

    run = _new_run(
        project_dir=project_dir,
        state_dir=state_dir,
        branch=branch,
        executor=executor,
        contexts=contexts,
        extra_env=extra_env,
        no_output_timeout=no_output_timeout,
    )

    by_name = {wj.name: wj for wj in selected}
    adj, indeg = build_dag(selected)
    order = topo_order(selected)
    related = {wj.name: ancestors(selected, wj.name) for wj in selected}

    results: Dict[str, JobResult] = {}
    failed = False

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    ready: List[str] = sorted(name for name, deg in indeg.items() if deg == 0)
    in_flight: Dict = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            # schedule all currently ready
            while ready and not (fail_fast and failed):
                name = ready.pop(0)
                wj = by_name[name]
                fut = pool.submit(
                    _run_job,
                    pipeline.jobs[wj.job],
                    name,
                    run,
                    context_names=list(wj.context),
                    upstream=[n for n in order if n in related[name]],
                    related=related,
                )
                in_flight[fut] = name

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            name = in_flight.pop(fut)

            try:
                results[name] = fut.result()
            except Exception as e:
                results[name] = JobResult(name=name, status=FAILED, error=str(e))
                console.print_failure(name, str(e), is_job=True)

            # unlock dependents only on success
            if results[name].status == SUCCESS:
                for nxt in sorted(adj[name]):
                    indeg[nxt] -= 1
                    if indeg[nxt] == 0:
                        ready.append(nxt)
            else:
                failed = True

    failed_jobs = {n for n, r in results.items() if r.status == FAILED}
    ordered: Dict[str, JobResult] = {}
    for wj in wf.jobs:
        name = wj.name
        if name in results:
            ordered[name] = results[name]
        elif not selection[name].selected:
            ordered[name] = JobResult(name=name, status=NOT_RUN, reason=selection[name].reason)
        else:
            upstream_failed = sorted(related[name] & failed_jobs)
            if upstream_failed:
                ordered[name] = JobResult(
                    name=name, status=BLOCKED, reason=f"upstream job(s) failed: {upstream_failed}"
                )
            else:
                ordered[name] = JobResult(name=name, status=CANCELED, reason="fail-fast stopped scheduling")

    _write_summary(run, wf.name, ordered)
    return RunResult(run_id=run.run_id, workflow=wf.name, branch=branch, run_dir=run.run_dir, jobs=ordered)
