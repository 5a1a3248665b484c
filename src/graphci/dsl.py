# dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from .model import (
    ATTACH_WORKSPACE,
    CHECKOUT,
    DEFAULT_WORKING_DIRECTORY,
    ON_SUCCESS,
    PERSIST_TO_WORKSPACE,
    RUN,
    STORE_ARTIFACTS,
    STORE_TEST_RESULTS,
    BranchFilter,
    Job,
    Pipeline,
    Step,
    Workflow,
    WorkflowJob,
)
from .config import DEFAULT_STEP_NAMES, validate_pipeline


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def run(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    shell: str | None = None,
    when: str = ON_SUCCESS,
    no_output_timeout: float | None = None,
) -> Step:
    return Step(
        kind=RUN,
        name=name,
        run=cmd,
        cwd=cwd,
        env=dict(env or {}),
        shell=shell,
        when=when,
        no_output_timeout=no_output_timeout,
    )


def checkout(*, path: str | None = None) -> Step:
    data = {"path": path} if path else {}
    return Step(kind=CHECKOUT, name=DEFAULT_STEP_NAMES[CHECKOUT], data=data)


def persist_to_workspace(root: str, paths: List[str], *, when: str = ON_SUCCESS) -> Step:
    if not paths:
        raise ValueError("persist_to_workspace needs at least one path")
    return Step(
        kind=PERSIST_TO_WORKSPACE,
        name=DEFAULT_STEP_NAMES[PERSIST_TO_WORKSPACE],
        when=when,
        data={"root": root, "paths": list(paths)},
    )


def attach_workspace(at: str) -> Step:
    return Step(kind=ATTACH_WORKSPACE, name=DEFAULT_STEP_NAMES[ATTACH_WORKSPACE], data={"at": at})


def store_artifacts(path: str, destination: str | None = None, *, when: str = ON_SUCCESS) -> Step:
    data = {"path": path}
    if destination:
        data["destination"] = destination
    return Step(kind=STORE_ARTIFACTS, name=DEFAULT_STEP_NAMES[STORE_ARTIFACTS], when=when, data=data)


def store_test_results(path: str, *, when: str = ON_SUCCESS) -> Step:
    return Step(
        kind=STORE_TEST_RESULTS,
        name=DEFAULT_STEP_NAMES[STORE_TEST_RESULTS],
        when=when,
        data={"path": path},
    )


# ---------------------------------------------------------------------
# Jobs / workflows
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow job("x", run(...), run(...))
    steps_list: Optional[List[Step]] = None,  # still allow job(..., steps_list=[...])
    image: str | None = None,
    env: Optional[Dict[str, str]] = None,
    working_directory: str = DEFAULT_WORKING_DIRECTORY,
    shell: str | None = None,
) -> Job:
    steps_final = list(steps_list or []) + list(steps)
    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    return Job(
        name=name,
        steps=steps_final,
        env=dict(env or {}),
        image=image,
        working_directory=working_directory,
        shell=shell,
    )


def use(
    job_ref: Job | str,
    *,
    name: str | None = None,
    requires: Optional[List[str]] = None,
    context: Optional[List[str] | str] = None,
    only: Optional[List[str] | str] = None,
    ignore: Optional[List[str] | str] = None,
) -> WorkflowJob:
    """Reference a job from a workflow."""
    job_name = job_ref.name if isinstance(job_ref, Job) else job_ref
    if isinstance(context, str):
        context = [context]
    if isinstance(only, str):
        only = [only]
    if isinstance(ignore, str):
        ignore = [ignore]
    return WorkflowJob(
        name=name or job_name,
        job=job_name,
        requires=list(requires or []),
        context=list(context or []),
        filters=BranchFilter(only=tuple(only or ()), ignore=tuple(ignore or ())),
    )


def workflow(name: str, *jobs: WorkflowJob | Job | str) -> Workflow:
    entries = [j if isinstance(j, WorkflowJob) else use(j) for j in jobs]
    return Workflow(name=name, jobs=entries)


def pipeline(jobs: Iterable[Job], workflows: Iterable[Workflow] = ()) -> Pipeline:
    job_map: Dict[str, Job] = {}
    for j in jobs:
        if j.name in job_map:
            raise ValueError(f"Duplicate job name: {j.name}")
        job_map[j.name] = j
    result = Pipeline(
        version="2",
        jobs=job_map,
        workflows={w.name: w for w in workflows},
    )
    validate_pipeline(result)
    return result


class Matrix:
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)
