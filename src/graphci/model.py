# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

# Step kinds
RUN = "run"
CHECKOUT = "checkout"
ATTACH_WORKSPACE = "attach_workspace"
PERSIST_TO_WORKSPACE = "persist_to_workspace"
STORE_ARTIFACTS = "store_artifacts"
STORE_TEST_RESULTS = "store_test_results"

# `when` values
ON_SUCCESS = "on_success"
ON_FAIL = "on_fail"
ALWAYS = "always"

# Job statuses
SUCCESS = "success"
FAILED = "failed"
BLOCKED = "blocked"
NOT_RUN = "not_run"
CANCELED = "canceled"

DEFAULT_WORKING_DIRECTORY = "~/project"


@dataclass(frozen=True)
class Step:
    """A single command or built-in action inside a CI job."""
    kind: str
    name: str
    run: str = ""
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    shell: str | None = None
    when: str = ON_SUCCESS
    no_output_timeout: float | None = None
    # Parameters of built-in actions (root/paths, at, path/destination)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Job:
    """A CI job: an execution environment plus an ordered list of steps."""
    name: str
    steps: list[Step]
    env: Dict[str, str] = field(default_factory=dict)
    image: Optional[str] = None
    working_directory: str = DEFAULT_WORKING_DIRECTORY
    shell: Optional[str] = None


@dataclass(frozen=True)
class BranchFilter:
    """
    Branch filter of a workflow job.

    Patterns wrapped in slashes (`/release-.*/`) are regular expressions
    matched against the whole branch name; anything else is an exact name.
    """
    only: tuple[str, ...] = ()
    ignore: tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.only and not self.ignore


@dataclass
class WorkflowJob:
    """
    A job invocation inside a workflow.

    `name` is unique within the workflow; `job` names the job definition.
    They only differ when the workflow renames an invocation.
    """
    name: str
    job: str
    requires: list[str] = field(default_factory=list)
    context: list[str] = field(default_factory=list)
    filters: BranchFilter = field(default_factory=BranchFilter)


@dataclass
class Workflow:
    name: str
    jobs: list[WorkflowJob]


@dataclass
class Pipeline:
    """A loaded configuration: job definitions plus the workflows that use them."""
    version: str
    jobs: Dict[str, Job]
    workflows: Dict[str, Workflow] = field(default_factory=dict)
    source: Optional[Path] = None


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    kind: str
    status: str
    exit_code: int | None = None
    duration: float = 0.0


@dataclass
class JobResult:
    name: str
    status: str
    build_num: int | None = None
    steps: list[StepResult] = field(default_factory=list)
    error: str | None = None
    reason: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "build_num": self.build_num,
            "error": self.error,
            "reason": self.reason,
            "steps": [
                {
                    "name": s.name,
                    "kind": s.kind,
                    "status": s.status,
                    "exit_code": s.exit_code,
                    "duration": round(s.duration, 3),
                }
                for s in self.steps
            ],
        }


@dataclass
class RunResult:
    run_id: str
    workflow: str | None
    branch: str | None
    run_dir: Path
    jobs: Dict[str, JobResult] = field(default_factory=dict)

    @property
    def statuses(self) -> Dict[str, str]:
        return {name: r.status for name, r in self.jobs.items()}

    @property
    def failed(self) -> bool:
        return any(r.status in (FAILED, BLOCKED, CANCELED) for r in self.jobs.values())
