from .dsl import job, run, checkout, attach_workspace, persist_to_workspace, store_artifacts, store_test_results, use, workflow, pipeline, matrix
from .config import load_pipeline
from .runner import run_workflow, run_job
from .model import Job, Step, Workflow, WorkflowJob, Pipeline

__all__ = [
    "job",
    "run",
    "checkout",
    "attach_workspace",
    "persist_to_workspace",
    "store_artifacts",
    "store_test_results",
    "use",
    "workflow",
    "pipeline",
    "matrix",
    "load_pipeline",
    "run_workflow",
    "run_job",
    "Job",
    "Step",
    "Workflow",
    "WorkflowJob",
    "Pipeline",
]
