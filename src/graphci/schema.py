# schema.py
"""Pydantic schema of a version 2 configuration document, before normalization."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Environment = Union[Dict[str, Any], List[Dict[str, Any]]]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RunStep(_Strict):
    command: str
    name: Optional[str] = None
    working_directory: Optional[str] = None
    environment: Optional[Environment] = None
    shell: Optional[str] = None
    when: Literal["on_success", "on_fail", "always"] = "on_success"
    no_output_timeout: Optional[Union[str, int, float]] = None


class CheckoutStep(_Strict):
    name: Optional[str] = None
    path: Optional[str] = None
    when: Literal["on_success", "on_fail", "always"] = "on_success"


class PersistToWorkspaceStep(_Strict):
    root: str
    paths: List[str] = Field(min_length=1)
    name: Optional[str] = None
    when: Literal["on_success", "on_fail", "always"] = "on_success"


class AttachWorkspaceStep(_Strict):
    at: str
    name: Optional[str] = None
    when: Literal["on_success", "on_fail", "always"] = "on_success"


class StoreArtifactsStep(_Strict):
    path: str
    destination: Optional[str] = None
    name: Optional[str] = None
    when: Literal["on_success", "on_fail", "always"] = "on_success"


class StoreTestResultsStep(_Strict):
    path: str
    name: Optional[str] = None
    when: Literal["on_success", "on_fail", "always"] = "on_success"


STEP_SCHEMAS: Dict[str, type[BaseModel]] = {
    "run": RunStep,
    "checkout": CheckoutStep,
    "persist_to_workspace": PersistToWorkspaceStep,
    "attach_workspace": AttachWorkspaceStep,
    "store_artifacts": StoreArtifactsStep,
    "store_test_results": StoreTestResultsStep,
}


class DockerImage(BaseModel):
    # auth, user, entrypoint etc. are accepted and ignored
    model_config = ConfigDict(extra="allow")

    image: str
    environment: Optional[Environment] = None


class JobDef(_Strict):
    steps: List[Any] = Field(min_length=1)
    docker: Optional[List[DockerImage]] = None
    environment: Optional[Environment] = None
    working_directory: Optional[str] = None
    shell: Optional[str] = None
    resource_class: Optional[str] = None
    parallelism: Optional[int] = None


class BranchFilterDef(_Strict):
    only: Optional[Union[str, List[str]]] = None
    ignore: Optional[Union[str, List[str]]] = None


class FiltersDef(_Strict):
    branches: Optional[BranchFilterDef] = None


class WorkflowJobDef(_Strict):
    name: Optional[str] = None
    requires: List[str] = Field(default_factory=list)
    context: Optional[Union[str, List[str]]] = None
    filters: Optional[FiltersDef] = None


class WorkflowDef(_Strict):
    jobs: List[Union[str, Dict[str, Optional[WorkflowJobDef]]]] = Field(min_length=1)

    @field_validator("jobs")
    @classmethod
    def _single_key_entries(cls, value):
        for entry in value:
            if isinstance(entry, dict) and len(entry) != 1:
                raise ValueError(f"workflow job entries must have exactly one key, got {sorted(entry)}")
        return value


class ConfigDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: Union[int, float, str]
    jobs: Dict[str, JobDef] = Field(min_length=1)
    workflows: Dict[str, Any] = Field(default_factory=dict)
