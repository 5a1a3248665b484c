# config.py
"""
Loading and validation of pipeline configurations.

A pipeline is either a version 2 YAML document (`jobs:` + `workflows:`)
or a Python file built with `graphci.dsl`. Both end up as a
`graphci.model.Pipeline`.
"""
from __future__ import annotations

import re
import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from . import schema
from .dag import build_dag, topo_levels
from .errors import ConfigError, CycleError
from .filters import is_regex
from .model import (
    ATTACH_WORKSPACE,
    CHECKOUT,
    DEFAULT_WORKING_DIRECTORY,
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

CONFIG_CANDIDATES = (
    ".circleci/config.yml",
    ".circleci/config.yaml",
    ".graphci/config.yml",
)

SUPPORTED_VERSIONS = ("2", "2.0")

DEFAULT_STEP_NAMES = {
    CHECKOUT: "Checkout code",
    ATTACH_WORKSPACE: "Attaching Workspace",
    PERSIST_TO_WORKSPACE: "Persisting to Workspace",
    STORE_ARTIFACTS: "Uploading artifacts",
    STORE_TEST_RESULTS: "Uploading test results",
}

_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def find_config(start: str | Path = ".") -> Path:
    """Locate the configuration file under a project directory."""
    root = Path(start)
    for candidate in CONFIG_CANDIDATES:
        path = root / candidate
        if path.exists():
            return path
    raise FileNotFoundError(
        f"No configuration found under {root.resolve()}. Looked for: {', '.join(CONFIG_CANDIDATES)}"
    )


def parse_duration(value: str | int | float) -> float:
    """Parse `30s`, `10m`, `1h`, `1h30m` or a bare number of seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return float(text)
    m = _DURATION_RE.match(text)
    if not text or not m:
        raise ValueError(f"Invalid duration: {value!r}")
    hours, minutes, seconds = (int(g) if g else 0 for g in m.groups())
    return float(hours * 3600 + minutes * 60 + seconds)


def normalize_env(raw: Any) -> Dict[str, str]:
    """`environment` may be a mapping or a list of single-key mappings."""
    if raw is None:
        return {}
    items: Dict[str, Any] = {}
    if isinstance(raw, dict):
        items = dict(raw)
    else:
        for entry in raw:
            items.update(entry)
    return {str(k): "" if v is None else _env_str(v) for k, v in items.items()}


def _env_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


# ----------------------------------------------------------------------
# Steps
# ----------------------------------------------------------------------

def parse_step(raw: Any, *, job: str, index: int) -> Step:
    """Turn one raw `steps:` entry into a Step."""
    where = f"jobs.{job}.steps[{index}]"

    if isinstance(raw, str):
        kind, params = raw, None
    elif isinstance(raw, dict) and len(raw) == 1:
        kind, params = next(iter(raw.items()))
    else:
        raise ConfigError(f"{where}: a step must be a string or a single-key mapping")

    if kind not in schema.STEP_SCHEMAS:
        raise ConfigError(f"{where}: unknown step kind {kind!r}")

    if kind == RUN and isinstance(params, str):
        params = {"command": params}
    if params is None:
        params = {}

    try:
        parsed = schema.STEP_SCHEMAS[kind].model_validate(params)
    except ValidationError as e:
        raise ConfigError(f"{where}: invalid {kind} step", _pydantic_problems(e, prefix=where))

    if kind == RUN:
        name = parsed.name
        if not name:
            lines = parsed.command.strip().splitlines()
            name = lines[0] if lines else RUN
        timeout = None
        if parsed.no_output_timeout is not None:
            try:
                timeout = parse_duration(parsed.no_output_timeout)
            except ValueError as e:
                raise ConfigError(f"{where}: {e}")
        return Step(
            kind=RUN,
            name=name,
            run=parsed.command,
            cwd=parsed.working_directory,
            env=normalize_env(parsed.environment),
            shell=parsed.shell,
            when=parsed.when,
            no_output_timeout=timeout,
        )

    data = parsed.model_dump(exclude={"name", "when"}, exclude_none=True)
    return Step(
        kind=kind,
        name=parsed.name or DEFAULT_STEP_NAMES[kind],
        when=parsed.when,
        data=data,
    )


# ----------------------------------------------------------------------
# Documents
# ----------------------------------------------------------------------

def _pydantic_problems(err: ValidationError, prefix: str = "") -> List[str]:
    problems = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e["loc"])
        if prefix:
            loc = f"{prefix}.{loc}" if loc else prefix
        problems.append(f"{loc}: {e['msg']}")
    return problems


def _build_job(name: str, raw: schema.JobDef, problems: List[str]) -> Job:
    steps: List[Step] = []
    for i, raw_step in enumerate(raw.steps):
        try:
            steps.append(parse_step(raw_step, job=name, index=i))
        except ConfigError as e:
            problems.append(e.message)
            problems.extend(e.problems)

    image = raw.docker[0].image if raw.docker else None
    env = normalize_env(raw.docker[0].environment) if raw.docker else {}
    env.update(normalize_env(raw.environment))

    return Job(
        name=name,
        steps=steps,
        env=env,
        image=image,
        working_directory=raw.working_directory or DEFAULT_WORKING_DIRECTORY,
        shell=raw.shell,
    )


def _build_workflow(name: str, raw: Any, problems: List[str]) -> Optional[Workflow]:
    try:
        parsed = schema.WorkflowDef.model_validate(raw)
    except ValidationError as e:
        problems.extend(_pydantic_problems(e, prefix=f"workflows.{name}"))
        return None

    entries: List[WorkflowJob] = []
    for entry in parsed.jobs:
        if isinstance(entry, str):
            entries.append(WorkflowJob(name=entry, job=entry))
            continue

        job_name, opts = next(iter(entry.items()))
        opts = opts or schema.WorkflowJobDef()
        branches = opts.filters.branches if opts.filters and opts.filters.branches else None
        flt = BranchFilter(
            only=tuple(_as_list(branches.only)) if branches else (),
            ignore=tuple(_as_list(branches.ignore)) if branches else (),
        )
        entries.append(
            WorkflowJob(
                name=opts.name or job_name,
                job=job_name,
                requires=list(opts.requires),
                context=_as_list(opts.context),
                filters=flt,
            )
        )

    return Workflow(name=name, jobs=entries)


def validate_pipeline(pipeline: Pipeline) -> None:
    """
    Cross-reference checks that hold for YAML and DSL pipelines alike.
    Raises ConfigError listing every problem.
    """
    problems: List[str] = []

    for name, job in pipeline.jobs.items():
        if not job.steps:
            problems.append(f"jobs.{name}: job has no steps")

    for wf in pipeline.workflows.values():
        names = [wj.name for wj in wf.jobs]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            problems.append(f"workflows.{wf.name}: duplicate job names {dupes}")
            continue

        for wj in wf.jobs:
            for pattern in (*wj.filters.only, *wj.filters.ignore):
                if not is_regex(pattern):
                    continue
                try:
                    re.compile(pattern[1:-1])
                except re.error as e:
                    problems.append(f"workflows.{wf.name}.{wj.name}: invalid branch pattern {pattern!r}: {e}")

        broken = False
        for wj in wf.jobs:
            if wj.job not in pipeline.jobs:
                problems.append(f"workflows.{wf.name}: job {wj.job!r} is not defined under jobs")
            for req in wj.requires:
                if req not in names:
                    problems.append(
                        f"workflows.{wf.name}.{wj.name}: requires {req!r} which is not part of the workflow"
                    )
                    broken = True
        if broken:
            continue

        try:
            adj, indeg = build_dag(wf.jobs)
            topo_levels(adj, indeg)
        except CycleError as e:
            problems.append(f"workflows.{wf.name}: requires graph has a cycle through {e.nodes}")

    if problems:
        raise ConfigError(f"Invalid configuration{_source_suffix(pipeline.source)}", problems)


def _source_suffix(source: Optional[Path]) -> str:
    return f" ({source})" if source else ""


def parse_config(doc: Any, *, source: Optional[Path] = None) -> Pipeline:
    """Build a Pipeline from an already-parsed YAML document."""
    if not isinstance(doc, dict):
        raise ConfigError(f"Configuration must be a mapping{_source_suffix(source)}")

    try:
        parsed = schema.ConfigDoc.model_validate(doc)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration{_source_suffix(source)}", _pydantic_problems(e))

    version = str(parsed.version)
    if version not in SUPPORTED_VERSIONS:
        raise ConfigError(
            f"Unsupported configuration version {version!r}{_source_suffix(source)}",
            [f"supported versions: {', '.join(SUPPORTED_VERSIONS)}"],
        )

    problems: List[str] = []
    jobs: Dict[str, Job] = {}
    for name, raw_job in parsed.jobs.items():
        jobs[name] = _build_job(name, raw_job, problems)

    workflows: Dict[str, Workflow] = {}
    for name, raw_wf in parsed.workflows.items():
        if name == "version":
            continue
        wf = _build_workflow(name, raw_wf, problems)
        if wf is not None:
            workflows[name] = wf

    if problems:
        raise ConfigError(f"Invalid configuration{_source_suffix(source)}", problems)

    pipeline = Pipeline(version=version, jobs=jobs, workflows=workflows, source=source)
    validate_pipeline(pipeline)
    return pipeline


def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a YAML document or a Python file.

    A Python file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {cfg_path}")

    if cfg_path.suffix in (".yml", ".yaml"):
        try:
            with cfg_path.open("r", encoding="utf-8") as f:
                doc = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse YAML ({cfg_path})", [str(e)])
        return parse_config(doc, source=cfg_path)

    if cfg_path.suffix == ".py":
        return _load_python_pipeline(cfg_path)

    raise ValueError(f"Configuration must be a .yml, .yaml or .py file, got: {cfg_path.name}")


def _load_python_pipeline(path: Path) -> Pipeline:
    module_name = f"graphci_pipeline_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    pipeline = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        pipeline = globals_dict["pipeline"]()
    elif "PIPELINE" in globals_dict:
        pipeline = globals_dict["PIPELINE"]

    if not isinstance(pipeline, Pipeline):
        raise TypeError(
            "Pipeline file must return/define a Pipeline. "
            "Define pipeline() -> Pipeline or PIPELINE = Pipeline(...)."
        )

    pipeline.source = path
    validate_pipeline(pipeline)
    return pipeline


# ----------------------------------------------------------------------
# Dumping (graphci process)
# ----------------------------------------------------------------------

def _dump_env(env: Dict[str, str]) -> Dict[str, str]:
    return dict(sorted(env.items()))


def _dump_step(step: Step) -> Any:
    if step.kind == RUN:
        body: Dict[str, Any] = {"name": step.name, "command": step.run}
        if step.cwd:
            body["working_directory"] = step.cwd
        if step.env:
            body["environment"] = _dump_env(step.env)
        if step.shell:
            body["shell"] = step.shell
        if step.when != "on_success":
            body["when"] = step.when
        if step.no_output_timeout is not None:
            timeout = step.no_output_timeout
            body["no_output_timeout"] = f"{int(timeout)}s" if float(timeout).is_integer() else timeout
        return {RUN: body}

    body = dict(step.data)
    if step.name != DEFAULT_STEP_NAMES[step.kind]:
        body["name"] = step.name
    if step.when != "on_success":
        body["when"] = step.when
    if step.kind == CHECKOUT and not body:
        return CHECKOUT
    return {step.kind: body}


def dump_pipeline(pipeline: Pipeline) -> Dict[str, Any]:
    """Render a pipeline back into a normalized version 2 mapping."""
    jobs: Dict[str, Any] = {}
    for name, job in pipeline.jobs.items():
        body: Dict[str, Any] = {}
        if job.image:
            body["docker"] = [{"image": job.image}]
        if job.env:
            body["environment"] = _dump_env(job.env)
        body["working_directory"] = job.working_directory
        if job.shell:
            body["shell"] = job.shell
        body["steps"] = [_dump_step(s) for s in job.steps]
        jobs[name] = body

    workflows: Dict[str, Any] = {"version": 2}
    for name, wf in pipeline.workflows.items():
        entries = []
        for wj in wf.jobs:
            opts: Dict[str, Any] = {}
            if wj.name != wj.job:
                opts["name"] = wj.name
            if wj.requires:
                opts["requires"] = list(wj.requires)
            if wj.context:
                opts["context"] = list(wj.context)
            if not wj.filters.empty:
                branches: Dict[str, Any] = {}
                if wj.filters.only:
                    branches["only"] = list(wj.filters.only)
                if wj.filters.ignore:
                    branches["ignore"] = list(wj.filters.ignore)
                opts["filters"] = {"branches": branches}
            entries.append({wj.job: opts} if opts else wj.job)
        workflows[name] = {"jobs": entries}

    return {"version": 2, "jobs": jobs, "workflows": workflows}


def dump_yaml(pipeline: Pipeline) -> str:
    return yaml.safe_dump(dump_pipeline(pipeline), sort_keys=False, default_flow_style=False)
