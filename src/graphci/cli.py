# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Optional

import click

from . import settings
from .config import CONFIG_CANDIDATES, dump_yaml, find_config, load_pipeline
from .contexts import ContextStore
from .dag import build_dag, topo_levels
from .errors import ConfigError
from .filters import select_jobs
from .git_facts.git import current_branch, is_repo
from .model import Pipeline
from .runner import resolve_workflow, run_job, run_workflow
from .ui.console import Console, get_console, set_console


def discover_config(config_arg: str | None) -> Path:
    """
    Discover the configuration file from argument or default locations.

    Raises:
        SystemExit: If no configuration can be found
    """
    console = get_console()

    if config_arg:
        path = Path(config_arg)
        if not path.exists():
            console.print_error(
                "Configuration file not found",
                f"Could not find configuration file: {config_arg}",
                suggestion="Specify an existing file:\n  graphci run --config .circleci/config.yml",
            )
            sys.exit(1)
        return path

    try:
        return find_config(".")
    except FileNotFoundError:
        console.print_error(
            "No configuration found",
            "Could not find a configuration file.",
            details=["Looked for:", *(f"  {c}" for c in CONFIG_CANDIDATES)],
            suggestion="Create one or specify it explicitly:\n  graphci run --config path/to/config.yml",
        )
        sys.exit(1)


def _load(config_arg: str | None) -> Pipeline:
    console = get_console()
    path = discover_config(config_arg)
    try:
        return load_pipeline(path)
    except ConfigError as e:
        console.print_error("Invalid configuration", e.message, details=e.problems)
        sys.exit(1)
    except Exception as e:
        console.print_error(
            "Failed to load configuration",
            f"Could not load configuration from {path}",
            details=[str(e)],
        )
        if console.debug:
            console.print_exception(e)
        sys.exit(1)


def _resolve_branch(branch: str | None) -> Optional[str]:
    if branch:
        return branch
    if not is_repo("."):
        return None
    try:
        return current_branch(".")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def _parse_env(pairs: tuple[str, ...]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        key, value = pair.split("=", 1)
        env[key] = value
    return env


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and step output)",
)
def cli(debug):
    """graphci: run version 2 CI pipelines locally as a job graph."""
    set_console(Console(debug=debug))


@cli.command()
@click.option("--config", "config_path", default=None, help="Configuration file (defaults to .circleci/config.yml)")
def validate(config_path):
    """Validate a configuration file."""
    console = get_console()
    pipeline = _load(config_path)
    console.print_info(f"Configuration {pipeline.source} is valid")
    console.print_info(f"  Jobs: {len(pipeline.jobs)}")
    console.print_info(f"  Workflows: {len(pipeline.workflows)}")


@cli.command()
@click.option("--config", "config_path", default=None, help="Configuration file (defaults to .circleci/config.yml)")
@click.option("--workflow", "workflow_name", default=None, help="Workflow to plan (defaults to the only workflow)")
@click.option("--branch", default=None, help="Branch to evaluate filters against (defaults to the current branch)")
def plan(config_path, workflow_name, branch):
    """Show the stages a workflow would run on a branch."""
    console = get_console()
    pipeline = _load(config_path)
    try:
        wf = resolve_workflow(pipeline, workflow_name)
    except KeyError as e:
        console.print_error("Unknown workflow", str(e.args[0]))
        sys.exit(1)

    branch = _resolve_branch(branch)
    selection = select_jobs(wf, branch)
    selected = [wj for wj in wf.jobs if selection[wj.name].selected]

    console.print_header(f"Workflow '{wf.name}' on branch {branch or '(detached)'}")
    adj, indeg = build_dag(selected)
    for index, level in enumerate(topo_levels(adj, indeg), start=1):
        console.print_stage(index, level)

    skipped = {n: s for n, s in selection.items() if not s.selected}
    if skipped:
        console.print_header("Not run")
        for name, sel in skipped.items():
            console.print_plan_job_skipped(name, sel.reason)
    if not selected:
        console.print_info("\nNo jobs would run on this branch.")


@cli.command()
@click.option("--config", "config_path", default=None, help="Configuration file (defaults to .circleci/config.yml)")
def process(config_path):
    """Print the normalized configuration."""
    pipeline = _load(config_path)
    click.echo(dump_yaml(pipeline), nl=False)


@cli.command()
@click.option("--config", "config_path", default=None, help="Configuration file (defaults to .circleci/config.yml)")
@click.option("--workflow", "workflow_name", default=None, help="Workflow to run (defaults to the only workflow)")
@click.option("--job", "job_name", default=None, help="Run a single job instead of a workflow")
@click.option("--branch", default=None, help="Branch name for filters and CIRCLE_BRANCH (defaults to the current branch)")
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Number of parallel jobs")
@click.option(
    "--executor",
    type=click.Choice(["local", "docker"]),
    default=settings.EXECUTOR,
    show_default=True,
    help="Run steps on this machine or inside the job's docker image",
)
@click.option("--state-dir", default=settings.STATE_DIR, show_default=True, help="Where runs, workspaces and artifacts are kept")
@click.option("--contexts", "contexts_file", default=settings.CONTEXTS_FILE, show_default=True, help="YAML file with context variables")
@click.option("--env", "-e", "env_pairs", multiple=True, help="Extra environment variable KEY=VALUE (repeatable)")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop scheduling new jobs after first failure")
def run(config_path, workflow_name, job_name, branch, workers, executor, state_dir, contexts_file, env_pairs, fail_fast):
    """Run a workflow (or a single job)."""
    console = get_console()
    pipeline = _load(config_path)
    extra_env = _parse_env(env_pairs)
    branch = _resolve_branch(branch)

    try:
        contexts = ContextStore.load(contexts_file)
    except ConfigError as e:
        console.print_error("Invalid contexts file", e.message, details=e.problems)
        sys.exit(1)

    try:
        if job_name:
            if job_name not in pipeline.jobs:
                console.print_error(
                    "Unknown job",
                    f"No job named {job_name!r}",
                    details=[f"Known jobs: {', '.join(sorted(pipeline.jobs))}"],
                )
                sys.exit(1)
            console.print_run_started(
                project=Path(".").resolve().name,
                workflow=f"(single job) {job_name}",
                branch=branch,
                job_count=1,
            )
            result = run_job(
                pipeline,
                job_name,
                project_dir=".",
                state_dir=state_dir,
                branch=branch,
                executor=executor,
                contexts=contexts,
                extra_env=extra_env,
            )
        else:
            try:
                wf = resolve_workflow(pipeline, workflow_name)
            except KeyError as e:
                console.print_error("Unknown workflow", str(e.args[0]))
                sys.exit(1)
            console.print_run_started(
                project=Path(".").resolve().name,
                workflow=wf.name,
                branch=branch,
                job_count=len(wf.jobs),
            )
            result = run_workflow(
                pipeline,
                wf.name,
                project_dir=".",
                state_dir=state_dir,
                branch=branch,
                executor=executor,
                max_workers=workers,
                fail_fast=fail_fast,
                contexts=contexts,
                extra_env=extra_env,
            )

        console.print_results(result.statuses)
        console.print_info(f"\nRun directory: {result.run_dir}")

        if result.failed:
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
