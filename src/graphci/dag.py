# dag.py
from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Set, Tuple

from .errors import ConfigError, CycleError
from .model import WorkflowJob


def build_dag(jobs: Iterable[WorkflowJob]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Turn workflow entries into the `requires` graph.

    Returns (adj, indeg): adj maps a job to the jobs waiting on it, indeg
    counts the distinct requirements of each job. Raises ConfigError on
    duplicate entry names or a requirement outside `jobs`.
    """
    entries = list(jobs)
    dupes = sorted(n for n, count in Counter(wj.name for wj in entries).items() if count > 1)
    if dupes:
        raise ConfigError(f"Duplicate job names found: {dupes}")

    adj: Dict[str, Set[str]] = {wj.name: set() for wj in entries}
    missing = [
        f"{wj.name!r} requires missing job {req!r}"
        for wj in entries
        for req in wj.requires
        if req not in adj
    ]
    if missing:
        raise ConfigError(f"Unknown requirements (known jobs: {sorted(adj)})", missing)

    for wj in entries:
        for req in set(wj.requires):
            adj[req].add(wj.name)
    indeg = {wj.name: len(set(wj.requires)) for wj in entries}
    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Group jobs into stages: every job of a stage only requires jobs from
    earlier stages, so a stage can run in parallel. Names are sorted
    within a stage.
    """
    remaining = dict(indeg)
    stage = sorted(n for n, d in remaining.items() if d == 0)
    levels: List[List[str]] = []
    done = 0

    while stage:
        levels.append(stage)
        done += len(stage)
        unlocked: List[str] = []
        for node in stage:
            for child in adj.get(node, ()):
                remaining[child] -= 1
                if remaining[child] == 0:
                    unlocked.append(child)
        stage = sorted(unlocked)

    if done != len(remaining):
        raise CycleError(sorted(n for n, d in remaining.items() if d > 0))
    return levels


def topo_order(jobs: Iterable[WorkflowJob]) -> List[str]:
    """Flattened topological order; stable across runs."""
    adj, indeg = build_dag(jobs)
    return [name for level in topo_levels(adj, indeg) for name in level]


def ancestors(jobs: Iterable[WorkflowJob], name: str) -> Set[str]:
    """All jobs `name` transitively requires."""
    by_name = {j.name: j for j in jobs}
    seen: Set[str] = set()
    stack = list(by_name[name].requires)
    while stack:
        cur = stack.pop()
        if cur in seen:
            continue
        seen.add(cur)
        if cur in by_name:
            stack.extend(by_name[cur].requires)
    return seen
