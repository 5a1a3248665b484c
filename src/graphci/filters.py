# filters.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict

from .dag import topo_order
from .model import BranchFilter, Workflow


@dataclass(frozen=True)
class Selection:
    selected: bool
    reason: str


def is_regex(pattern: str) -> bool:
    return len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/")


def pattern_matches(pattern: str, branch: str) -> bool:
    if is_regex(pattern):
        return re.fullmatch(pattern[1:-1], branch) is not None
    return pattern == branch


def branch_matches(flt: BranchFilter, branch: str | None) -> bool:
    """
    `ignore` wins over `only`. With `only` present the branch must match
    one of its patterns. An empty filter matches every branch.
    """
    if flt.empty:
        return True
    if branch is None:
        # No branch known (detached HEAD): only unfiltered jobs run
        return False
    if any(pattern_matches(p, branch) for p in flt.ignore):
        return False
    if flt.only:
        return any(pattern_matches(p, branch) for p in flt.only)
    return True


def select_jobs(workflow: Workflow, branch: str | None) -> Dict[str, Selection]:
    """
    Decide which workflow jobs run on `branch`.

    A job is selected when its own filter passes and every job it requires
    is selected. Returned in topological order.
    """
    by_name = {wj.name: wj for wj in workflow.jobs}
    out: Dict[str, Selection] = {}

    for name in topo_order(workflow.jobs):
        wj = by_name[name]

        if not branch_matches(wj.filters, branch):
            if any(pattern_matches(p, branch or "") for p in wj.filters.ignore):
                reason = f"branch {branch!r} ignored by {list(wj.filters.ignore)}"
            else:
                reason = f"branch {branch!r} not in {list(wj.filters.only)}"
            out[name] = Selection(False, reason)
            continue

        missing = [r for r in wj.requires if not out[r].selected]
        if missing:
            out[name] = Selection(False, f"requires job(s) not run: {missing}")
            continue

        if wj.filters.empty:
            out[name] = Selection(True, "no filters")
        else:
            out[name] = Selection(True, f"branch {branch!r} matches filters")

    return out
