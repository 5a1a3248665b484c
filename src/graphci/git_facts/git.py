# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def is_repo(path: str | Path = ".") -> bool:
    """True if `path` is inside a Git work tree (and git is installed)."""
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


def repo_root(path: str | Path = ".") -> Path:
    """
    Return the absolute path to the root of the Git repository containing `path`.

    `git rev-parse --show-toplevel` prints the repo root directory
    regardless of where the command is run from inside the repo.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=path))


def head_sha(path: str | Path = ".") -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=path)


def current_branch(path: str | Path = ".") -> Optional[str]:
    """
    Name of the checked-out branch, or None on a detached HEAD.

    Branch filters of a workflow are evaluated against this value.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=path)
    return None if name == "HEAD" else name


def clone(source: str | Path, dest: str | Path, ref: Optional[str] = None) -> None:
    """
    Clone `source` into `dest` and check out `ref` (defaults to the
    source's HEAD). Only committed content is cloned.
    """
    _git(["clone", "--quiet", str(source), str(dest)])
    if ref:
        _git(["checkout", "--quiet", ref], cwd=dest)
