# hosts.py
"""
Where a job's steps execute.

LocalHost runs commands on this machine; DockerHost runs them inside one
container per job. Both expose the same small surface to the step
executor: run a command, translate paths, and move files in and out.
"""
from __future__ import annotations

import os
import posixpath
import shlex
import shutil
import signal
import subprocess
import tempfile
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from .errors import CIError

TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
}

OUTPUT_TAIL_LINES = 200


@dataclass
class CommandResult:
    exit_code: int
    output: str
    timed_out: bool = False


def _stream(
    argv: List[str],
    *,
    cwd: Optional[str],
    env: Optional[Dict[str, str]],
    no_output_timeout: Optional[float],
    on_line: Callable[[str], None],
) -> CommandResult:
    """
    Run argv, feeding every output line (stdout + stderr) to on_line.

    The process group is killed when no line arrives for
    `no_output_timeout` seconds.
    """
    proc = subprocess.Popen(
        argv,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
        start_new_session=True,
    )

    timed_out = threading.Event()
    timer: Optional[threading.Timer] = None

    def _kill() -> None:
        timed_out.set()
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _arm() -> Optional[threading.Timer]:
        if not no_output_timeout:
            return None
        t = threading.Timer(no_output_timeout, _kill)
        t.daemon = True
        t.start()
        return t

    tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
    timer = _arm()
    try:
        assert proc.stdout is not None
        for line in proc.stdout:
            if timer is not None:
                timer.cancel()
            line = line.rstrip("\n")
            tail.append(line)
            on_line(line)
            timer = _arm()
        proc.wait()
    finally:
        if timer is not None:
            timer.cancel()

    return CommandResult(
        exit_code=proc.returncode,
        output="\n".join(tail),
        timed_out=timed_out.is_set(),
    )


class LocalHost:
    """
    Runs steps on the local machine.

    Each job gets its own HOME (`<job_dir>/home`), so `~` in paths and
    commands resolves inside the job directory instead of the user's home.
    """
    def __init__(self, job_dir: Path):
        self.job_dir = Path(job_dir).resolve()
        self.home = self.job_dir / "home"

    def start(self) -> None:
        self.home.mkdir(parents=True, exist_ok=True)

    def stop(self) -> None:
        pass

    def default_shell(self) -> str:
        bash = shutil.which("bash")
        if bash:
            return f"{bash} -eo pipefail"
        return "/bin/sh -e"

    def expand(self, path: str, cwd: str | None = None) -> str:
        """Resolve `~` against the job home and relative paths against cwd (or the home)."""
        if path == "~" or path.startswith("~/"):
            path = str(self.home) + path[1:]
        if not os.path.isabs(path):
            path = os.path.join(cwd or str(self.home), path)
        return os.path.normpath(path)

    def base_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env["HOME"] = str(self.home)
        return env

    def run(
        self,
        command: str,
        *,
        cwd: str,
        env: Dict[str, str],
        shell: str,
        no_output_timeout: Optional[float],
        on_line: Callable[[str], None],
    ) -> CommandResult:
        Path(cwd).mkdir(parents=True, exist_ok=True)
        full_env = self.base_env()
        full_env.update(env)
        argv = [*shlex.split(shell), "-c", command]
        return _stream(argv, cwd=cwd, env=full_env, no_output_timeout=no_output_timeout, on_line=on_line)

    @contextmanager
    def fetch(self, path: str) -> Iterator[Path]:
        """Yield a local path holding `path`'s content (it may not exist)."""
        yield Path(path)

    def push(self, local_dir: Path, target: str) -> None:
        """Copy the contents of local_dir into target."""
        dest = Path(target)
        dest.mkdir(parents=True, exist_ok=True)
        shutil.copytree(local_dir, dest, dirs_exist_ok=True, symlinks=True)


def _check_docker_available(job: str) -> None:
    """Check if Docker is available, raise helpful error if not."""
    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise CIError(
            kind="docker_unavailable",
            job=job,
            step=None,
            message="Docker is not available",
            details={"hint": TOOL_HINTS["docker"]},
        )


class DockerHost:
    """
    Runs steps inside a long-lived container started from the job's
    primary image. Files move in and out with `docker cp`.
    """
    def __init__(self, job: str, image: str, container_name: str):
        self.job = job
        self.image = image
        self.container = container_name
        self.home = "/root"
        self._has_bash = False
        self._started = False

    def _docker(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["docker", *args],
            capture_output=True,
            text=True,
            check=check,
        )

    def start(self) -> None:
        _check_docker_available(self.job)
        proc = self._docker(
            "run", "-d", "--name", self.container,
            "--entrypoint", "/bin/sh",
            self.image, "-c", "tail -f /dev/null",
            check=False,
        )
        if proc.returncode != 0:
            raise CIError(
                kind="container_start_failed",
                job=self.job,
                step=None,
                message=f"Could not start container from image {self.image}",
                details={"stderr": proc.stderr.strip()},
            )
        self._started = True

        home = self._docker("exec", self.container, "/bin/sh", "-c", 'printf %s "$HOME"', check=False)
        if home.returncode == 0 and home.stdout.strip():
            self.home = home.stdout.strip()
        bash = self._docker("exec", self.container, "/bin/sh", "-c", "command -v bash", check=False)
        self._has_bash = bash.returncode == 0 and bool(bash.stdout.strip())

    def stop(self) -> None:
        if self._started:
            self._docker("rm", "-f", self.container, check=False)
            self._started = False

    def default_shell(self) -> str:
        if self._has_bash:
            return "/bin/bash -eo pipefail"
        return "/bin/sh -e"

    def expand(self, path: str, cwd: str | None = None) -> str:
        if path == "~" or path.startswith("~/"):
            path = self.home + path[1:]
        if not posixpath.isabs(path):
            path = posixpath.join(cwd or self.home, path)
        return posixpath.normpath(path)

    def run(
        self,
        command: str,
        *,
        cwd: str,
        env: Dict[str, str],
        shell: str,
        no_output_timeout: Optional[float],
        on_line: Callable[[str], None],
    ) -> CommandResult:
        self._docker("exec", self.container, "mkdir", "-p", cwd, check=False)
        argv = ["docker", "exec", "-w", cwd]
        for key, value in env.items():
            argv.extend(["-e", f"{key}={value}"])
        argv.append(self.container)
        argv.extend([*shlex.split(shell), "-c", command])
        return _stream(argv, cwd=None, env=None, no_output_timeout=no_output_timeout, on_line=on_line)

    @contextmanager
    def fetch(self, path: str) -> Iterator[Path]:
        with tempfile.TemporaryDirectory(prefix="graphci-fetch-") as tmp:
            dest = Path(tmp) / (posixpath.basename(path.rstrip("/")) or "root")
            self._docker("cp", f"{self.container}:{path}", str(dest), check=False)
            yield dest

    def push(self, local_dir: Path, target: str) -> None:
        self._docker("exec", self.container, "mkdir", "-p", target)
        self._docker("cp", f"{local_dir}/.", f"{self.container}:{target}")
