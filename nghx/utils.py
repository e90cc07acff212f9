from __future__ import annotations

import os
import shutil
import signal
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Sequence

from .errors import ExecutionError


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}\nSTDOUT:{stdout}\nSTDERR:{stderr}"
        )

    @property
    def summary(self) -> str:
        output = (self.stderr or self.stdout or "").strip()
        tail = output.splitlines()[-1] if output else "no output"
        return f"{' '.join(self.command)} exited with {self.returncode}: {tail}"


CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


def _merged_env(env: Mapping[str, str] | None) -> dict:
    process_env = os.environ.copy()
    if env:
        process_env.update(env)
    return process_env


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command with captured output and return the completed process.

    A missing executable is reported as a ``CommandError`` with exit code 127 so
    callers only need to handle one failure type.
    """

    try:
        result = subprocess.run(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=_merged_env(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise CommandError(command, 127, "", str(exc)) from exc
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


def launch(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Run a command attached to the caller's terminal and return its exit code.

    Ctrl-C reaches the child through the terminal; nghx ignores it while waiting
    so the child decides how to exit and its status is returned unchanged.
    """

    try:
        process = subprocess.Popen(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=_merged_env(env),
        )
    except FileNotFoundError as exc:
        raise ExecutionError(f"Executable not found: {command[0]}") from exc
    # Ignored only after the child exists; it must not inherit SIG_IGN.
    with _interrupts_ignored():
        return process.wait()


@contextmanager
def _interrupts_ignored() -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_tree(path: str | Path) -> Optional[OSError]:
    """Delete a directory tree, returning the error instead of raising it."""

    path = Path(path)
    if not path.exists():
        return None
    try:
        shutil.rmtree(path)
    except OSError as exc:
        return exc
    return None
