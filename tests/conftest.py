from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest
import structlog

from nghx.config import Settings
from nghx.utils import CommandError

Stdout = Union[str, Callable[[], str]]


class FakeRunner:
    """Stands in for ``run_command``; replies are matched on command prefixes."""

    def __init__(self) -> None:
        self.calls: List[Tuple[List[str], Optional[Path]]] = []
        self._replies: List[Tuple[Tuple[str, ...], int, Stdout, Optional[Callable]]] = []

    def on(
        self,
        *prefix: str,
        stdout: Stdout = "",
        returncode: int = 0,
        action: Optional[Callable[[List[str], Optional[Path]], None]] = None,
    ) -> "FakeRunner":
        self._replies.append((prefix, returncode, stdout, action))
        return self

    def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: Any = None,
        env: Any = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        command = list(command)
        cwd_path = Path(cwd) if cwd is not None else None
        self.calls.append((command, cwd_path))
        for prefix, returncode, stdout, action in reversed(self._replies):
            if tuple(command[: len(prefix)]) != prefix:
                continue
            if action is not None:
                action(command, cwd_path)
            if returncode != 0 and check:
                raise CommandError(command, returncode, "", f"{command[0]} failed")
            text = stdout() if callable(stdout) else stdout
            return subprocess.CompletedProcess(command, returncode, text, "")
        return subprocess.CompletedProcess(command, 0, "", "")

    @property
    def commands(self) -> List[List[str]]:
        return [command for command, _cwd in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(tuple(command[: len(prefix)]) == prefix for command in self.commands)

    def count(self, *prefix: str) -> int:
        return sum(1 for command in self.commands if tuple(command[: len(prefix)]) == prefix)

    def cwd_of(self, *prefix: str) -> Optional[Path]:
        for command, cwd in self.calls:
            if tuple(command[: len(prefix)]) == prefix:
                return cwd
        return None


class RecordingLog:
    """Minimal structlog-compatible logger that keeps every event."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def _record(self, level: str, event: str, **kw: Any) -> None:
        self.events.append({"level": level, "event": event, **kw})

    def debug(self, event: str, **kw: Any) -> None:
        self._record("debug", event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._record("info", event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._record("warning", event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._record("error", event, **kw)

    def named(self, event: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.events if entry["event"] == event]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def clone_into(files: Dict[str, str]) -> Callable[[List[str], Optional[Path]], None]:
    """Action for a fake ``git clone`` that materialises ``files`` in the target directory."""

    def _clone(command: List[str], _cwd: Optional[Path]) -> None:
        destination = Path(command[-1])
        destination.mkdir(parents=True)
        (destination / ".git").mkdir()
        for relative, content in files.items():
            path = destination / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    return _clone


def write_manifest(directory: Path, **manifest: Any) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(manifest))
    return path


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def log() -> RecordingLog:
    return RecordingLog()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(cache_root=tmp_path / "cache", lock=False)
