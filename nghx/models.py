from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

DEFAULT_BRANCH = "main"
DEFAULT_REMOTE_BASE = "https://github.com"


@dataclass(frozen=True)
class RepositoryTarget:
    """A branch (and optional sub-directory) of a GitHub repository."""

    owner: str
    name: str
    branch: str = DEFAULT_BRANCH
    sub_path: str = ""

    @property
    def safe_branch(self) -> str:
        return self.branch.replace("/", "_").replace("\\", "_")

    @property
    def cache_key(self) -> Path:
        return Path(self.owner) / self.name / self.safe_branch

    def clone_url(self, remote_base: str = DEFAULT_REMOTE_BASE) -> str:
        return f"{remote_base.rstrip('/')}/{self.owner}/{self.name}.git"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "branch": self.branch,
            "sub_path": self.sub_path,
        }


@dataclass(frozen=True)
class ExecutionPlan:
    """Concrete command line launched as the final step of an invocation."""

    command: str
    arguments: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.arguments]

    def describe(self) -> str:
        return " ".join(self.argv)

    def to_dict(self) -> Dict[str, Any]:
        return {"command": self.command, "arguments": list(self.arguments)}


@dataclass(frozen=True)
class InstallCommand:
    """Dependency install invocation chosen from the lock files in a directory."""

    manager: str
    command: str
    arguments: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.arguments]


@dataclass
class StageResult:
    """Summary emitted by a pipeline stage."""

    name: str
    status: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.name, "status": self.status, "details": self.details}
