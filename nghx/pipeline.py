from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from .config import Settings
from .errors import ExecutionError
from .install import DependencyStage
from .ledger import FreshnessLedger
from .lock import CheckoutLock
from .logging import configure_logging
from .models import ExecutionPlan, RepositoryTarget, StageResult
from .resolver import ExecutionResolver
from .sync import RepositorySynchronizer, SyncOutcome
from .utils import CommandRunner, launch, run_command

logger = structlog.get_logger(__name__)

Launcher = Callable[..., int]


class Stage(Enum):
    SYNC = auto()
    INSTALL = auto()
    BUILD = auto()
    RESOLVE = auto()
    EXECUTE = auto()

    @classmethod
    def ordered(cls) -> Iterable["Stage"]:
        return (
            cls.SYNC,
            cls.INSTALL,
            cls.BUILD,
            cls.RESOLVE,
            cls.EXECUTE,
        )


@dataclass
class PipelineContext:
    target: RepositoryTarget
    settings: Settings
    arguments: Tuple[str, ...] = ()
    no_update: bool = False
    repo_dir: Optional[Path] = None
    plan: Optional[ExecutionPlan] = None
    results: List[StageResult] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.arguments = tuple(self.arguments)

    @property
    def execution_dir(self) -> Path:
        if self.repo_dir is None:
            raise RuntimeError("Sync stage must run before the execution directory is known.")
        if self.target.sub_path:
            return self.repo_dir / self.target.sub_path
        return self.repo_dir


class RunPipeline:
    """Sequential orchestrator: sync, install, build, resolve, then launch.

    Preparation runs under the per-checkout lock; the program itself is launched
    after the lock is released.
    """

    def __init__(
        self,
        context: PipelineContext,
        *,
        runner: CommandRunner = run_command,
        launcher: Launcher = launch,
        clock: Callable[[], float] = time.time,
        log: Any = None,
    ) -> None:
        self.context = context
        self.launcher = launcher
        self.log = log or logger
        ledger = FreshnessLedger(self.log)
        self.synchronizer = RepositorySynchronizer(
            context.settings, runner=runner, ledger=ledger, clock=clock, log=self.log
        )
        self.dependencies = DependencyStage(context.settings, runner=runner, ledger=ledger, log=self.log)
        self.resolver = ExecutionResolver(log=self.log)
        self._handlers: Dict[Stage, Callable[[], StageResult]] = {
            Stage.SYNC: self._stage_sync,
            Stage.INSTALL: self._stage_install,
            Stage.BUILD: self._stage_build,
            Stage.RESOLVE: self._stage_resolve,
            Stage.EXECUTE: self._stage_execute,
        }

    @property
    def results(self) -> List[StageResult]:
        return self.context.results

    def run_stage(self, stage: Stage) -> StageResult:
        result = self._handlers[stage]()
        self.context.results.append(result)
        return result

    def prepare(self) -> ExecutionPlan:
        """Run every stage up to RESOLVE and return the plan to launch."""

        settings = self.context.settings
        lock_path = self.synchronizer.lock_path(self.context.target)
        with CheckoutLock(lock_path, enabled=settings.lock, log=self.log):
            for stage in Stage.ordered():
                if stage is Stage.EXECUTE:
                    break
                self.run_stage(stage)
        assert self.context.plan is not None
        return self.context.plan

    def run(self) -> int:
        """Prepare and launch; the program's exit code is returned unchanged."""

        self.prepare()
        result = self.run_stage(Stage.EXECUTE)
        return int(result.details["exit_code"])

    def _stage_sync(self) -> StageResult:
        repo_dir = self.synchronizer.prepare(self.context.target, no_update=self.context.no_update)
        self.context.repo_dir = repo_dir
        outcome = self.synchronizer.last_outcome
        status = "degraded" if outcome is SyncOutcome.REUSED_DEGRADED else "completed"
        return StageResult(
            "sync",
            status,
            {"repo_path": str(repo_dir), "outcome": outcome.value if outcome else None},
        )

    def _execution_dir(self) -> Path:
        execution_dir = self.context.execution_dir
        if not execution_dir.is_dir():
            raise ExecutionError(f"Target path does not exist: {execution_dir}")
        return execution_dir

    def _stage_install(self) -> StageResult:
        execution_dir = self._execution_dir()
        self.log.info("execution_path", path=str(execution_dir))
        installed = self.dependencies.install(execution_dir, self.context.repo_dir)
        return StageResult("install", "completed" if installed else "skipped", {"path": str(execution_dir)})

    def _stage_build(self) -> StageResult:
        execution_dir = self._execution_dir()
        built = self.dependencies.build(execution_dir)
        return StageResult("build", "completed" if built else "skipped", {"path": str(execution_dir)})

    def _stage_resolve(self) -> StageResult:
        plan = self.resolver.resolve(self._execution_dir(), self.context.arguments)
        self.context.plan = plan
        return StageResult("resolve", "completed", plan.to_dict())

    def _stage_execute(self) -> StageResult:
        plan = self.context.plan
        if plan is None:
            raise RuntimeError("Resolve stage must run before execution.")
        execution_dir = self._execution_dir()
        self.log.info("execution_started", command=plan.describe(), cwd=str(execution_dir))
        exit_code = self.launcher(plan.argv, cwd=execution_dir)
        self.log.info("execution_finished", exit_code=exit_code)
        return StageResult("execute", "completed", {"exit_code": exit_code, "command": plan.argv})


def run_repository(
    target: RepositoryTarget,
    settings: Settings,
    arguments: Sequence[str] = (),
    *,
    no_update: bool = False,
    **kwargs: Any,
) -> int:
    """Run one repository target and return the program's exit code.

    Callers that have not configured structlog get the stderr setup of
    ``configure_logging`` so that stdout belongs to the program.
    """

    if not structlog.is_configured():
        configure_logging()
    context = PipelineContext(target=target, settings=settings, arguments=tuple(arguments), no_update=no_update)
    return RunPipeline(context, **kwargs).run()
