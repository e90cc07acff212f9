from __future__ import annotations

import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from .config import Settings
from .errors import CloneError
from .ledger import FreshnessLedger
from .models import RepositoryTarget
from .utils import CommandError, CommandRunner, ensure_directory, remove_tree, run_command

logger = structlog.get_logger(__name__)


class SyncOutcome(str, Enum):
    CLONED = "cloned"
    REFRESHED = "refreshed"
    REUSED_WINDOW = "reused-window"
    REUSED_FLAG = "reused-flag"
    REUSED_DEGRADED = "reused-degraded"


class RepositorySynchronizer:
    """Materialises a repository branch under the cache root.

    An absent checkout is cloned (failure is fatal and leaves nothing behind).
    A present checkout is reused when the caller asks for no update or the last
    refresh is inside the freshness window; otherwise it is fetched and hard
    reset to the remote tip. A failed refresh keeps the existing checkout.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        runner: CommandRunner = run_command,
        ledger: Optional[FreshnessLedger] = None,
        clock: Callable[[], float] = time.time,
        log: Any = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.log = log or logger
        self.ledger = ledger or FreshnessLedger(self.log)
        self.clock = clock
        self.last_outcome: Optional[SyncOutcome] = None

    def checkout_path(self, target: RepositoryTarget) -> Path:
        return self.settings.cache_root / target.cache_key

    def lock_path(self, target: RepositoryTarget) -> Path:
        checkout = self.checkout_path(target)
        return checkout.parent / f"{checkout.name}.lock"

    def prepare(self, target: RepositoryTarget, *, no_update: bool = False) -> Path:
        repo_dir = self.checkout_path(target)
        self.log.info("repository_cache", path=str(repo_dir))

        if repo_dir.exists():
            self.last_outcome = self._reuse_or_refresh(target, repo_dir, no_update=no_update)
        else:
            self._clone(target, repo_dir)
            self.last_outcome = SyncOutcome.CLONED
        return repo_dir

    def _reuse_or_refresh(self, target: RepositoryTarget, repo_dir: Path, *, no_update: bool) -> SyncOutcome:
        if no_update:
            self.log.info("update_skipped", reason="no-update flag")
            return SyncOutcome.REUSED_FLAG

        if self.ledger.was_recently_pulled(repo_dir, self.clock(), self.settings.freshness_window_s):
            self.log.info("update_skipped", reason="recently pulled")
            return SyncOutcome.REUSED_WINDOW

        try:
            revision = self._refresh(target, repo_dir)
        except CommandError as exc:
            self.log.error("update_failed", error=exc.summary, fallback="cached checkout")
            return SyncOutcome.REUSED_DEGRADED

        self.log.info("repository_updated", branch=target.branch, revision=revision)
        self.ledger.write_pull_marker(repo_dir, self.clock())
        return SyncOutcome.REFRESHED

    def _refresh(self, target: RepositoryTarget, repo_dir: Path) -> str:
        self.log.info("repository_fetch", branch=target.branch)
        self.runner(["git", "fetch", "--depth=1", "origin", target.branch], cwd=repo_dir)
        fetched = self.runner(["git", "rev-parse", f"origin/{target.branch}"], cwd=repo_dir)
        revision = (fetched.stdout or "").strip()
        if not revision:
            raise CommandError(["git", "rev-parse", f"origin/{target.branch}"], 0, "", "no revision printed")
        self.runner(["git", "reset", "--hard", revision], cwd=repo_dir)
        return revision

    def _clone(self, target: RepositoryTarget, repo_dir: Path) -> None:
        clone_url = target.clone_url(self.settings.remote_base)
        self.log.info("repository_clone", url=clone_url, branch=target.branch)
        try:
            ensure_directory(repo_dir.parent)
            self.runner(
                ["git", "clone", "--branch", target.branch, "--depth=1", clone_url, str(repo_dir)],
                cwd=self.settings.cache_root,
            )
        except (CommandError, OSError) as exc:
            reason = exc.summary if isinstance(exc, CommandError) else str(exc)
            self.log.error("clone_failed", url=clone_url, error=reason)
            cleanup_error = remove_tree(repo_dir)
            if cleanup_error is not None:
                self.log.error("clone_cleanup_failed", path=str(repo_dir), error=str(cleanup_error))
            raise CloneError(f"Failed to clone repository {clone_url} branch {target.branch}") from exc

        self.log.info("repository_cloned", path=str(repo_dir))
        self.ledger.write_pull_marker(repo_dir, self.clock())
