from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .config import Settings
from .errors import BuildError, InstallError
from .ledger import FreshnessLedger
from .models import InstallCommand
from .revision import current_revision
from .utils import CommandError, CommandRunner, run_command

logger = structlog.get_logger(__name__)

MANIFEST = "package.json"

_NPM_FLAGS = ("--prefer-offline", "--no-audit", "--progress=false")

# Checked in order; the first lock file present decides the package manager.
_LOCKFILE_COMMANDS = (
    ("pnpm-lock.yaml", InstallCommand("pnpm", "pnpm", ("install", "--prefer-offline", "--no-frozen-lockfile"))),
    ("yarn.lock", InstallCommand("yarn", "yarn", ("install", "--prefer-offline"))),
    ("package-lock.json", InstallCommand("npm", "npm", ("ci", *_NPM_FLAGS))),
)
_DEFAULT_INSTALL = InstallCommand("npm", "npm", ("install", *_NPM_FLAGS))

BUILD_COMMAND = ("npm", "run", "build")


def select_install_command(directory: str | Path) -> InstallCommand:
    directory = Path(directory)
    for lockfile, command in _LOCKFILE_COMMANDS:
        if (directory / lockfile).exists():
            return command
    return _DEFAULT_INSTALL


def needs_install(installed_revision: Optional[str], revision: Optional[str]) -> bool:
    """Installed dependencies are trusted only when they match the exact revision checked out."""

    if installed_revision is None or revision is None:
        return True
    return installed_revision.strip() != revision.strip()


def load_manifest(directory: str | Path, log: Any = None) -> Dict[str, Any]:
    """Parse ``package.json``; a missing or malformed manifest yields an empty mapping."""

    log = log or logger
    manifest_path = Path(directory) / MANIFEST
    if not manifest_path.is_file():
        log.info("manifest_missing", path=str(manifest_path))
        return {}
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        log.error("manifest_unreadable", path=str(manifest_path), error=str(exc))
        return {}
    if not isinstance(data, dict):
        log.error("manifest_unreadable", path=str(manifest_path), error="top level is not an object")
        return {}
    return data


def declares_build(manifest: Dict[str, Any]) -> bool:
    scripts = manifest.get("scripts")
    return isinstance(scripts, dict) and bool(scripts.get("build"))


class DependencyStage:
    """Installs dependencies when they are stale and runs the declared build script."""

    def __init__(
        self,
        settings: Settings,
        *,
        runner: CommandRunner = run_command,
        ledger: Optional[FreshnessLedger] = None,
        log: Any = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.log = log or logger
        self.ledger = ledger or FreshnessLedger(self.log)

    def install(self, directory: str | Path, repo_dir: str | Path) -> bool:
        """Install into ``directory`` if needed; returns whether an install ran.

        The revision is read from ``repo_dir`` (the checkout root), the marker
        lives in ``directory`` (which is the root or a sub-path of it).
        """

        directory = Path(directory)
        command = select_install_command(directory)
        self.log.info("package_manager", manager=command.manager, command=" ".join(command.argv))

        installed = self.ledger.read_install_marker(directory)
        revision = current_revision(repo_dir, runner=self.runner, log=self.log)
        if not needs_install(installed, revision):
            self.log.info("install_skipped", revision=revision)
            return False

        self.log.info("install_started", installed=installed, revision=revision)
        try:
            self.runner(command.argv, cwd=directory)
        except CommandError as exc:
            self.log.error("install_failed", error=exc.summary)
            raise InstallError(f"Dependency installation failed in {directory}: {exc.summary}") from exc
        self.log.info("install_completed")

        if revision is None:
            self.log.warning("install_marker_skipped", reason="revision unavailable")
        else:
            self.ledger.write_install_marker(directory, revision)
        return True

    def build(self, directory: str | Path) -> bool:
        """Run ``npm run build`` when the manifest declares one; returns whether a build completed."""

        directory = Path(directory)
        manifest = load_manifest(directory, log=self.log)
        if not declares_build(manifest):
            self.log.info("build_skipped", reason="no build script")
            return False

        self.log.info("build_started", command=" ".join(BUILD_COMMAND))
        try:
            self.runner(list(BUILD_COMMAND), cwd=directory)
        except CommandError as exc:
            if self.settings.build_failure == "continue":
                self.log.error("build_failed", error=exc.summary, policy="continue")
                return False
            self.log.error("build_failed", error=exc.summary, policy="fatal")
            raise BuildError(f"Build script failed in {directory}: {exc.summary}") from exc
        self.log.info("build_completed")
        return True
