"""Choose the command that runs a prepared package.

Resolution is an ordered list of strategies. Each one either returns an
ExecutionPlan or None; the first plan wins. The last strategy always answers,
so resolution never fails.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from .install import load_manifest
from .models import ExecutionPlan

logger = structlog.get_logger(__name__)

SCRIPT_RUNTIME = "node"
SCRIPT_EXTENSIONS = (".js", ".mjs", ".cjs")
PACKAGE_RUNNER = "npx"

Strategy = Callable[[Path, Sequence[str], Dict[str, Any]], Optional[ExecutionPlan]]


def package_binary(arguments: Sequence[str] = ()) -> ExecutionPlan:
    """``npx .`` runs the binary the package in the working directory declares."""

    return ExecutionPlan(PACKAGE_RUNNER, (".", *arguments))


def _bin_for_package_name(manifest: Dict[str, Any]) -> Optional[str]:
    bin_entry = manifest.get("bin")
    name = manifest.get("name")
    if isinstance(bin_entry, dict) and isinstance(name, str) and isinstance(bin_entry.get(name), str):
        return bin_entry[name]
    return None


def _string_bin(manifest: Dict[str, Any]) -> Optional[str]:
    bin_entry = manifest.get("bin")
    return bin_entry if isinstance(bin_entry, str) and bin_entry else None


def _main_entry(manifest: Dict[str, Any]) -> Optional[str]:
    main = manifest.get("main")
    return main if isinstance(main, str) and main else None


ENTRY_SELECTORS: Tuple[Tuple[str, Callable[[Dict[str, Any]], Optional[str]]], ...] = (
    ("bin-by-name", _bin_for_package_name),
    ("bin", _string_bin),
    ("main", _main_entry),
)


def select_entry(manifest: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """Return ``(source, relative_path)`` of the first declared entry point."""

    for source, selector in ENTRY_SELECTORS:
        entry = selector(manifest)
        if entry:
            return source, entry
    return None


class ExecutionResolver:
    def __init__(self, log: Any = None) -> None:
        self.log = log or logger
        self.strategies: List[Strategy] = [
            self._explicit_arguments,
            self._manifest_script,
            self._package_binary,
        ]

    def resolve(self, directory: str | Path, arguments: Sequence[str] = ()) -> ExecutionPlan:
        directory = Path(directory)
        manifest = load_manifest(directory, log=self.log) if not arguments else {}
        for strategy in self.strategies:
            plan = strategy(directory, arguments, manifest)
            if plan is not None:
                self.log.info("execution_plan", command=plan.describe(), strategy=strategy.__name__.lstrip("_"))
                return plan
        raise AssertionError("the package binary strategy always resolves")  # pragma: no cover

    def _explicit_arguments(
        self, directory: Path, arguments: Sequence[str], manifest: Dict[str, Any]
    ) -> Optional[ExecutionPlan]:
        if not arguments:
            return None
        return package_binary(arguments)

    def _manifest_script(
        self, directory: Path, arguments: Sequence[str], manifest: Dict[str, Any]
    ) -> Optional[ExecutionPlan]:
        selected = select_entry(manifest)
        if selected is None:
            self.log.info("entry_point_missing", name=manifest.get("name"))
            return None

        source, entry = selected
        script_path = (directory / entry).resolve()
        exists = script_path.exists()
        self.log.info("entry_point", source=source, entry=entry, path=str(script_path), exists=exists)
        if not exists:
            return None
        if not entry.endswith(SCRIPT_EXTENSIONS):
            self.log.info("entry_point_not_script", entry=entry)
            return None
        return ExecutionPlan(SCRIPT_RUNTIME, (str(script_path),))

    def _package_binary(
        self, directory: Path, arguments: Sequence[str], manifest: Dict[str, Any]
    ) -> Optional[ExecutionPlan]:
        return package_binary(arguments)
