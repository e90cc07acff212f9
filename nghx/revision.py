from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import structlog

from .utils import CommandError, CommandRunner, run_command

logger = structlog.get_logger(__name__)


def current_revision(
    checkout: str | Path,
    *,
    runner: CommandRunner = run_command,
    log: Any = None,
) -> Optional[str]:
    """Return the commit checked out in ``checkout``, or None when it cannot be determined."""

    log = log or logger
    try:
        result = runner(["git", "rev-parse", "HEAD"], cwd=checkout)
    except CommandError as exc:
        log.warning("revision_unavailable", checkout=str(checkout), reason=exc.summary)
        return None
    except OSError as exc:
        log.warning("revision_unavailable", checkout=str(checkout), reason=str(exc))
        return None

    revision = (result.stdout or "").strip()
    if not revision:
        log.warning("revision_unavailable", checkout=str(checkout), reason="empty output")
        return None
    return revision
