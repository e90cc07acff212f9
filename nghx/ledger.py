"""Per-checkout staleness markers.

Two small text files live inside a cached checkout:

- ``.nghx-last-pull``: epoch milliseconds of the last successful clone or refresh.
- ``.nghx-last-install-sha``: the revision the installed dependencies belong to.

Both are a best-effort cache. Reads that fail return None (treated as stale by
callers) and writes that fail are logged and dropped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import structlog

PULL_MARKER = ".nghx-last-pull"
INSTALL_MARKER = ".nghx-last-install-sha"

logger = structlog.get_logger(__name__)


class FreshnessLedger:
    def __init__(self, log: Any = None) -> None:
        self.log = log or logger

    def _read(self, path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        try:
            text = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            self.log.warning("marker_read_failed", marker=str(path), error=str(exc))
            return None
        return text or None

    def _write(self, path: Path, value: str) -> bool:
        try:
            path.write_text(value, encoding="utf-8")
        except OSError as exc:
            self.log.warning("marker_write_failed", marker=str(path), error=str(exc))
            return False
        self.log.debug("marker_written", marker=str(path), value=value)
        return True

    def read_pull_marker(self, checkout: str | Path) -> Optional[float]:
        """Return the last refresh time in epoch seconds."""

        raw = self._read(Path(checkout) / PULL_MARKER)
        if raw is None:
            return None
        try:
            return int(raw) / 1000.0
        except ValueError:
            self.log.warning("marker_unparseable", marker=PULL_MARKER, value=raw)
            return None

    def write_pull_marker(self, checkout: str | Path, now: float) -> bool:
        return self._write(Path(checkout) / PULL_MARKER, str(int(now * 1000)))

    def read_install_marker(self, checkout: str | Path) -> Optional[str]:
        return self._read(Path(checkout) / INSTALL_MARKER)

    def write_install_marker(self, checkout: str | Path, revision: str) -> bool:
        return self._write(Path(checkout) / INSTALL_MARKER, revision)

    def was_recently_pulled(self, checkout: str | Path, now: float, window_s: float) -> bool:
        last_pull = self.read_pull_marker(checkout)
        if last_pull is None:
            return False
        elapsed = now - last_pull
        self.log.info("last_pull", elapsed_minutes=round(elapsed / 60.0, 2))
        return elapsed < window_s
