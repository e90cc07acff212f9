from __future__ import annotations

from pathlib import Path
from types import TracebackType
from typing import IO, Any, Optional, Type

import structlog

try:  # pragma: no cover - fcntl is missing on Windows only
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = structlog.get_logger(__name__)


class CheckoutLock:
    """Exclusive advisory lock serialising invocations that share a cache key.

    The lock file sits beside the checkout directory rather than inside it, so
    removing a half-cloned checkout never removes the lock being held.
    """

    def __init__(self, path: str | Path, *, enabled: bool = True, log: Any = None) -> None:
        self.path = Path(path)
        self.enabled = enabled
        self.log = log or logger
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if not self.enabled or self.held:
            return
        if fcntl is None:
            self.log.warning("lock_unsupported", lock=str(self.path))
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        try:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                self.log.info("lock_waiting", lock=str(self.path))
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError:
            handle.close()
            raise
        self._handle = handle
        self.log.debug("lock_acquired", lock=str(self.path))

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        self.log.debug("lock_released", lock=str(self.path))

    def __enter__(self) -> "CheckoutLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
