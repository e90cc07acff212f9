"""nghx exception hierarchy.

Every failure that aborts an invocation inherits from NghxError so the CLI can
report it with a single catch clause.
"""


class NghxError(Exception):
    """Base exception for all nghx errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class InvalidURLError(NghxError):
    """The repository URL does not match the supported GitHub form."""


class ConfigError(NghxError):
    """Invalid configuration file, environment value or flag."""


class CloneError(NghxError):
    """First-time checkout of a repository failed."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class InstallError(NghxError):
    """Dependency installation failed."""


class BuildError(NghxError):
    """The declared build script failed."""


class ExecutionError(NghxError):
    """The resolved program could not be started."""
