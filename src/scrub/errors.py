"""Exception hierarchy shared by the reset engine and its collaborators."""

from __future__ import annotations


class ScrubError(Exception):
    """Base class for all errors raised by scrub."""


class PreconditionError(ScrubError):
    """Raised when a reset cannot start at all."""


class ApplicationNotFound(PreconditionError):
    """The application is unknown or its data directory was not found."""

    def __init__(self, app_name: str) -> None:
        super().__init__(f"Application '{app_name}' not found")
        self.app_name = app_name


class ApplicationRunning(PreconditionError):
    """The application is running and the safety check is enabled."""

    def __init__(self, app_name: str) -> None:
        super().__init__(f"Application '{app_name}' is currently running, please close it first")
        self.app_name = app_name


class BackupError(ScrubError):
    """Raised when a backup cannot be created or restored."""


class DatabaseError(ScrubError):
    """Raised when an embedded database cannot be opened or read."""


class ConfigError(ScrubError):
    """Raised when the configuration file cannot be read or parsed."""
