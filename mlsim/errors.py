"""Exception types shared by the mlsim core."""

from __future__ import annotations

from typing import Optional


class MlsimError(RuntimeError):
    """Base class for simulator errors."""


class LoadError(MlsimError):
    """Raised when a script cannot be read or compiled."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class TaskError(MlsimError):
    """Raised on invalid cooperative task operations (e.g. resuming a dead task)."""


class ConfigError(MlsimError):
    """Raised when a configuration file cannot be parsed."""
