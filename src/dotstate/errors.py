"""Exception hierarchy for dotstate."""

from __future__ import annotations

import shlex
from typing import Sequence


class DotstateError(RuntimeError):
    """Base class for errors raised by dotstate."""


class UnsupportedEntryError(DotstateError):
    """Raised when the destination holds an entry kind dotstate cannot manage."""

    def __init__(self, path: str, mode: int) -> None:
        super().__init__(f"{path}: unsupported entry type (mode {mode:o})")
        self.path = path
        self.mode = mode


class ParseError(DotstateError):
    """Raised when tool output, persisted data, or a version string is malformed."""


class MissingConfigError(DotstateError):
    """Raised when a required configuration value is absent."""


class PromptError(DotstateError):
    """Raised when a password cannot be read."""


class CommandError(DotstateError):
    """Raised when a child process fails."""

    def __init__(self, args: Sequence[str], cause: object) -> None:
        super().__init__(f"{shlex.join(args)}: {cause}")
        self.args_ = tuple(args)
        self.cause = cause


class ApplyError(DotstateError):
    """Raised when applying a single target fails."""

    def __init__(self, target_name: str, cause: BaseException) -> None:
        super().__init__(f"{target_name}: {cause}")
        self.target_name = target_name
        self.cause = cause


class NotManagedError(DotstateError):
    """Raised when an argument does not name an entry in the source state."""


class ReconcileCancelled(DotstateError):
    """Raised when a reconciliation pass is cancelled between entries."""
