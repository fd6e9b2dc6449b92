"""
Custom exception classes for the GitLab merge request migration tool.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Classification of a failed remote or git operation."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    NO_DIFF = "no_diff"
    REF_NOT_FOUND = "ref_not_found"
    OTHER = "other"


class MigrationError(Exception):
    """Base exception for migration errors."""


class OperationCancelledError(MigrationError):
    """Raised when the run was interrupted by the user."""


class GatewayError(MigrationError):
    """A destination API call failed.

    ``operation`` describes the call including the id it belongs to, e.g.
    ``"close PR #12"``.
    """

    kind: ErrorKind = ErrorKind.OTHER

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation: str = operation


class RateLimitedError(GatewayError):
    """The destination rejected the call because of rate limiting."""

    kind = ErrorKind.RATE_LIMITED


class RetriesExhaustedError(GatewayError):
    """A transient failure persisted through every retry attempt."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(operation, f"failed after {attempts} attempts: {last_error}")
        self.attempts: int = attempts
        self.last_error: BaseException = last_error


class NoDiffError(GatewayError):
    """The destination refused to open a pull request between identical branches."""

    kind = ErrorKind.NO_DIFF


class ApiError(GatewayError):
    """Any other, non-retryable API failure."""


class GitCommandError(MigrationError):
    """A git command exited with a non-zero status."""

    kind: ErrorKind = ErrorKind.OTHER

    def __init__(self, command: str, stderr: str) -> None:
        super().__init__(f"git {command} failed: {stderr.strip()}")
        self.command: str = command
        self.stderr: str = stderr


class RefNotFoundError(GitCommandError):
    """The requested commit is unknown locally and the source refuses to serve it."""

    kind = ErrorKind.REF_NOT_FOUND
