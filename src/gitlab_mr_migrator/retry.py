"""Retry, backoff and error classification for destination API calls.

Every call into GitHub goes through :meth:`RetryingCaller.call`. Failures are
classified exactly once, here, into :class:`~.exceptions.ErrorKind`, and
re-raised as the matching :class:`~.exceptions.GatewayError` subclass so that
callers only ever match on our own exception types:

- rate limiting fails immediately as ``RateLimitedError``,
- a "no commits between" rejection fails immediately as ``NoDiffError``,
- 5xx responses and transport failures are retried with exponential backoff
  and jitter, ending in ``RetriesExhaustedError``,
- anything else fails immediately as ``ApiError``.

Waiting between attempts observes the run's cancellation event.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, TypeVar

import requests
from github import GithubException, RateLimitExceededException

from .exceptions import (
    ApiError,
    ErrorKind,
    NoDiffError,
    OperationCancelledError,
    RateLimitedError,
    RetriesExhaustedError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_STATUSES: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

# Messages GitHub uses when a pull request would have no commits
_NO_DIFF_MESSAGES: Final[tuple[str, ...]] = (
    "no commits between",
    "at least one commit is required",
    "no changes between",
    "there isn't anything to compare",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry ceiling and backoff shape. Delays are in seconds."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.2


def calculate_backoff(attempt: int, policy: RetryPolicy, rng: random.Random | None = None) -> float:
    """Delay before retrying after the given zero-based attempt.

    The exponential delay is clamped to ``policy.max_delay`` first, then moved
    by up to ``policy.jitter`` of itself in either direction.
    """
    rng = rng or random.Random()
    delay = min(policy.initial_delay * policy.factor**attempt, policy.max_delay)
    return delay + delay * policy.jitter * rng.uniform(-1.0, 1.0)


def _error_messages(exc: GithubException) -> list[str]:
    """Collect the top-level and per-field messages of a GitHub error response."""
    messages: list[str] = []
    data: Any = exc.data
    if isinstance(data, dict):
        if isinstance(data.get("message"), str):
            messages.append(data["message"])
        for error in data.get("errors") or []:
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                messages.append(error["message"])
            elif isinstance(error, str):
                messages.append(error)
    elif isinstance(data, str):
        messages.append(data)
    return messages


def is_no_diff_error(exc: GithubException) -> bool:
    """Check if a 422 from pull request creation means the branches have no diff."""
    if exc.status != 422:
        return False
    return any(m.lower().startswith(_NO_DIFF_MESSAGES) for m in _error_messages(exc))


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a library exception onto the error taxonomy."""
    if isinstance(exc, RateLimitExceededException):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, GithubException):
        if exc.status == 429:
            return ErrorKind.RATE_LIMITED
        if exc.status == 403 and any("rate limit" in m.lower() for m in _error_messages(exc)):
            return ErrorKind.RATE_LIMITED
        if is_no_diff_error(exc):
            return ErrorKind.NO_DIFF
        if exc.status in _TRANSIENT_STATUSES:
            return ErrorKind.TRANSIENT
        return ErrorKind.OTHER
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return ErrorKind.TRANSIENT
    return ErrorKind.OTHER


class RetryingCaller:
    """Runs remote calls under a :class:`RetryPolicy`."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.policy: RetryPolicy = policy or RetryPolicy()
        self.cancel_event: threading.Event = cancel_event or threading.Event()
        self._rng: random.Random = rng or random.Random()

    def wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the run is cancelled first."""
        if self.cancel_event.wait(max(seconds, 0.0)):
            msg = "Migration cancelled"
            raise OperationCancelledError(msg)

    def call(self, operation: str, func: Callable[[], T]) -> T:
        """Invoke ``func`` with retries.

        Args:
            operation: Description used in logs and error messages, e.g. "close PR #3"
            func: The remote call

        Raises:
            RateLimitedError, NoDiffError, ApiError: Non-retryable failures
            RetriesExhaustedError: Transient failure on every attempt
            OperationCancelledError: Cancelled while waiting to retry
        """
        max_attempts = self.policy.max_attempts
        last_error: BaseException | None = None

        for attempt in range(max_attempts):
            try:
                return func()
            except (GithubException, requests.RequestException) as e:
                kind = classify_error(e)
                if kind is ErrorKind.RATE_LIMITED:
                    raise RateLimitedError(operation, str(e)) from e
                if kind is ErrorKind.NO_DIFF:
                    raise NoDiffError(operation, str(e)) from e
                if kind is not ErrorKind.TRANSIENT:
                    raise ApiError(operation, str(e)) from e

                last_error = e
                if attempt + 1 >= max_attempts:
                    break
                delay = calculate_backoff(attempt, self.policy, self._rng)
                logger.info(
                    f"Retryable error during {operation}: {e}. "
                    f"Retrying in {delay:.1f}s (attempt {attempt + 1}/{max_attempts})"
                )
                self.wait(delay)

        assert last_error is not None  # max_attempts >= 1
        raise RetriesExhaustedError(operation, max_attempts, last_error) from last_error
