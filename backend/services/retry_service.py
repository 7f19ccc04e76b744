"""Bounded retry policy shared by the content API and push/rebase paths."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from backend.exceptions import ConflictError, PushRejectedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an operation a bounded number of times on selected errors.

    ``max_attempts`` counts every attempt including the first one. Errors not
    listed in ``retry_on`` propagate immediately.
    """

    max_attempts: int
    retry_on: tuple[type[BaseException], ...]

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """Return True when ``exc`` raised by 1-based ``attempt`` warrants another try."""
        return isinstance(exc, self.retry_on) and attempt < self.max_attempts

    def call(
        self,
        operation: Callable[[int], T],
        *,
        before_retry: Callable[[BaseException], None] | None = None,
        name: str = "operation",
    ) -> T:
        """Run ``operation(attempt)`` until it succeeds or the policy gives up.

        ``before_retry`` runs between a retryable failure and the next attempt;
        an exception it raises aborts the loop. The last error is re-raised
        once attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return operation(attempt)
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                logger.warning(
                    "%s failed on attempt %d/%d: %s",
                    name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if before_retry is not None:
                    before_retry(exc)
            attempt += 1

    async def acall(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        name: str = "operation",
    ) -> T:
        """Async variant of :meth:`call`."""
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                logger.warning(
                    "%s failed on attempt %d/%d: %s",
                    name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
            attempt += 1


# Read-token / write cycle on the hosted content API.
CONFLICT_RETRY = RetryPolicy(max_attempts=2, retry_on=(ConflictError,))

# Push, and on rejection rebase onto upstream and push once more.
PUSH_RETRY = RetryPolicy(max_attempts=2, retry_on=(PushRejectedError,))
