"""Retry policy shared by every storage and network call.

One policy object, parameterized by attempts, backoff and a
retryable-error predicate, wraps each call site.  Call sites never loop on
their own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from contractforge.config import ForgeConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERROR_NAMES = frozenset(
    {
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "InternalServerError",
        "RequestTimeout",
        "NetworkingError",
        "SlowDown",
        "RequestTimeTooSkewed",
    }
)


def _error_code(exc: BaseException) -> str:
    """The service error code of a botocore ``ClientError``, if present."""
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        return str(response.get("Error", {}).get("Code", ""))
    return ""


def is_retryable_error(exc: BaseException) -> bool:
    """Default predicate: transient service and network failures only.

    Matches on the exception class name (and its bases) or on the service
    error code.  Connection resets and timeouts from the network stack count
    as transient too.
    """
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    names = {cls.__name__ for cls in type(exc).__mro__}
    names.add(_error_code(exc))
    return bool(names & RETRYABLE_ERROR_NAMES)


class RetryPolicy:
    """Exponential backoff around an async operation.

    Parameters
    ----------
    max_attempts:
        Total tries including the first.  Must be at least 1.
    base_delay:
        Seconds to wait after the first failure.
    backoff_factor:
        Multiplier applied to the delay after each further failure.
    is_retryable:
        Predicate deciding whether an exception is worth another attempt.
        Non-retryable exceptions propagate immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        backoff_factor: float = 2.0,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.is_retryable = is_retryable
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: ForgeConfig) -> RetryPolicy:
        return cls(
            max_attempts=cfg.retry_max_attempts,
            base_delay=cfg.retry_base_delay_seconds,
            backoff_factor=cfg.retry_backoff_factor,
        )

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1, base_delay=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""
        return self.base_delay * (self.backoff_factor ** (attempt - 1))

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "operation") -> T:
        """Await ``operation()`` until it succeeds or attempts run out."""
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    label, attempt, self.max_attempts, exc, delay,
                )
                await self._sleep(delay)
                attempt += 1
