"""
Bounded retries for database calls.

Only transient failures (dropped connections, timeouts, an unreachable
server) are retried, with exponential backoff and jitter. Authentication,
syntax and constraint errors fail on the first attempt.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog
from sqlalchemy.exc import DBAPIError, DataError, IntegrityError, InterfaceError, OperationalError, ProgrammingError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

logger = structlog.get_logger(__name__)

T = TypeVar("T")

NON_TRANSIENT_MARKERS = (
    "password authentication failed",
    "authentication failed",
    "permission denied",
    "syntax error",
    "invalid input syntax",
    "violates",
    "does not exist",
)

TRANSIENT_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "terminating connection",
    "could not connect",
    "reset by peer",
    "econnrefused",
    "econnreset",
    "enotfound",
    "too many clients",
    "server closed",
)


def is_transient_error(error: BaseException) -> bool:
    """True when retrying the same call may succeed"""

    if isinstance(error, (IntegrityError, ProgrammingError, DataError)):
        return False

    message = str(error).lower()
    if any(marker in message for marker in NON_TRANSIENT_MARKERS):
        return False

    if isinstance(error, (ConnectionError, asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    if isinstance(error, (OperationalError, InterfaceError)):
        return True

    return any(marker in message for marker in TRANSIENT_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff: float = 0.2
    max_backoff: float = 2.0


def wait_retry_backoff(policy: RetryPolicy):
    """Exponential backoff from ``initial_backoff`` capped at ``max_backoff``, plus jitter"""

    return (
        wait_exponential(multiplier=policy.initial_backoff, max=policy.max_backoff)
        + wait_random(0, policy.initial_backoff)
    )


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "db_retry",
            operation=operation,
            attempt=state.attempt_number,
            error=str(error) if error else None,
        )
    return before_sleep


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    operation_name: str = "db"
) -> T:
    """Await ``operation()`` retrying transient failures; the last error is re-raised"""

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(policy.max_attempts, 1)),
        wait=wait_retry_backoff(policy),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry(operation_name),
        reraise=True,
    ):
        with attempt:
            result = await operation()
    return result
