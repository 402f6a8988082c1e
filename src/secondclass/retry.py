"""Opt-in retries for callers.

Nothing in this package retries on its own. Callers that want to ride out
flaky gateway connections can wrap a coroutine function:

    signed = await retrying(automator.sign_all_eligible, attempts=3, wait_seconds=5)

Only TransientError (i.e. NetworkError) is retried; authentication and
protocol failures are raised immediately.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from secondclass.errors import TransientError
from secondclass.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retrying(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    wait_seconds: float = 5.0,
) -> T:
    """Await ``func()`` until it succeeds or ``attempts`` transient failures occur.

    Raises:
        TransientError: The last failure, once attempts are exhausted.
        PermanentError: Immediately, without retrying.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type(TransientError),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.info(
                    "retrying_after_transient_error",
                    attempt=attempt.retry_state.attempt_number,
                )
            return await func()
    raise AssertionError("unreachable")  # pragma: no cover
