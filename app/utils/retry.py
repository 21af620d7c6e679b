"""
Retry policy for KiotViet page fetches.
Categorizes errors as transient (retryable) or permanent (non-retryable) and
builds the tenacity policy used by the product sync loop.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from app.integrations.kiotviet.api_client import RemoteApiError

logger = structlog.get_logger()

T = TypeVar("T")


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception represents a transient error that should be retried.

    Args:
        exception: The exception to check

    Returns:
        True if error is transient (retryable), False otherwise
    """
    if isinstance(exception, RemoteApiError):
        # status_code 0 means the request never got a response
        if exception.status_code == 0:
            return True
        if exception.status_code == 429:
            return True
        return 500 <= exception.status_code < 600

    # Network/connection errors are transient
    if isinstance(exception, httpx.TransportError):
        return True

    if isinstance(exception, TimeoutError):
        return True

    # Default to non-retryable for unknown errors
    return False


async def call_with_page_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    delay_seconds: float = 5.0,
    log_context: dict[str, Any] | None = None,
) -> T:
    """
    Call an async function, retrying transient failures with a fixed pause.

    Args:
        func: Coroutine function (e.g. a page fetch)
        *args: Positional arguments passed to func on every attempt
        max_attempts: Total attempts including the first one
        delay_seconds: Pause between attempts
        log_context: Extra fields attached to retry log lines

    Returns:
        Result of func

    Raises:
        The last exception once attempts are exhausted or the error is permanent
    """
    context = log_context or {}

    def _log_retry_attempt(retry_state: RetryCallState):
        if retry_state.outcome is not None:
            logger.warning(
                "Retrying after transient error",
                attempt=retry_state.attempt_number,
                exception=str(retry_state.outcome.exception()),
                wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
                **context,
            )

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_exception(is_transient_error),
        reraise=True,
        before_sleep=_log_retry_attempt,
    ):
        with attempt:
            return await func(*args)
    raise AssertionError("unreachable")  # AsyncRetrying either returns or reraises
