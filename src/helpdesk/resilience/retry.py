"""Retry policy for thread resolution, built on tenacity.

Resolution failures are retried with exponential backoff and jitter; after
the last attempt the original exception is re-raised so the ingestion
layer can leave the message for the next webhook redelivery or sync pass.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from helpdesk.domain.errors import ThreadResolutionError

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])


def _log_final_failure(retry_state: RetryCallState) -> None:
    """Log the exhausted retry and re-raise the last exception."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    operation = getattr(retry_state.fn, "_operation", "unknown") if retry_state.fn else "unknown"

    logger.error(
        "resolution_retries_exhausted",
        operation=operation,
        attempts=retry_state.attempt_number,
        exception=str(exception),
    )
    if exception is not None:
        raise exception


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt."""
    operation = getattr(retry_state.fn, "_operation", "unknown") if retry_state.fn else "unknown"
    logger.warning(
        "retrying_resolution",
        operation=operation,
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def resilient_resolution(
    operation: str,
    *,
    max_attempts: int = 3,
    wait_initial: float = 1.0,
    wait_max: float = 30.0,
) -> Callable[[F], F]:
    """Create a retry decorator for a resolution call.

    Only :class:`ThreadResolutionError` is retried; anything else is a bug
    and propagates immediately.  Works for sync and async callables.

    Args:
        operation: Name used in retry logs.
        max_attempts: Total attempts, including the first.
        wait_initial: Initial backoff in seconds (``0`` disables waiting).
        wait_max: Upper bound of a single backoff.

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        func._operation = operation  # type: ignore[attr-defined]

        wrapped = retry(
            retry=retry_if_exception_type(ThreadResolutionError),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential_jitter(
                initial=wait_initial, max=wait_max, jitter=wait_initial
            ),
            before_sleep=_before_sleep_log,
            retry_error_callback=_log_final_failure,
            reraise=True,
        )(func)

        return wrapped

    return decorator
