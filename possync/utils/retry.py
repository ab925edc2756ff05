"""
Backoff for single Square / Toast requests.
Only one page or call is retried at a time; pagination never restarts.
"""

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from possync.exceptions import ProviderAPIError

logger = structlog.get_logger()

T = TypeVar("T")


class TransientError(Exception):
    """Provider call worth repeating: no response, 429 or 5xx."""


class PermanentError(Exception):
    """Provider call that will fail the same way again."""


def is_transient_error(exception: Exception) -> bool:
    if isinstance(exception, TransientError):
        return True

    if isinstance(exception, PermanentError):
        return False

    if isinstance(exception, httpx.TransportError | TimeoutError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        return _is_transient_status(exception.response.status_code)

    if isinstance(exception, ProviderAPIError):
        # 0: the provider never answered
        return exception.status_code == 0 or _is_transient_status(exception.status_code)

    return False


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 60.0,
):
    """
    Wrap a provider coroutine so transient failures are retried with exponential
    backoff. The last TransientError is re-raised once attempts run out; anything
    else comes back as PermanentError chained to the original exception.

    Usage:
        fetch = retry_with_backoff(max_attempts=3)(client.list_catalog_page)
    """

    def retry_decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @retry(
            stop=stop_after_attempt(max(1, max_attempts)),
            wait=wait_exponential(multiplier=multiplier, min=initial_delay, max=max_delay),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
            before_sleep=_log_retry_attempt,
        )
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except (TransientError, PermanentError):
                raise
            except Exception as e:
                if is_transient_error(e):
                    raise TransientError(f"Transient error: {str(e)}") from e
                raise PermanentError(f"Permanent error: {str(e)}") from e

        return wrapper

    return retry_decorator


def _log_retry_attempt(retry_state: RetryCallState):
    if retry_state.outcome is not None:
        exception = retry_state.outcome.exception()
        logger.warning(
            "Retrying provider request",
            attempt=retry_state.attempt_number,
            exception=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )
