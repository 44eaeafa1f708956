"""
Retry logic with exponential backoff for remote conversation calls.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import httpx

from spacesync.exceptions import (
    AuthenticationRequiredError,
    RemoteServiceError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_status_codes: set[int] = field(
        default_factory=lambda: {408, 429, 500, 502, 503, 504}
    )


class RetryableError(RemoteServiceError):
    """Error that should trigger a retry."""


class NonRetryableError(RemoteServiceError):
    """Error that should not be retried."""


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay before next retry using exponential backoff.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Up to 25% jitter
        delay += delay * 0.25 * random.random()

    return delay


def with_async_retry(
    config: Optional[RetryConfig] = None,
    idempotent: bool = True,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator adding retry logic to async functions.

    If config is None, the decorated method's ``self.retry_config`` is used.
    Authentication, not-found and other non-retryable errors propagate
    immediately.

    Requests that are not idempotent (appends and creates) are only retried
    when the service cannot have acted on them: the connection was never
    established, or the service answered 429.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            retry_config = config
            if retry_config is None:
                retry_config = getattr(args[0], "retry_config", None) or RetryConfig()

            last_exception: Optional[Exception] = None

            for attempt in range(retry_config.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    if not idempotent and e.status_code != 429:
                        raise
                    last_exception = e
                except httpx.TimeoutException as e:
                    # A hung request is not retried; the caller decides what to do
                    raise RetryableError(f"Request timed out: {e}") from e
                except httpx.ConnectError as e:
                    last_exception = RetryableError(f"Network error: {e}")
                except httpx.RequestError as e:
                    if not idempotent:
                        raise RetryableError(f"Network error: {e}") from e
                    last_exception = RetryableError(f"Network error: {e}")

                if attempt < retry_config.max_retries:
                    delay = calculate_delay(attempt, retry_config)
                    logger.warning(
                        f"Retry {attempt + 1}/{retry_config.max_retries} for "
                        f"{func.__name__}: {last_exception}, waiting {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Max retries ({retry_config.max_retries}) exceeded for "
                        f"{func.__name__}: {last_exception}"
                    )

            raise last_exception or RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator


def _error_message(response: httpx.Response) -> str:
    message = f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return f"{message}: {text[:200]}" if text else message
    if isinstance(body, dict):
        detail = body.get("error") or body.get("message")
        if detail:
            return f"{message}: {detail}"
    return message


def check_response(
    response: httpx.Response,
    config: RetryConfig,
    resource_id: Optional[str] = None,
) -> None:
    """
    Check an HTTP response and raise the matching error.

    Raises:
        AuthenticationRequiredError: On 401/403
        SessionNotFoundError: On 404 when resource_id is given
        RetryableError: If the error should be retried
        NonRetryableError: For any other failure
    """
    if response.is_success:
        return

    status_code = response.status_code
    message = _error_message(response)

    if status_code in (401, 403):
        raise AuthenticationRequiredError(message, status_code=status_code)
    if status_code == 404 and resource_id is not None:
        raise SessionNotFoundError(resource_id)
    if status_code in config.retryable_status_codes:
        raise RetryableError(message, status_code=status_code)
    raise NonRetryableError(message, status_code=status_code)
