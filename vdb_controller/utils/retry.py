"""
Retry utilities for Kubernetes API calls.

Provides a decorator to handle transient failures in Kubernetes API calls
with exponential backoff. Reconcile passes do not use it: their failures go
back to the work queue instead.
"""
import asyncio
import functools
from typing import Callable, Optional, Tuple, Type, TypeVar

from kubernetes_asyncio.client import ApiException

from vdb_controller.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

RETRYABLE_STATUS_CODES = {
    408,  # Request Timeout
    429,  # Too Many Requests (rate limiting)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


def is_retryable_k8s_error(exception: BaseException) -> bool:
    """
    Determine if a Kubernetes API exception should trigger a retry.

    Connection-level failures (no HTTP status at all) are retryable too.
    """
    if isinstance(exception, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    if not isinstance(exception, ApiException):
        return False
    return exception.status in RETRYABLE_STATUS_CODES


def backoff_delay(attempt: int, initial_delay: float = 1.0, max_delay: float = 30.0,
                  exponential_base: float = 2.0) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    return min(initial_delay * (exponential_base ** attempt), max_delay)


def retry_on_k8s_error(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
) -> Callable:
    """
    Decorator to retry Kubernetes API calls with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay between retries in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        retry_on: Additional exception types to retry on (default: None)

    Example:
        @retry_on_k8s_error(max_retries=5, initial_delay=2.0)
        async def list_objects(plural: str):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            "k8s_api_call_succeeded_after_retry",
                            function=func.__name__,
                            attempt=attempt + 1,
                            max_retries=max_retries,
                        )

                    return result

                except Exception as e:
                    should_retry = is_retryable_k8s_error(e)
                    if retry_on and isinstance(e, retry_on):
                        should_retry = True

                    if attempt >= max_retries or not should_retry:
                        if should_retry:
                            logger.error(
                                "k8s_api_call_failed_max_retries",
                                function=func.__name__,
                                attempt=attempt + 1,
                                max_retries=max_retries,
                                error_type=type(e).__name__,
                                error=str(e),
                            )
                        raise

                    delay = backoff_delay(attempt, initial_delay, max_delay, exponential_base)
                    logger.warning(
                        "k8s_api_call_failed_retrying",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error_type=type(e).__name__,
                        error=str(e),
                        status_code=getattr(e, 'status', None),
                    )
                    await asyncio.sleep(delay)

            raise AssertionError("unreachable")

        return wrapper
    return decorator
