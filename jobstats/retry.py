"""
Backoff for object-store calls.

Only failures that can succeed on a second attempt are retried: throttling,
server errors and requests that never completed. Everything else propagates
on the first attempt.
"""

import time
import functools
from typing import Callable, List, Optional

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})

# botocore exception names for requests that never got a response
CONNECTION_ERRORS = frozenset({
    "ConnectionError",
    "EndpointConnectionError",
    "ConnectionClosedError",
    "ConnectTimeoutError",
    "ReadTimeoutError",
})


class RetryError(Exception):
    """Every attempt of a retried call failed."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class TransientStoreError(Exception):
    """A store call failed in a way that may succeed on retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def should_retry_http_status(status_code: Optional[int]) -> bool:
    return status_code in RETRYABLE_STATUS


def response_status(exception: Exception) -> Optional[int]:
    """HTTP status of a failed store call, from our own errors or a botocore response."""
    status = getattr(exception, "status_code", None)
    if status is not None:
        return status
    response = getattr(exception, "response", None)
    if isinstance(response, dict):
        return response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return None


def is_transient_error(exception: Exception) -> bool:
    """
    Decide whether a failed store call is worth another attempt.

    TransientStoreError always is. Errors carrying an HTTP status are
    retried for 408, 429 and 5xx. Otherwise only connection failures
    (matched by class name anywhere in the hierarchy) are retried.
    """
    if isinstance(exception, TransientStoreError):
        return True
    status = response_status(exception)
    if status is not None:
        return should_retry_http_status(status)
    return any(cls.__name__ in CONNECTION_ERRORS for cls in type(exception).__mro__)


def backoff_delays(
    max_retries: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
) -> List[float]:
    """Sleep before each retry, capped at max_delay."""
    return [min(base_delay * exponential_base ** i, max_delay) for i in range(max_retries)]


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    retry_if: Callable[[Exception], bool] = is_transient_error,
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying store calls with exponential backoff.

    Args:
        max_retries: Retry attempts after the first call (0 = no retries)
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound for any single delay
        exponential_base: Growth factor between delays
        retry_if: Predicate deciding whether an exception is retried;
            anything it rejects propagates unchanged
        on_retry: Optional callback function(attempt, exception, delay)

    Raises:
        RetryError: every attempt failed with a retryable error

    Example:
        @exponential_backoff(max_retries=3)
        def fetch(key):
            return client.get_object(Bucket=bucket, Key=key)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(max_retries, base_delay, max_delay, exponential_base)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not retry_if(e):
                        raise
                    if attempt > len(delays):
                        raise RetryError(f"Failed after {attempt} attempts: {e}", attempt) from e
                    delay = delays[attempt - 1]
                    if on_retry:
                        on_retry(attempt, e, delay)
                    time.sleep(delay)

        return wrapper
    return decorator
