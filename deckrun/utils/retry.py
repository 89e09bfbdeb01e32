import logging

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# tenacity's before_sleep_log expects a stdlib logger
_retry_logger = logging.getLogger("deckrun.retry")

# Adapters pass their SDK-specific transient errors instead of this default
RETRYABLE_EXCEPTIONS = (ConnectionError, TimeoutError)


def retry_async(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
):
    """
    Decorator for async functions to add retry logic with exponential backoff.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
    )


__all__ = ["retry_async", "RETRYABLE_EXCEPTIONS"]
