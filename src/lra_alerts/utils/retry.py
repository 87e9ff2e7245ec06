"""
Retry Helpers

Exponential backoff with jitter for transient ArcGIS failures.
"""
import random
import time
from typing import Callable, Tuple, Type, TypeVar

from src.lra_alerts.errors import SourceUnavailableError, TransientSourceError
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, jitter: float) -> float:
    """
    Delay before retry number `attempt` (1-based).

    base * 2^(attempt-1) plus up to `jitter` seconds of uniform noise.
    """
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)


def call_with_retry(
    func: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 0.3,
    jitter: float = 0.3,
    retry_on: Tuple[Type[BaseException], ...] = (TransientSourceError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `func`, retrying transient failures.

    Args:
        func: Zero-argument callable
        max_retries: Retries after the first attempt
        base_delay: First backoff delay in seconds
        jitter: Maximum random extra delay in seconds
        retry_on: Exception types that trigger a retry
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of `func`

    Raises:
        SourceUnavailableError: If every attempt failed with a retriable error
    """
    attempt = 0
    while True:
        try:
            return func()
        except retry_on as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(
                    "source_retries_exhausted",
                    attempts=attempt,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise SourceUnavailableError(
                    f"ArcGIS unavailable after {attempt} attempts: {e}",
                    attempts=attempt,
                    status_code=getattr(e, "status_code", None),
                ) from e

            delay = backoff_delay(attempt, base_delay, jitter)
            logger.warning(
                "source_request_retry",
                attempt=attempt,
                max_retries=max_retries,
                delay_seconds=round(delay, 3),
                error=str(e)
            )
            sleep(delay)
