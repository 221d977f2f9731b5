"""Retry logic for suitebackup.

The SuiteCloud CLI reports most failures as free text, so whether a failure
is worth retrying is decided by matching its output against known transient
network and timeout messages. Retries use exponential backoff.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Tuple, TypeVar

logger = logging.getLogger(__name__)


# Output fragments that indicate a transient failure worth retrying
TRANSIENT_FAILURE_PATTERN: Pattern[str] = re.compile(
    r"ECONNRESET|ETIMEDOUT|ECONNREFUSED|EAI_AGAIN|ENOTFOUND|socket hang up"
    r"|timed out|network error|503 Service Unavailable|502 Bad Gateway",
    re.IGNORECASE,
)


@dataclass
class RetryAttempt:
    """Information about a single failed attempt that was retried."""
    attempt_number: int
    error_message: str
    delay_seconds: float


@dataclass
class RetryResult:
    """Result of a retry operation."""
    success: bool
    final_error_message: Optional[str]
    attempts: List[RetryAttempt] = field(default_factory=list)
    total_attempts: int = 0

    @property
    def retry_history(self) -> str:
        """Format retry history as a human-readable string."""
        if not self.attempts:
            return "No retries attempted"

        lines = [f"Retry history ({len(self.attempts)} attempts):"]
        for attempt in self.attempts:
            lines.append(
                f"  Attempt {attempt.attempt_number}: {attempt.error_message} "
                f"(waited {attempt.delay_seconds:.1f}s)"
            )
        return "\n".join(lines)


def is_transient_failure(text: Optional[str]) -> bool:
    """Return True if CLI output describes a transient failure."""
    if not text:
        return False
    return TRANSIENT_FAILURE_PATTERN.search(text) is not None


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
) -> float:
    """
    Delay before the retry following a failed attempt.

    delay = base_delay * 2^(attempt-1), capped at max_delay.
    """
    delay = base_delay * (2 ** (attempt - 1))
    return min(delay, max_delay)


T = TypeVar('T')


def retry_with_backoff(
    operation: Callable[[], Tuple[bool, str, T]],
    is_retryable: Callable[[str], bool] = is_transient_failure,
    max_retries: int = 2,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    on_retry: Optional[Callable[[RetryAttempt], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[RetryResult, T]:
    """
    Execute an operation with retry logic and exponential backoff.

    The operation returns (succeeded, error_message, result). Failures whose
    error message is not retryable end the loop immediately.

    Args:
        operation: Callable returning (succeeded, error_message, result)
        is_retryable: Predicate deciding whether an error message is transient
        max_retries: Maximum number of retries after the first attempt
        base_delay: Base delay in seconds for exponential backoff
        max_delay: Maximum delay in seconds
        on_retry: Optional callback called before each retry
        sleep: Sleep function, replaceable in tests

    Returns:
        Tuple of (RetryResult, result of the last attempt)
    """
    attempts: List[RetryAttempt] = []
    attempt = 0

    while True:
        attempt += 1
        succeeded, error_message, result = operation()

        if succeeded:
            return RetryResult(
                success=True,
                final_error_message=None,
                attempts=attempts,
                total_attempts=attempt,
            ), result

        if not is_retryable(error_message):
            logger.debug(f"Non-retryable failure: {error_message}")
            return RetryResult(
                success=False,
                final_error_message=error_message,
                attempts=attempts,
                total_attempts=attempt,
            ), result

        if attempt > max_retries:
            if max_retries:
                logger.error(
                    f"All {max_retries} retries exhausted. Final error: {error_message}"
                )
            return RetryResult(
                success=False,
                final_error_message=error_message,
                attempts=attempts,
                total_attempts=attempt,
            ), result

        delay = calculate_backoff_delay(attempt, base_delay, max_delay)
        retry_attempt = RetryAttempt(
            attempt_number=attempt,
            error_message=error_message,
            delay_seconds=delay,
        )
        attempts.append(retry_attempt)

        logger.warning(
            f"Retry attempt {attempt}/{max_retries}: {error_message}. "
            f"Waiting {delay:.1f}s before retry."
        )

        if on_retry is not None:
            on_retry(retry_attempt)

        sleep(delay)
