"""Exponential backoff policy and the shared retry loop."""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from cloudkit.common.classifier import ErrorClassifier, error_code_of
from cloudkit.common.config import ClientConfig
from cloudkit.common.exceptions import RetriesExhaustedError
from cloudkit.common.logger import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Stateless backoff policy.

    delay = min(initial_delay * 2^(attempt - 1), max_delay), attempt 1-based.
    """

    initial_delay: float = 0.1
    max_delay: float = 3.0
    max_retries: int = 5

    def should_retry(self, attempt_count: int) -> bool:
        return attempt_count < self.max_retries

    def delay_for(self, attempt_count: int) -> float:
        exponent = max(attempt_count - 1, 0)
        return min(self.initial_delay * (2**exponent), self.max_delay)

    @classmethod
    def from_config(cls, config: ClientConfig) -> "RetryPolicy":
        return cls(
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            max_retries=config.max_retries,
        )


class Outcome(enum.Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of a single attempt, as data rather than a raised exception."""

    outcome: Outcome
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


async def attempt(
    operation: Callable[[], Awaitable[Any]],
    classifier: ErrorClassifier,
) -> AttemptResult:
    """Run one attempt and classify its failure, if any.

    Cancellation is not a failure: CancelledError propagates unclassified.
    """
    try:
        value = await operation()
    except Exception as e:
        if classifier.classify(e):
            return AttemptResult(Outcome.TRANSIENT_FAILURE, error=e)
        return AttemptResult(Outcome.FATAL_FAILURE, error=e)
    return AttemptResult(Outcome.SUCCESS, value=value)


async def call_with_retry(
    operation: Callable[[], Awaitable[Any]],
    classifier: ErrorClassifier,
    policy: RetryPolicy,
    description: str = "",
) -> Any:
    """Run ``operation`` until it succeeds, fails for good, or retries run out.

    Non-transient failures are raised unchanged after a single attempt.
    Transient failures are retried while ``policy.should_retry(attempts)``,
    waiting ``policy.delay_for(attempts)`` in between. When the policy gives up
    a RetriesExhaustedError is raised from the last underlying failure.
    """
    description = description or getattr(operation, "__name__", "operation")
    attempts = 0
    while True:
        attempts += 1
        result = await attempt(operation, classifier)

        if result.ok:
            return result.value

        if result.outcome is Outcome.FATAL_FAILURE:
            raise result.error

        if not policy.should_retry(attempts):
            log_with_context(
                logger,
                logging.ERROR,
                f"All {attempts} attempts exhausted for {description}",
                service=classifier.service,
                operation=description,
                attempt=attempts,
                error_code=error_code_of(result.error),
            )
            raise RetriesExhaustedError(
                f"Unrecoverable failure in {description} after {attempts} attempts",
                attempts=attempts,
                last_error=result.error,
            ) from result.error

        delay = policy.delay_for(attempts)
        log_with_context(
            logger,
            logging.WARNING,
            f"Attempt {attempts} for {description} failed: {result.error}. "
            f"Retrying in {delay:.2f}s",
            service=classifier.service,
            operation=description,
            attempt=attempts,
            error_code=error_code_of(result.error),
            delay=delay,
        )
        await asyncio.sleep(delay)
