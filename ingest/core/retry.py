"""Reusable retry policy for rate-limited external APIs."""

import logging
import time
from typing import Callable

import requests

from ingest.core.errors import RateLimitedError, RetriesExhausted, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RATE_LIMIT_STEP = 5.0  # seconds, multiplied by attempt number
DEFAULT_ERROR_DELAY = 2.0  # seconds


def linear_backoff(step: float) -> Callable[[int], float]:
    """Wait ``step * attempt`` seconds."""
    return lambda attempt: step * attempt


def fixed_backoff(delay: float) -> Callable[[int], float]:
    return lambda attempt: delay


def is_transient(exc: BaseException) -> bool:
    """Upstream errors, timeouts and connection resets are worth retrying."""
    if isinstance(exc, UpstreamError):
        return exc.status is None or exc.status == 429 or exc.status >= 500
    return isinstance(exc, (requests.RequestException, OSError))


class RetryPolicy:
    """Max attempts, a backoff per error kind, and a retryable-error predicate.

    Rate-limit responses back off linearly with the attempt number; any other
    retryable error waits a fixed delay. Once ``max_attempts`` calls have
    failed, ``RetriesExhausted`` is raised with the last error attached.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rate_limit_backoff: Callable[[int], float] | None = None,
        error_backoff: Callable[[int], float] | None = None,
        retryable: Callable[[BaseException], bool] = is_transient,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "request",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.rate_limit_backoff = rate_limit_backoff or linear_backoff(DEFAULT_RATE_LIMIT_STEP)
        self.error_backoff = error_backoff or fixed_backoff(DEFAULT_ERROR_DELAY)
        self.retryable = retryable
        self.sleep = sleep
        self.name = name

    @classmethod
    def from_settings(cls, settings, name: str = "request", sleep=time.sleep) -> "RetryPolicy":
        """Build a policy from a ``RetrySettings`` model."""
        return cls(
            max_attempts=settings.max_attempts,
            rate_limit_backoff=linear_backoff(settings.rate_limit_step_seconds),
            error_backoff=fixed_backoff(settings.error_delay_seconds),
            sleep=sleep,
            name=name,
        )

    def delay_for(self, exc: BaseException, attempt: int) -> float:
        if isinstance(exc, RateLimitedError):
            return self.rate_limit_backoff(attempt)
        return self.error_backoff(attempt)

    def should_retry(self, exc: BaseException) -> bool:
        return isinstance(exc, RateLimitedError) or self.retryable(exc)

    def call(self, fn, *args, **kwargs):
        """Call ``fn`` until it succeeds or the attempts run out."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if not self.should_retry(exc):
                    raise
                if attempt == self.max_attempts:
                    raise RetriesExhausted(attempt, exc) from exc
                wait = self.delay_for(exc, attempt)
                if isinstance(exc, RateLimitedError):
                    logger.warning(
                        "%s rate limited (attempt %d/%d), waiting %.1fs",
                        self.name, attempt, self.max_attempts, wait,
                    )
                else:
                    logger.warning(
                        "%s failed (attempt %d/%d): %s, retrying in %.1fs",
                        self.name, attempt, self.max_attempts, exc, wait,
                    )
                self.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover
