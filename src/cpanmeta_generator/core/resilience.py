"""
Resilience patterns for mirror downloads.

A CPAN mirror fails in two ways: the connection drops or times out, or the
server answers but is overloaded (``429``, ``502``-``504``). Both are
retried with exponential backoff, honouring ``Retry-After`` when the mirror
sends one. A mirror that keeps failing trips a per-host circuit breaker.

A ``404`` is not a mirror failure: it means the index lists an archive the
mirror has not received yet.
"""

import logging
import random
import time
from collections import defaultdict

logger = logging.getLogger(__name__)


# Statuses worth asking again for
RETRY_STATUSES = frozenset({429, 502, 503, 504})


def is_mirror_failure(status_code: int) -> bool:
    """True when an HTTP status says the mirror itself is unhealthy."""
    return status_code == 429 or status_code >= 500


class ExponentialBackoff:
    """Exponential backoff with jitter for retry logic."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, max_retries: int = 3):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries

    def calculate_delay(self, attempt: int, retry_after: str | None = None) -> float:
        """
        Delay before retry number ``attempt + 1``.

        A numeric ``Retry-After`` header value wins, capped at ``max_delay``.
        Otherwise the delay doubles per attempt, with ±25% jitter.
        """
        if retry_after is not None:
            try:
                return min(max(0.0, float(retry_after)), self.max_delay)
            except ValueError:
                logger.debug(f"Ignoring non-numeric Retry-After: {retry_after!r}")

        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0, delay + jitter)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def should_retry_status(self, status_code: int, attempt: int) -> bool:
        """Retry overload responses while attempts remain."""
        return status_code in RETRY_STATUSES and self.should_retry(attempt)


class CircuitBreaker:
    """
    Stops requests to a mirror host after repeated failures.

    The circuit opens once a host reaches ``failure_threshold`` consecutive
    failures and closes again on success or after ``timeout`` seconds.
    """

    def __init__(self, failure_threshold: int = 10, timeout: float = 300.0):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failures: dict[str, int] = defaultdict(int)
        self.opened_at: dict[str, float] = {}

    def record_failure(self, host: str) -> None:
        self.failures[host] += 1
        if self.failures[host] >= self.failure_threshold and host not in self.opened_at:
            self.opened_at[host] = time.time()
            logger.warning(f"Circuit breaker OPEN for {host} ({self.failures[host]} failures)")

    def record_success(self, host: str) -> None:
        self.failures[host] = 0
        if self.opened_at.pop(host, None) is not None:
            logger.info(f"Circuit breaker CLOSED for {host}")

    def record_response(self, host: str, status_code: int) -> None:
        """
        Account for a final HTTP answer from ``host``.

        Success and overload count as usual. Other client errors say nothing
        about the mirror's health and leave the breaker alone.
        """
        if status_code < 400:
            self.record_success(host)
        elif is_mirror_failure(status_code):
            self.record_failure(host)

    def is_open(self, host: str) -> bool:
        """True while requests to ``host`` should be skipped."""
        if host not in self.opened_at:
            return False

        if time.time() - self.opened_at[host] > self.timeout:
            del self.opened_at[host]
            self.failures[host] = 0
            logger.info(f"Circuit breaker reset for {host} (timeout passed)")
            return False

        return True
