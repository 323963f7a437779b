"""
Retry and circuit breaking for store calls.

Transient database failures (dropped connections, pool timeouts) are retried
with exponential backoff. Repeated failures open a circuit so a degraded
store is not hammered; after the reset timeout one trial call is let through.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type

from sqlalchemy.exc import DisconnectionError, OperationalError, TimeoutError as PoolTimeoutError

from .errors import CircuitOpenError, StoreUnavailableError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    OperationalError,
    PoolTimeoutError,
    DisconnectionError,
    ConnectionError,
    TimeoutError,
)


def retry_with_backoff(
    func: Callable,
    max_retries: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry a function with exponential backoff.

    Args:
        func: Zero-argument callable to run
        max_retries: Total attempts before giving up
        initial_delay: Delay after the first failure in seconds
        max_delay: Upper bound on any single delay
        retry_on: Exception types considered transient
        on_retry: Called with (attempt, error) before each retry, e.g. to roll back a session
        sleep: Sleep function (replaced in tests)

    Returns:
        Result from the first successful call

    Raises:
        StoreUnavailableError: When every attempt failed with a transient error
        Any non-transient exception immediately
    """
    delay = initial_delay

    for attempt in range(1, max_retries + 1):
        try:
            return func()
        except retry_on as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries} attempts failed: {e}")
                raise StoreUnavailableError(f"Store unavailable after {max_retries} attempts: {e}") from e

            logger.warning(f"Transient store error, retrying in {delay}s (attempt {attempt}/{max_retries}): {e}")
            if on_retry:
                on_retry(attempt, e)
            sleep(delay)
            delay = min(delay * 2, max_delay)

    raise StoreUnavailableError("Max retries exceeded")


async def retry_with_backoff_async(
    func: Callable,
    max_retries: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable] = asyncio.sleep,
):
    """
    Async twin of retry_with_backoff for blocking store calls.

    Each attempt runs in a worker thread and backoff awaits asyncio.sleep,
    so a struggling store never stalls the event loop.
    """
    delay = initial_delay

    for attempt in range(1, max_retries + 1):
        try:
            return await asyncio.to_thread(func)
        except retry_on as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries} attempts failed: {e}")
                raise StoreUnavailableError(f"Store unavailable after {max_retries} attempts: {e}") from e

            logger.warning(f"Transient store error, retrying in {delay}s (attempt {attempt}/{max_retries}): {e}")
            if on_retry:
                await asyncio.to_thread(on_retry, attempt, e)
            await sleep(delay)
            delay = min(delay * 2, max_delay)

    raise StoreUnavailableError("Max retries exceeded")


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED: calls pass through. OPEN: calls fail fast with CircuitOpenError
    until reset_timeout has elapsed. HALF_OPEN: one trial call; success
    closes the circuit, a store failure re-opens it. Any other error on the
    trial still proves the store answered, so it closes the circuit too.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.state = self.CLOSED
        self.failures = 0
        self.successes = 0
        self.opened_at = 0.0

    def _before_call(self):
        if self.state == self.OPEN:
            if self._clock() - self.opened_at >= self.reset_timeout:
                logger.info(f"Circuit breaker {self.name} moving to HALF_OPEN")
                self.state = self.HALF_OPEN
            else:
                logger.warning(f"Circuit breaker {self.name} is OPEN, blocking request")
                raise CircuitOpenError(f"Circuit breaker {self.name} is open; store temporarily unavailable")

    def call(self, func: Callable):
        self._before_call()
        try:
            result = func()
        except (StoreUnavailableError,) + TRANSIENT_ERRORS:
            self._on_failure()
            raise
        except Exception:
            self._on_other_error()
            raise

        self._on_success()
        return result

    async def acall(self, func: Callable[[], Awaitable]):
        """Same as call, for a zero-argument coroutine function."""
        self._before_call()
        try:
            result = await func()
        except (StoreUnavailableError,) + TRANSIENT_ERRORS:
            self._on_failure()
            raise
        except Exception:
            self._on_other_error()
            raise

        self._on_success()
        return result

    def _on_success(self):
        if self.state == self.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} CLOSED (recovered)")
        self.state = self.CLOSED
        self.failures = 0
        self.successes += 1

    def _on_failure(self):
        self.failures += 1
        if self.state == self.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != self.OPEN:
                logger.warning(f"Circuit breaker {self.name} OPENED ({self.failures} failures)")
            self.state = self.OPEN
            self.opened_at = self._clock()

    def _on_other_error(self):
        if self.state == self.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} CLOSED (trial call reached the store)")
            self.state = self.CLOSED
            self.failures = 0

    def reset(self):
        self.state = self.CLOSED
        self.failures = 0
        self.successes = 0
        self.opened_at = 0.0

    def get_stats(self) -> Dict:
        total = self.failures + self.successes
        return {
            "name": self.name,
            "state": self.state,
            "failures": self.failures,
            "successes": self.successes,
            "failure_rate": self.failures / total if total else 0.0,
        }


_breakers: Dict[str, CircuitBreaker] = {}


def get_breaker(name: str, failure_threshold: int = 5, reset_timeout: float = 30.0) -> CircuitBreaker:
    """Process-wide breaker per store name; settings apply on first creation."""
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(name, failure_threshold=failure_threshold, reset_timeout=reset_timeout)
        _breakers[name] = breaker
    return breaker


class StorePolicy:
    """Retry wrapped in a circuit breaker, built from an EngineSettings snapshot."""

    def __init__(
        self,
        settings,
        breaker: Optional[CircuitBreaker] = None,
        on_retry=None,
        sleep=time.sleep,
        async_sleep=asyncio.sleep,
    ):
        self.settings = settings
        self.breaker = breaker or get_breaker(
            "database",
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_seconds,
        )
        self.on_retry = on_retry
        self.sleep = sleep
        self.async_sleep = async_sleep

    def run(self, func: Callable):
        return self.breaker.call(
            lambda: retry_with_backoff(
                func,
                max_retries=self.settings.retry_max_attempts,
                initial_delay=self.settings.retry_initial_delay,
                max_delay=self.settings.retry_max_delay,
                on_retry=self.on_retry,
                sleep=self.sleep,
            )
        )

    async def arun(self, func: Callable):
        """Run a blocking store call off the event loop with async backoff."""
        return await self.breaker.acall(
            lambda: retry_with_backoff_async(
                func,
                max_retries=self.settings.retry_max_attempts,
                initial_delay=self.settings.retry_initial_delay,
                max_delay=self.settings.retry_max_delay,
                on_retry=self.on_retry,
                sleep=self.async_sleep,
            )
        )
