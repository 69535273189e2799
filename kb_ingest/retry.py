"""Bounded retries with exponential backoff around breaker-guarded external calls."""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import tenacity
from tenacity import RetryCallState, retry_if_exception

from .breaker import CircuitBreaker
from .errors import BreakerOpenError, CallTimeoutError, classify_error, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_SPREAD = 0.2


def backoff_delay(
    attempt: int,
    base_s: float,
    max_s: float,
    jitter: bool = False,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before retry number ``attempt`` (0-based): ``min(base * 2**attempt, cap)``.

    With ``jitter`` the delay is scaled by a random factor in [0.8, 1.2] so
    concurrent callers do not retry in lockstep.
    """
    delay = min(base_s * (2 ** attempt), max_s)
    if jitter:
        delay *= 1.0 - JITTER_SPREAD + rng() * 2 * JITTER_SPREAD
    return delay


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    jitter: bool = True
    timeout_s: Optional[float] = 120.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.llm_retries,
            base_delay_s=settings.retry_base_delay_s,
            max_delay_s=settings.retry_max_delay_s,
            jitter=settings.retry_jitter,
            timeout_s=settings.call_timeout_s,
        )


class _WaitBackoff(tenacity.wait.wait_base):
    """Tenacity wait strategy computing ``backoff_delay`` from the attempt number."""

    def __init__(self, policy: RetryPolicy, rng: Callable[[], float]) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return backoff_delay(
            retry_state.attempt_number - 1,
            self.policy.base_delay_s,
            self.policy.max_delay_s,
            jitter=self.policy.jitter,
            rng=self.rng,
        )


def should_retry(exc: BaseException) -> bool:
    """Retry unless the failure kind cannot improve or the breaker refused the call."""
    if isinstance(exc, BreakerOpenError):
        return False
    return is_retryable(classify_error(exc))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Generation call failed [%s] on attempt %d: %s; backing off %.2fs",
        classify_error(exc).value if exc else "unknown",
        retry_state.attempt_number,
        exc,
        wait_s,
    )


def run_with_timeout(fn: Callable[[], T], timeout_s: Optional[float]) -> T:
    """
    Race ``fn`` against a deadline.

    On timeout the call is abandoned (its eventual result is discarded) and
    ``CallTimeoutError`` is raised. The worker keeps running in the
    background, so a circuit breaker wrapped inside ``fn`` still records the
    real outcome of the call.
    """
    if not timeout_s or timeout_s <= 0:
        return fn()

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kb-ingest-call")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError:
        if future.done():
            raise
        raise CallTimeoutError(f"External call did not finish within {timeout_s:g}s") from None
    finally:
        executor.shutdown(wait=False)


class RetryOrchestrator:
    """
    Wrap one external call with the breaker, a timeout and bounded retries.

    Args:
        breaker: Circuit breaker guarding the external service
        policy: Retry count, backoff and timeout
        sleep: Sleep function (injectable for tests)
        rng: Random source for jitter
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.breaker = breaker
        self.policy = policy
        self._sleep = sleep
        self._rng = rng

    def call(
        self,
        fn: Callable[..., Any],
        *args,
        parse: Optional[Callable[[Any], T]] = None,
        **kwargs,
    ) -> Any:
        """
        Call ``fn(*args, **kwargs)`` with retries.

        ``parse`` runs on the raw result outside the breaker, so a malformed
        payload is retried without counting as a service failure.

        Raises:
            Exception: The last failure once retries are exhausted, or the first
                non-retryable one (auth, token limit, breaker open)
        """

        def attempt() -> Any:
            raw = run_with_timeout(
                lambda: self.breaker.call(fn, *args, **kwargs),
                self.policy.timeout_s,
            )
            return parse(raw) if parse is not None else raw

        retrying = tenacity.Retrying(
            retry=retry_if_exception(should_retry),
            stop=tenacity.stop_after_attempt(self.policy.max_retries + 1),
            wait=_WaitBackoff(self.policy, self._rng),
            sleep=self._sleep,
            before_sleep=_log_before_sleep,
            reraise=True,
        )
        return retrying(attempt)


def call_with_single_retry(
    fn: Callable[[], T],
    breaker: CircuitBreaker,
    delay_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` through the breaker; on failure wait ``delay_s`` and try once more, letting the second error propagate."""
    try:
        return breaker.call(fn)
    except Exception as exc:
        logger.warning("Call failed [%s], retrying once in %.1fs: %s", classify_error(exc).value, delay_s, exc)
        sleep(delay_s)
    return breaker.call(fn)
