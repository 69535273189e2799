"""
Circuit breaker guarding calls to the external generation service.

Built on ``pybreaker``. States:

- CLOSED     normal operation, every call goes through
- OPEN       ``threshold`` consecutive failures seen; calls fail fast with
             ``BreakerOpenError`` until ``reset_s`` has elapsed
- HALF_OPEN  reset window elapsed; exactly one trial call is let through.
             Success closes the breaker, failure re-opens it

The OPEN -> HALF_OPEN transition is lazy: it happens on the next call
attempt once the reset timeout has elapsed, not on a timer. The original
exception of a failed call is always re-raised, including the one that trips
the breaker.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

import pybreaker

from .errors import BreakerOpenError
from .schemas import BreakerState, CircuitBreakerSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATES = {
    pybreaker.STATE_CLOSED: BreakerState.CLOSED,
    pybreaker.STATE_OPEN: BreakerState.OPEN,
    pybreaker.STATE_HALF_OPEN: BreakerState.HALF_OPEN,
}


class _LoggingListener(pybreaker.CircuitBreakerListener):
    """Log state transitions of a breaker."""

    def state_change(self, cb, old_state, new_state):
        name = new_state.name if new_state is not None else None
        if name == pybreaker.STATE_OPEN:
            logger.error(
                "Circuit breaker '%s': OPEN after %d consecutive failure(s), retry in %.0fs",
                cb.name,
                cb.fail_counter,
                cb.reset_timeout,
            )
        elif name == pybreaker.STATE_HALF_OPEN:
            logger.warning("Circuit breaker '%s': HALF_OPEN, sending trial request", cb.name)
        elif name == pybreaker.STATE_CLOSED and old_state is not None:
            logger.info("Circuit breaker '%s': CLOSED", cb.name)


def _seconds_since(moment: datetime) -> float:
    # pybreaker stores naive UTC in older releases and aware UTC in newer ones
    if moment.tzinfo is None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
    else:
        now = datetime.now(moment.tzinfo)
    return (now - moment).total_seconds()


class CircuitBreaker:
    """Consecutive-failure circuit breaker with a lazy half-open trial call."""

    def __init__(self, name: str = "generation", threshold: int = 5, reset_s: float = 30.0) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.name = name
        self.threshold = threshold
        self.reset_s = reset_s
        self.storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=threshold,
            reset_timeout=reset_s,
            state_storage=self.storage,
            listeners=[_LoggingListener()],
            name=name,
            throw_new_error_on_trip=False,
        )
        self._trial_lock = threading.Lock()

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        """The underlying pybreaker instance."""
        return self._breaker

    @property
    def state(self) -> BreakerState:
        return _STATES[self._breaker.current_state]

    @property
    def consecutive_failures(self) -> int:
        return self._breaker.fail_counter

    @property
    def opened_at(self) -> Optional[datetime]:
        if self.state == BreakerState.CLOSED:
            return None
        return self.storage.opened_at

    def retry_in(self) -> float:
        """Seconds left in the reset window, zero once it has elapsed."""
        opened_at = self.opened_at
        if opened_at is None:
            return 0.0
        return max(self.reset_s - _seconds_since(opened_at), 0.0)

    def snapshot(self) -> CircuitBreakerSnapshot:
        return CircuitBreakerSnapshot(
            name=self.name,
            state=self.state,
            consecutive_failures=self.consecutive_failures,
            opened_at=self.opened_at,
        )

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._breaker.close()

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``fn`` through the breaker.

        ``fn`` runs outside pybreaker's lock; its outcome is then replayed
        through ``pybreaker.CircuitBreaker.call`` so pybreaker does the
        counting and the state transitions.

        Raises:
            BreakerOpenError: If the breaker is open (or a half-open trial call
                is already in flight); ``fn`` is not invoked
            Exception: Whatever ``fn`` raises, after the failure is recorded
        """
        trial = self._admit()
        try:
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                self._record_failure(exc)
                raise
            self._record(lambda: None)
            return result
        finally:
            if trial:
                self._trial_lock.release()

    def _admit(self) -> bool:
        """Let a call through, returning True when it is the half-open trial call."""
        if self.state == BreakerState.CLOSED:
            return False
        if not self._trial_lock.acquire(blocking=False):
            raise BreakerOpenError(self.name, 0.0)

        state = self.state
        if state == BreakerState.CLOSED:
            self._trial_lock.release()
            return False
        if state == BreakerState.OPEN:
            remaining = self.retry_in()
            if remaining > 0:
                self._trial_lock.release()
                raise BreakerOpenError(self.name, remaining)
            self._breaker.half_open()
        return True

    def _record(self, replay: Callable[[], None]) -> None:
        try:
            self._breaker.call(replay)
        except pybreaker.CircuitBreakerError:
            # opened by a concurrent caller in the meantime
            logger.debug("Circuit breaker '%s': outcome not recorded, breaker already open", self.name)

    def _record_failure(self, exc: Exception) -> None:
        def replay() -> None:
            raise exc

        try:
            self._record(replay)
        except Exception as err:
            if err is not exc:
                raise


_default_breaker: Optional[CircuitBreaker] = None
_default_lock = threading.Lock()


def get_default_breaker() -> CircuitBreaker:
    """Process-wide breaker for the generation service, built from settings on first use."""
    global _default_breaker
    with _default_lock:
        if _default_breaker is None:
            from .config import get_settings

            settings = get_settings()
            _default_breaker = CircuitBreaker(
                name="generation",
                threshold=settings.breaker_threshold,
                reset_s=settings.breaker_reset_s,
            )
        return _default_breaker


def get_circuit_breaker_state(breaker: Optional[CircuitBreaker] = None) -> BreakerState:
    """Current state of ``breaker`` (the process-wide one by default), for health checks."""
    return (breaker or get_default_breaker()).state
