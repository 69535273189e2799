"""Tests for the circuit breaker."""

from datetime import timedelta

import pybreaker
import pytest

from kb_ingest.breaker import CircuitBreaker, get_circuit_breaker_state
from kb_ingest.errors import BreakerOpenError, GenerationError
from kb_ingest.schemas import BreakerState


class FlakyCall:
    """Callable that fails with a 500 until told otherwise."""

    def __init__(self, fail=True):
        self.fail = fail
        self.invocations = 0

    def __call__(self):
        self.invocations += 1
        if self.fail:
            raise GenerationError("Internal Server Error", status_code=500)
        return "ok"


def _fail_times(breaker, call, times):
    for _ in range(times):
        with pytest.raises(GenerationError):
            breaker.call(call)


def _elapse(breaker, seconds):
    breaker.storage.opened_at -= timedelta(seconds=seconds)


def test_starts_closed(breaker):
    """Test initial state."""
    assert breaker.state == BreakerState.CLOSED
    assert breaker.consecutive_failures == 0
    assert breaker.opened_at is None


def test_wraps_pybreaker(breaker):
    """Test that state lives in a pybreaker breaker configured from the arguments."""
    assert isinstance(breaker.breaker, pybreaker.CircuitBreaker)
    assert breaker.breaker.fail_max == 5
    assert breaker.breaker.reset_timeout == 30.0
    assert breaker.breaker.name == "test"


def test_opens_after_threshold(breaker):
    """Test CLOSED -> OPEN after threshold consecutive failures."""
    call = FlakyCall()
    _fail_times(breaker, call, 4)
    assert breaker.state == BreakerState.CLOSED

    _fail_times(breaker, call, 1)
    assert breaker.state == BreakerState.OPEN
    assert breaker.consecutive_failures == 5
    assert breaker.opened_at is not None


def test_tripping_call_raises_original_error(breaker):
    """Test that the failure that opens the breaker surfaces as itself."""
    call = FlakyCall()
    _fail_times(breaker, call, 4)
    with pytest.raises(GenerationError) as excinfo:
        breaker.call(call)
    assert not isinstance(excinfo.value, pybreaker.CircuitBreakerError)
    assert excinfo.value.status_code == 500


def test_sixth_call_fails_fast_without_invoking(breaker):
    """Test that five 500s open the breaker and the sixth call is never attempted."""
    call = FlakyCall()
    _fail_times(breaker, call, 5)
    assert call.invocations == 5

    with pytest.raises(BreakerOpenError) as excinfo:
        breaker.call(call)
    assert call.invocations == 5
    assert "open, retry in 30s" in str(excinfo.value)


def test_success_resets_failure_count(breaker):
    """Test CLOSED -> CLOSED on success with the counter reset."""
    call = FlakyCall()
    _fail_times(breaker, call, 4)
    call.fail = False
    assert breaker.call(call) == "ok"
    assert breaker.consecutive_failures == 0

    call.fail = True
    _fail_times(breaker, call, 4)
    assert breaker.state == BreakerState.CLOSED


def test_stays_open_inside_reset_window(breaker):
    """Test that calls are rejected until the window elapses."""
    _fail_times(breaker, FlakyCall(), 5)
    _elapse(breaker, 25.0)
    with pytest.raises(BreakerOpenError) as excinfo:
        breaker.call(lambda: "ok")
    assert 0 < excinfo.value.retry_in_s <= 5.0
    assert breaker.state == BreakerState.OPEN


def test_half_open_success_closes(breaker):
    """Test OPEN -> HALF_OPEN on the next attempt, then CLOSED on success."""
    _fail_times(breaker, FlakyCall(), 5)
    _elapse(breaker, 31.0)
    assert breaker.state == BreakerState.OPEN

    seen = []

    def trial():
        seen.append(breaker.state)
        return "ok"

    assert breaker.call(trial) == "ok"
    assert seen == [BreakerState.HALF_OPEN]
    assert breaker.state == BreakerState.CLOSED
    assert breaker.consecutive_failures == 0
    assert breaker.opened_at is None


def test_half_open_failure_reopens(breaker):
    """Test HALF_OPEN -> OPEN with openedAt reset to now."""
    call = FlakyCall()
    _fail_times(breaker, call, 5)
    _elapse(breaker, 31.0)
    rewound = breaker.opened_at

    _fail_times(breaker, call, 1)
    assert breaker.state == BreakerState.OPEN
    assert breaker.opened_at > rewound

    with pytest.raises(BreakerOpenError):
        breaker.call(call)
    assert call.invocations == 6


def test_only_one_half_open_call_in_flight(breaker):
    """Test that a second call while the trial call runs is rejected."""
    _fail_times(breaker, FlakyCall(), 5)
    _elapse(breaker, 31.0)

    inner = []

    def trial():
        with pytest.raises(BreakerOpenError):
            breaker.call(lambda: "second")
        inner.append("rejected")
        return "ok"

    assert breaker.call(trial) == "ok"
    assert inner == ["rejected"]
    assert breaker.state == BreakerState.CLOSED


def test_snapshot_and_reset(breaker):
    """Test the health-check view and manual reset."""
    _fail_times(breaker, FlakyCall(), 5)
    snapshot = breaker.snapshot()
    assert snapshot.name == "test"
    assert snapshot.state == BreakerState.OPEN
    assert snapshot.consecutive_failures == 5
    assert snapshot.opened_at == breaker.opened_at

    breaker.reset()
    assert breaker.state == BreakerState.CLOSED
    assert breaker.consecutive_failures == 0
    assert get_circuit_breaker_state(breaker) == BreakerState.CLOSED


def test_instances_are_isolated():
    """Test that separate breakers do not share state."""
    first = CircuitBreaker(threshold=1)
    second = CircuitBreaker(threshold=1)
    _fail_times(first, FlakyCall(), 1)
    assert first.state == BreakerState.OPEN
    assert second.state == BreakerState.CLOSED


def test_threshold_must_be_positive():
    """Test constructor validation."""
    with pytest.raises(ValueError):
        CircuitBreaker(threshold=0)
