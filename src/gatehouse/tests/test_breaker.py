"""Tests for the circuit breaker state machine."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from conftest import FakeClock

from gatehouse.foundation.errors import FailureType
from gatehouse.runtime.resilience import CircuitBreaker, State


def fail(breaker: CircuitBreaker, times: int = 1) -> None:
    for _ in range(times):
        breaker.acquire().unwrap().failure()


def succeed(breaker: CircuitBreaker) -> None:
    breaker.acquire().unwrap().success()


def test_opens_after_threshold_failures(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=3, clock=clock)

    fail(breaker, 2)
    assert breaker.state == State.CLOSED

    fail(breaker)
    assert breaker.state == State.OPEN
    assert breaker.acquire().unwrap_err() == FailureType.SHORT_CIRCUITED


def test_failures_outside_window_do_not_count(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=3, window=10.0, clock=clock)

    fail(breaker, 2)
    clock.advance(11.0)
    fail(breaker)

    assert breaker.state == State.CLOSED
    assert breaker.failures == 1


def test_successes_do_not_erase_failures_in_window(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=3, clock=clock)

    fail(breaker, 2)
    succeed(breaker)
    fail(breaker)

    assert breaker.state == State.OPEN


def test_half_open_after_cooldown_allows_exactly_one_trial(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, clock=clock)
    fail(breaker)

    clock.advance(4.9)
    assert breaker.state == State.OPEN
    assert breaker.retry_after is not None and breaker.retry_after > 0

    clock.advance(1.0)
    assert breaker.state == State.HALF_OPEN
    trial = breaker.acquire().unwrap()
    assert trial.trial
    assert breaker.acquire().unwrap_err() == FailureType.SHORT_CIRCUITED


def test_trial_success_closes(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, clock=clock)
    fail(breaker)
    clock.advance(5.0)

    succeed(breaker)

    assert breaker.state == State.CLOSED
    assert breaker.failures == 0
    assert breaker.acquire().is_ok()


def test_trial_failure_reopens_and_restarts_cooldown(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, clock=clock)
    fail(breaker)
    clock.advance(5.0)

    fail(breaker)

    assert breaker.state == State.OPEN
    assert breaker.retry_after == 5.0


def test_abandoned_trial_frees_the_slot(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, clock=clock)
    fail(breaker)
    clock.advance(5.0)

    with breaker.acquire().unwrap():
        pass  # e.g. cancelled before an outcome was known

    assert breaker.state == State.HALF_OPEN
    assert breaker.in_flight == 0
    assert breaker.acquire().unwrap().trial


def test_settling_twice_counts_once(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=5, clock=clock)
    permit = breaker.acquire().unwrap()
    permit.failure()
    permit.failure()
    permit.success()

    assert breaker.failures == 1
    assert breaker.in_flight == 0


def test_late_success_of_pre_open_call_does_not_close(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, clock=clock)
    slow = breaker.acquire().unwrap()
    fail(breaker)
    slow.success()

    assert breaker.state == State.OPEN


def test_concurrency_bound_rejects(clock: FakeClock) -> None:
    breaker = CircuitBreaker(max_concurrent=2, clock=clock)
    first = breaker.acquire().unwrap()
    breaker.acquire().unwrap()

    assert breaker.acquire().unwrap_err() == FailureType.REJECTED

    first.success()
    assert breaker.acquire().is_ok()
    assert breaker.stats.rejected == 1


def test_concurrent_updates_stay_consistent() -> None:
    breaker = CircuitBreaker(failure_threshold=10_000, max_concurrent=10_000)

    def work(i: int) -> None:
        permit = breaker.acquire().unwrap()
        permit.failure() if i % 2 else permit.success()

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(work, range(1000)))

    stats = breaker.stats
    assert stats.calls == 1000
    assert stats.failures == 500
    assert stats.in_flight == 0
    assert stats.state == State.CLOSED


def test_stats_and_reset(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=2, key="tokeninfo", clock=clock)
    fail(breaker, 2)
    breaker.acquire()

    stats = breaker.stats
    assert (stats.key, stats.state, stats.failures, stats.short_circuited) == ("tokeninfo", State.OPEN, 2, 1)
    assert stats.retry_after == breaker.cooldown

    breaker.reset()
    assert breaker.state == State.CLOSED
    assert breaker.stats.calls == 0


def test_transitions_are_logged(clock: FakeClock, log_lines) -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown=1.0, key="tokeninfo", clock=clock)
    fail(breaker)
    clock.advance(1.0)
    succeed(breaker)

    events = [(e["level"], e["event"]) for e in log_lines() if e.get("circuit") == "tokeninfo"]
    assert events == [("warning", "circuit opened"), ("info", "circuit closed")]
