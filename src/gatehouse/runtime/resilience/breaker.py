"""Circuit breaker guarding a remote dependency.

State Machine:
    CLOSED → failures in rolling window reach threshold → OPEN
    OPEN → cooldown elapses → HALF_OPEN
    HALF_OPEN → trial call succeeds → CLOSED
    HALF_OPEN → trial call fails → OPEN

One breaker instance is shared by every concurrent caller of the same
dependency. All counters change under a single lock that is never held
across an await, so concurrent callers only contend for the bookkeeping.

Example:
    >>> breaker = CircuitBreaker(failure_threshold=3, key="tokeninfo")
    >>> acquired = breaker.acquire()
    >>> if acquired.is_ok():
    ...     with acquired.unwrap() as permit:
    ...         ok = call_service()
    ...         permit.success() if ok else permit.failure()
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Callable

from gatehouse.foundation.errors import Err, FailureType, Ok, Result
from gatehouse.runtime.observability import get_logger

if TYPE_CHECKING:
    from types import TracebackType

log = get_logger("gatehouse.breaker")


class State(IntEnum):
    """Circuit breaker states."""
    CLOSED, OPEN, HALF_OPEN = 0, 1, 2  # Normal → Failing fast → Testing recovery


@dataclass(frozen=True, slots=True)
class CircuitStats:
    """Point-in-time snapshot for monitoring."""
    key: str
    state: State
    calls: int
    failures: int
    in_flight: int
    short_circuited: int
    rejected: int
    mean_latency_ms: float
    retry_after: float | None


class Permit:
    """Right to issue one call through the breaker.

    Settle it with success() or failure(). Leaving the `with` block
    unsettled (e.g. on cancellation) gives the slot back without recording
    an outcome, so an abandoned half-open trial does not wedge the circuit.
    """

    __slots__ = ("_breaker", "trial", "started", "_settled")

    def __init__(self, breaker: CircuitBreaker, trial: bool, started: float) -> None:
        self._breaker = breaker
        self.trial = trial
        self.started = started
        self._settled = False

    def success(self) -> None:
        self._settle(True)

    def failure(self) -> None:
        self._settle(False)

    def _settle(self, ok: bool) -> None:
        if self._settled:
            return
        self._settled = True
        self._breaker._record(self, ok)

    def __enter__(self) -> Permit:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if not self._settled:
            self._settled = True
            self._breaker._abandon(self)


@dataclass(slots=True)
class CircuitBreaker:
    """Thread-safe circuit breaker with a rolling failure window.

    Args:
        failure_threshold: Failures within `window` that open the circuit
        window: Rolling window in seconds for failure/latency accounting
        cooldown: Seconds the circuit stays open before one trial call
        max_concurrent: Bound on permits outstanding at once
        key: Circuit identifier for logs and stats
        clock: Monotonic time source (injectable for tests)
    """

    failure_threshold: int = 20
    window: float = 10.0
    cooldown: float = 5.0
    max_concurrent: int = 64
    key: str = "_default_"
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _state: State = field(default=State.CLOSED, init=False)
    _opened_at: float = field(default=0.0, init=False, repr=False)
    _trial_in_flight: bool = field(default=False, init=False, repr=False)
    _in_flight: int = field(default=0, init=False, repr=False)
    _short_circuited: int = field(default=0, init=False, repr=False)
    _rejected: int = field(default=0, init=False, repr=False)
    # (finished_at, latency, ok) per settled call, oldest first
    _outcomes: deque[tuple[float, float, bool]] = field(default_factory=deque, init=False, repr=False)

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    def acquire(self) -> Result[Permit, FailureType]:
        """Ask to issue a call.

        Returns:
            Ok(permit) when the call may proceed; Err(SHORT_CIRCUITED) when
            the circuit is open or its half-open trial is taken;
            Err(REJECTED) when max_concurrent calls are already in flight.
        """
        with self._lock:
            now = self.clock()
            state = self._evaluate(now)
            if state == State.OPEN or (state == State.HALF_OPEN and self._trial_in_flight):
                self._short_circuited += 1
                return Err(FailureType.SHORT_CIRCUITED)
            if self._in_flight >= self.max_concurrent:
                self._rejected += 1
                return Err(FailureType.REJECTED)
            trial = state == State.HALF_OPEN
            if trial:
                self._trial_in_flight = True
            self._in_flight += 1
            return Ok(Permit(self, trial, now))

    def reset(self) -> None:
        """Force the circuit closed and forget all counters."""
        with self._lock:
            self._state, self._trial_in_flight = State.CLOSED, False
            self._outcomes.clear()
            self._short_circuited = self._rejected = 0

    # ─────────────────────────────────────────────────────────────────
    # Observability Properties
    # ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> State:
        """Current state (applies a due OPEN → HALF_OPEN transition)."""
        with self._lock:
            return self._evaluate(self.clock())

    @property
    def failures(self) -> int:
        """Failures inside the rolling window."""
        with self._lock:
            self._prune(self.clock())
            return self._failures()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def retry_after(self) -> float | None:
        """Seconds until a trial call is allowed, or None if not open."""
        with self._lock:
            return self._retry_after(self.clock())

    @property
    def stats(self) -> CircuitStats:
        with self._lock:
            now = self.clock()
            state = self._evaluate(now)
            latencies = [latency for _, latency, _ in self._outcomes]
            return CircuitStats(
                key=self.key,
                state=state,
                calls=len(self._outcomes),
                failures=self._failures(),
                in_flight=self._in_flight,
                short_circuited=self._short_circuited,
                rejected=self._rejected,
                mean_latency_ms=round(sum(latencies) / len(latencies) * 1000, 2) if latencies else 0.0,
                retry_after=self._retry_after(now),
            )

    # ─────────────────────────────────────────────────────────────────
    # Internals (call with _lock held, except _record/_abandon)
    # ─────────────────────────────────────────────────────────────────

    def _record(self, permit: Permit, ok: bool) -> None:
        with self._lock:
            now = self.clock()
            self._in_flight -= 1
            self._outcomes.append((now, now - permit.started, ok))
            self._prune(now)
            previous = self._state
            if permit.trial:
                self._trial_in_flight = False
                if ok:
                    self._state = State.CLOSED
                    self._outcomes.clear()
                else:
                    self._state, self._opened_at = State.OPEN, now
            elif not ok and self._state == State.CLOSED and self._failures() >= self.failure_threshold:
                self._state, self._opened_at = State.OPEN, now
            current, failures = self._state, self._failures()

        if current != previous:
            if current == State.OPEN:
                log.warning("circuit opened", circuit=self.key, failures=failures, cooldown=self.cooldown)
            else:
                log.info("circuit closed", circuit=self.key)

    def _abandon(self, permit: Permit) -> None:
        with self._lock:
            self._in_flight -= 1
            if permit.trial:
                self._trial_in_flight = False

    def _evaluate(self, now: float) -> State:
        if self._state == State.OPEN and now - self._opened_at >= self.cooldown:
            self._state, self._trial_in_flight = State.HALF_OPEN, False
        self._prune(now)
        return self._state

    def _prune(self, now: float) -> None:
        horizon = now - self.window
        while self._outcomes and self._outcomes[0][0] < horizon:
            self._outcomes.popleft()

    def _failures(self) -> int:
        return sum(1 for _, _, ok in self._outcomes if not ok)

    def _retry_after(self, now: float) -> float | None:
        if self._state != State.OPEN:
            return None
        return max(0.0, self.cooldown - (now - self._opened_at))
