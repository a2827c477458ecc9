"""
Circuit breaker guarding calls to a single terminal
"""
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout_s: float = 30.0


@dataclass(frozen=True)
class CircuitBreakerStatus:
    name: str
    state: CircuitState
    failure_count: int
    last_failure_time: Optional[float]
    trips: int


class CircuitBreaker:
    """
    CLOSED -> OPEN after ``failure_threshold`` consecutive failures.
    OPEN rejects every call until ``recovery_timeout_s`` has elapsed since the
    last failure; the next check then moves to HALF_OPEN and admits that one
    call. While the trial is in flight other callers are rejected. The trial's
    outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig = CircuitBreakerConfig(),
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ) -> None:
        self.config = config
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._trial_in_flight = False
        self._trips = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def trips(self) -> int:
        with self._lock:
            return self._trips

    def allow_request(self) -> bool:
        """Return True if a call may proceed. May move OPEN -> HALF_OPEN."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_time or 0.0)
                if elapsed >= self.config.recovery_timeout_s:
                    self._state = CircuitState.HALF_OPEN
                    self._trial_in_flight = True
                    logger.info("Circuit %s half-open, admitting trial call", self.name)
                    return True
                return False
            # HALF_OPEN
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("Circuit %s closed", self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._open()

    def release(self) -> None:
        """Give back a half-open trial slot whose call ended without an outcome (e.g. cancelled)."""
        with self._lock:
            self._trial_in_flight = False

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._trips += 1
        logger.warning(
            "Circuit %s opened after %d failures (recovery in %ss)",
            self.name, self._failure_count, self.config.recovery_timeout_s,
        )

    def status(self) -> CircuitBreakerStatus:
        with self._lock:
            return CircuitBreakerStatus(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_time=self._last_failure_time,
                trips=self._trips,
            )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._trial_in_flight = False


class CircuitBreakerRegistry:
    """One breaker per device id, created on first use."""

    def __init__(self, config: CircuitBreakerConfig = CircuitBreakerConfig(), clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, scope: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(scope)
            if breaker is None:
                breaker = CircuitBreaker(self.config, clock=self._clock, name=scope)
                self._breakers[scope] = breaker
            return breaker

    def statuses(self) -> List[CircuitBreakerStatus]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.status() for breaker in breakers]

    def open_scopes(self) -> List[str]:
        return [s.name for s in self.statuses() if s.state == CircuitState.OPEN]
