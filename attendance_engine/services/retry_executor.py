"""
Retry executor: runs an async terminal operation under a retry policy,
exponential backoff and a circuit breaker, and raises CRITICAL alerts.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Generic, Optional, TypeVar

from attendance_engine.services.backoff import BackoffCalculator
from attendance_engine.services.circuit_breaker import CircuitBreaker
from attendance_engine.services.error_classifier import (
    DEFAULT_RETRYABLE_CATEGORIES,
    ClassifiedError,
    ErrorCategory,
    ErrorSeverity,
    classify,
    determine_severity,
)
from attendance_engine.services.notification_service import ALERTS_CHANNEL, safe_notify

logger = logging.getLogger(__name__)

T = TypeVar("T")

CIRCUIT_OPEN_CODE = "CIRCUIT_OPEN"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    retryable_errors: FrozenSet[ErrorCategory] = field(default_factory=lambda: DEFAULT_RETRYABLE_CATEGORIES)


@dataclass
class ExecutionResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ClassifiedError] = None
    attempts: int = 0


class AlertThrottle:
    """Lets at most one CRITICAL alert through per cooldown window."""

    def __init__(self, cooldown_s: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._lock = threading.Lock()
        self._last_sent: Optional[float] = None

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_sent is not None and now - self._last_sent < self.cooldown_s:
                return False
            self._last_sent = now
            return True


class RetryExecutor:
    """
    Executes ``operation`` sequentially up to ``policy.max_attempts`` times.

    - breaker denies: CIRCUIT_OPEN error, no attempt made
    - non-retryable failure or last attempt: stop, record a breaker failure,
      alert if the final severity is CRITICAL (throttled)
    - otherwise: sleep ``backoff.delay_ms(attempt)`` and retry
    - success: record a breaker success
    """

    def __init__(
        self,
        policy: RetryPolicy = RetryPolicy(),
        backoff: Optional[BackoffCalculator] = None,
        breaker: Optional[CircuitBreaker] = None,
        notifier=None,
        throttle: Optional[AlertThrottle] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self.backoff = backoff or BackoffCalculator()
        self.breaker = breaker or CircuitBreaker()
        self.notifier = notifier
        self.throttle = throttle or AlertThrottle()
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        device_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult[T]:
        if not self.breaker.allow_request():
            error = ClassifiedError(
                category=ErrorCategory.DEVICE_UNAVAILABLE,
                severity=determine_severity(ErrorCategory.DEVICE_UNAVAILABLE, 0, self.policy.max_attempts),
                message="Circuit breaker is open",
                code=CIRCUIT_OPEN_CODE,
                retryable=False,
                retry_count=0,
                device_id=device_id,
                operation=operation_name,
                context=dict(context or {}),
            )
            logger.warning(error.format_for_logging())
            return ExecutionResult(success=False, error=error, attempts=0)

        max_attempts = self.policy.max_attempts
        attempt = 0
        try:
            while True:
                attempt += 1
                try:
                    data = await operation()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    error = classify(
                        exc,
                        operation=operation_name,
                        device_id=device_id,
                        retry_count=attempt,
                        max_attempts=max_attempts,
                        retryable_categories=self.policy.retryable_errors,
                        context=context,
                    )
                    if not error.retryable or attempt >= max_attempts:
                        logger.error(
                            "%s gave up after %d attempt(s): %s",
                            operation_name, attempt, error.format_for_logging(),
                        )
                        self.breaker.record_failure()
                        self._maybe_alert(error)
                        return ExecutionResult(success=False, error=error, attempts=attempt)

                    delay_ms = self.backoff.delay_ms(attempt - 1)
                    logger.warning(
                        "%s attempt %d/%d failed, retrying in %.0fms: %s",
                        operation_name, attempt, max_attempts, delay_ms, error.format_for_logging(),
                    )
                    await self._sleep(delay_ms / 1000.0)
                    continue

                self.breaker.record_success()
                return ExecutionResult(success=True, data=data, attempts=attempt)
        except asyncio.CancelledError:
            self.breaker.release()
            raise

    def _maybe_alert(self, error: ClassifiedError) -> None:
        if error.severity != ErrorSeverity.CRITICAL or self.notifier is None:
            return
        if not self.throttle.try_acquire():
            logger.info("Suppressing CRITICAL alert for %s (cooldown active)", error.device_id)
            return
        safe_notify(self.notifier, ALERTS_CHANNEL, {
            "title": "Critical terminal error",
            "error": error.to_dict(),
        })
