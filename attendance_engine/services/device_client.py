"""
Device sync client: talks to one biometric terminal through a DeviceConnection,
under the retry executor, and turns raw log rows into AttendancePunch values.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from attendance_engine.core.config import DeviceConfig
from attendance_engine.core.exceptions import DeviceOperationError, MalformedPunchDataError
from attendance_engine.services.error_classifier import ClassifiedError
from attendance_engine.services.retry_executor import CIRCUIT_OPEN_CODE, RetryExecutor
from attendance_engine.utils.datetime_utils import now_utc, parse_timestamp, to_iso_seconds, wall_clock

logger = logging.getLogger(__name__)

# Weight of the previous average in the response time moving average
_RESPONSE_TIME_DECAY = 0.7


class DeviceConnection(Protocol):
    """Async connection to one terminal."""

    async def connect(self, ip: str, port: int, timeout_ms: int) -> None:
        ...

    async def fetch_punches(self, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        ...

    async def disconnect(self) -> None:
        ...


@dataclass(frozen=True)
class AttendancePunch:
    employee_external_id: str
    timestamp: datetime
    terminal_id: str
    device_uid: Optional[str] = None

    @property
    def date(self) -> date:
        return self.timestamp.date()

    @property
    def source_transaction_id(self) -> str:
        """Stable id of this punch, used for deduplication across syncs."""
        if self.device_uid:
            return f"{self.terminal_id}:uid:{self.device_uid}"
        return f"{self.terminal_id}:{self.employee_external_id}:{to_iso_seconds(self.timestamp)}"


@dataclass
class ConnectionTestResult:
    success: bool
    response_time_ms: float
    message: str
    error: Optional[ClassifiedError] = None


@dataclass
class DeviceMetrics:
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    average_response_time_ms: float = 0.0
    circuit_breaker_trips: int = 0
    circuit_open_rejections: int = 0
    last_operation_time: Optional[datetime] = None


def parse_punch_rows(
    rows: Any,
    terminal_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[AttendancePunch]:
    """
    Structural validation of a raw terminal payload.

    Every row must be a mapping with a non-empty ``user_id`` and a parseable
    ``timestamp``. Rows outside [start_date, end_date] are dropped.

    Raises:
        MalformedPunchDataError: If the payload or any row is malformed
    """
    if rows is None:
        return []
    if isinstance(rows, (str, bytes)) or not isinstance(rows, (list, tuple)):
        raise MalformedPunchDataError(f"expected a list of rows, got {type(rows).__name__}")

    punches: List[AttendancePunch] = []
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise MalformedPunchDataError(f"row {index} is not a mapping")
        user_id = row.get("user_id")
        if user_id is None or str(user_id).strip() == "":
            raise MalformedPunchDataError(f"row {index} has no user_id")
        try:
            timestamp = wall_clock(parse_timestamp(row.get("timestamp")))
        except (TypeError, ValueError) as e:
            raise MalformedPunchDataError(f"row {index} timestamp: {e}") from e

        if start_date is not None and timestamp.date() < start_date:
            continue
        if end_date is not None and timestamp.date() > end_date:
            continue

        uid = row.get("uid")
        punches.append(AttendancePunch(
            employee_external_id=str(user_id).strip(),
            timestamp=timestamp,
            terminal_id=terminal_id,
            device_uid=str(uid) if uid not in (None, "") else None,
        ))
    return punches


class DeviceSyncClient:
    """Client for one configured terminal."""

    def __init__(
        self,
        device: DeviceConfig,
        connection: DeviceConnection,
        executor: RetryExecutor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.device = device
        self.connection = connection
        self.executor = executor
        self._clock = clock
        self._metrics = DeviceMetrics()
        self._metrics_lock = threading.Lock()

    @property
    def _timeout_s(self) -> float:
        return self.device.timeout_ms / 1000.0

    async def _bounded(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self._timeout_s)

    async def _disconnect_quietly(self) -> None:
        try:
            await self._bounded(self.connection.disconnect())
        except Exception as e:
            logger.warning("Disconnect from %s failed: %s", self.device.id, e)

    async def test_connection(self) -> ConnectionTestResult:
        """Connect and disconnect once, measuring the round trip."""
        async def _probe() -> bool:
            try:
                await self._bounded(self.connection.connect(self.device.ip, self.device.port, self.device.timeout_ms))
            finally:
                await self._disconnect_quietly()
            return True

        started = self._clock()
        result = await self.executor.execute(_probe, "test_connection", device_id=self.device.id, context={"ip": self.device.ip})
        elapsed_ms = (self._clock() - started) * 1000.0
        self._record(result.success, elapsed_ms, result.error)

        if result.success:
            return ConnectionTestResult(success=True, response_time_ms=elapsed_ms, message="Connection successful")
        return ConnectionTestResult(
            success=False,
            response_time_ms=elapsed_ms,
            message=result.error.message if result.error else "Connection failed",
            error=result.error,
        )

    async def fetch_punches(self, start_date: date, end_date: date) -> List[AttendancePunch]:
        """
        Pull the punches recorded between ``start_date`` and ``end_date`` (inclusive).

        Raises:
            DeviceOperationError: If the executor gave up; carries the ClassifiedError
        """
        async def _fetch() -> List[AttendancePunch]:
            try:
                await self._bounded(self.connection.connect(self.device.ip, self.device.port, self.device.timeout_ms))
                rows = await self._bounded(self.connection.fetch_punches(start_date, end_date))
            finally:
                await self._disconnect_quietly()
            return parse_punch_rows(rows, self.device.id, start_date, end_date)

        started = self._clock()
        result = await self.executor.execute(
            _fetch,
            "fetch_punches",
            device_id=self.device.id,
            context={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        self._record(result.success, (self._clock() - started) * 1000.0, result.error)

        if not result.success:
            raise DeviceOperationError(
                f"Fetching punches from {self.device.id} failed: {result.error.message}",
                classified=result.error,
            )
        logger.info("Fetched %d punches from %s", len(result.data), self.device.id)
        return result.data

    def _record(self, success: bool, elapsed_ms: float, error: Optional[ClassifiedError]) -> None:
        with self._metrics_lock:
            m = self._metrics
            m.total_operations += 1
            m.last_operation_time = now_utc()
            if success:
                m.successful_operations += 1
            else:
                m.failed_operations += 1
                if error is not None and error.code == CIRCUIT_OPEN_CODE:
                    m.circuit_open_rejections += 1
            if m.total_operations == 1:
                m.average_response_time_ms = elapsed_ms
            else:
                m.average_response_time_ms = (
                    m.average_response_time_ms * _RESPONSE_TIME_DECAY + elapsed_ms * (1 - _RESPONSE_TIME_DECAY)
                )

    def metrics(self) -> DeviceMetrics:
        with self._metrics_lock:
            snapshot = DeviceMetrics(**vars(self._metrics))
        snapshot.circuit_breaker_trips = self.executor.breaker.trips
        return snapshot
