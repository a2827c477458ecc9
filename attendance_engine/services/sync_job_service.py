"""
Sync job orchestration: persisted jobs that pull punches from the configured
terminals, reconcile them, and report per-device results.

Each job runs as a tracked asyncio task with its own database session. Devices
are processed one after another in priority order and every device's
reconciliation is committed on its own, so a later failure never undoes
earlier work. Cancellation of a running job is a persisted flag checked
between devices.
"""
import asyncio
import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from attendance_engine.core.config import DeviceConfig, Settings
from attendance_engine.core.exceptions import (
    DeviceOperationError,
    InvalidJobTransitionError,
    InvalidSyncConfigError,
    SyncJobNotFoundError,
)
from attendance_engine.models.attendance import AttendanceRecord
from attendance_engine.models.sync_job import FINISHED_JOB_STATUSES, SyncJob, SyncJobStatus, SyncJobType
from attendance_engine.schemas.sync import SyncHealthStatus, SyncJobConfig, SyncJobMetrics, UpcomingJob
from attendance_engine.services.backoff import BackoffCalculator, BackoffPolicy
from attendance_engine.services.circuit_breaker import CircuitBreakerRegistry
from attendance_engine.services.device_client import ConnectionTestResult, DeviceSyncClient
from attendance_engine.services.notification_service import SYNC_JOBS_CHANNEL, safe_notify
from attendance_engine.services.reconciliation_service import ReconciliationSummary, reconcile_punches
from attendance_engine.services.retry_executor import AlertThrottle, RetryExecutor, RetryPolicy
from attendance_engine.utils.datetime_utils import ensure_utc, now_utc
from attendance_engine.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SyncJobStatus.PENDING: {SyncJobStatus.RUNNING, SyncJobStatus.CANCELLED},
    SyncJobStatus.RUNNING: {SyncJobStatus.COMPLETED, SyncJobStatus.FAILED, SyncJobStatus.CANCELLED},
    SyncJobStatus.COMPLETED: set(),
    SyncJobStatus.FAILED: set(),
    SyncJobStatus.CANCELLED: set(),
}

# Jobs looked at when counting consecutive failures
HEALTH_WINDOW = 20
# No successful sync for this long makes the sync DEGRADED
STALE_SYNC_HOURS = 48


def validate_sync_config(config: SyncJobConfig, max_range_days: int) -> List[str]:
    """
    Validate a sync job configuration

    Returns:
        List of human readable problems; empty when the configuration is usable
    """
    errors: List[str] = []
    enabled = [d for d in config.devices if d.enabled]
    if not enabled:
        errors.append("At least one enabled device is required")

    seen = set()
    for device in config.devices:
        if device.id in seen:
            errors.append(f"Duplicate device id: {device.id}")
        seen.add(device.id)
        if not 1 <= device.port <= 65535:
            errors.append(f"Device {device.id} has invalid port {device.port}")
        if not device.ip.strip():
            errors.append(f"Device {device.id} has no IP address")

    if config.start_date > config.end_date:
        errors.append("start_date must be on or before end_date")
    elif (config.end_date - config.start_date).days + 1 > max_range_days:
        errors.append(f"Date range exceeds {max_range_days} days")
    return errors


class SyncJobOrchestrator:
    """Creates, runs, cancels and reports on sync jobs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        connection_factory: Callable[[DeviceConfig], Any],
        notifier=None,
        retry_policy: RetryPolicy = RetryPolicy(),
        backoff_policy: BackoffPolicy = BackoffPolicy(),
        breakers: Optional[CircuitBreakerRegistry] = None,
        notification_cooldown_s: float = 300.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
        default_devices: Optional[List[DeviceConfig]] = None,
        max_range_days: int = 31,
        health_failure_threshold: int = 3,
        daily_hour: int = 6,
        retention_days: int = 30,
    ) -> None:
        self.session_factory = session_factory
        self.connection_factory = connection_factory
        self.notifier = notifier
        self.retry_policy = retry_policy
        self.backoff_policy = backoff_policy
        self.breakers = breakers or CircuitBreakerRegistry()
        self.notification_cooldown_s = notification_cooldown_s
        self._throttles: Dict[str, AlertThrottle] = {}
        self._sleep = sleep
        self.default_devices = list(default_devices or [])
        self.max_range_days = max_range_days
        self.health_failure_threshold = health_failure_threshold
        self.daily_hour = daily_hour
        self.retention_days = retention_days
        self._tasks: Dict[int, asyncio.Task] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Callable[[], Session],
        connection_factory: Callable[[DeviceConfig], Any],
        notifier=None,
    ) -> "SyncJobOrchestrator":
        return cls(
            session_factory=session_factory,
            connection_factory=connection_factory,
            notifier=notifier,
            retry_policy=settings.retry_policy(),
            backoff_policy=settings.backoff_policy(),
            breakers=CircuitBreakerRegistry(settings.circuit_breaker_config()),
            notification_cooldown_s=settings.NOTIFICATION_COOLDOWN_S,
            default_devices=settings.SYNC_DEVICES,
            max_range_days=settings.SYNC_MAX_RANGE_DAYS,
            health_failure_threshold=settings.HEALTH_FAILURE_THRESHOLD,
            daily_hour=settings.SYNC_DAILY_HOUR,
            retention_days=settings.SYNC_JOB_RETENTION_DAYS,
        )

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create_sync_job(
        self,
        db: Session,
        job_type: SyncJobType,
        config: Union[SyncJobConfig, Dict[str, Any]],
        requested_by: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> SyncJob:
        """
        Validate the configuration and persist a PENDING job

        Raises:
            InvalidSyncConfigError: If the configuration is invalid
        """
        if not isinstance(config, SyncJobConfig):
            config = SyncJobConfig.model_validate(config)
        errors = validate_sync_config(config, self.max_range_days)
        if errors:
            raise InvalidSyncConfigError(errors)

        job = SyncJob(
            type=job_type,
            status=SyncJobStatus.PENDING,
            config_json=sanitize_for_json(config),
            requested_by=requested_by,
            scheduled_at=scheduled_at or now_utc(),
            cancel_requested=False,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info("Created %s sync job %s for %d device(s)", job_type.value, job.id, len(config.devices))
        return job

    def get_job(self, db: Session, job_id: int) -> SyncJob:
        job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
        if job is None:
            raise SyncJobNotFoundError(job_id)
        return job

    def list_jobs(self, db: Session, limit: int = 50) -> List[SyncJob]:
        return db.query(SyncJob).order_by(SyncJob.scheduled_at.desc(), SyncJob.id.desc()).limit(limit).all()

    def _transition(self, db: Session, job_id: int, expected: SyncJobStatus, target: SyncJobStatus, **values) -> bool:
        """
        Move a job from ``expected`` to ``target`` with one conditional UPDATE.

        Returns False when the row is no longer in ``expected`` (another session
        moved it first). The caller commits.

        Raises:
            InvalidJobTransitionError: If ``expected`` -> ``target`` is not a legal move
        """
        if target not in ALLOWED_TRANSITIONS[expected]:
            raise InvalidJobTransitionError(job_id, expected.value, target.value)
        changes = {getattr(SyncJob, name): value for name, value in values.items()}
        changes[SyncJob.status] = target
        updated = db.query(SyncJob).filter(
            SyncJob.id == job_id,
            SyncJob.status == expected,
        ).update(changes, synchronize_session=False)
        return updated == 1

    def _current_status(self, db: Session, job_id: int) -> Optional[SyncJobStatus]:
        status = db.query(SyncJob.status).filter(SyncJob.id == job_id).scalar()
        return SyncJobStatus(status) if status is not None else None

    def cancel_job(self, db: Session, job_id: int) -> bool:
        """
        Cancel a job.

        PENDING jobs are cancelled at once. RUNNING jobs get ``cancel_requested``
        and stop after the device in flight. Finished or unknown jobs return False.
        """
        cancelled = self._transition(
            db, job_id, SyncJobStatus.PENDING, SyncJobStatus.CANCELLED,
            finished_at=now_utc(),
            result_json={"success": False, "cancelled": True, "counts": {}, "errors": [], "device_results": []},
        )
        if cancelled:
            db.commit()
            logger.info("Cancelled pending sync job %s", job_id)
            return True
        flagged = db.query(SyncJob).filter(
            SyncJob.id == job_id,
            SyncJob.status == SyncJobStatus.RUNNING,
        ).update({SyncJob.cancel_requested: True}, synchronize_session=False)
        db.commit()
        if flagged:
            logger.info("Cancellation requested for running sync job %s", job_id)
            return True
        return False

    def submit(self, job_id: int) -> asyncio.Task:
        """Run a job in the background. Must be called from a running event loop."""
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.get_running_loop().create_task(self.execute_job(job_id), name=f"sync-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t, jid=job_id: self._on_task_done(jid, t))
        return task

    def _on_task_done(self, job_id: int, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            logger.warning("Background sync job %s task was cancelled", job_id)
            return
        exc = task.exception()
        if isinstance(exc, InvalidJobTransitionError):
            logger.warning("Background sync job %s not started: %s", job_id, exc)
        elif exc is not None:
            logger.error("Background sync job %s raised: %s", job_id, exc, exc_info=exc)

    @property
    def active_job_ids(self) -> List[int]:
        return [jid for jid, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        """Cancel and await every tracked background job."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def recover_interrupted_jobs(self, db: Session, now: Optional[datetime] = None) -> int:
        """
        Fail RUNNING jobs that no task in this process is executing.

        Called at startup; a job left RUNNING then belongs to a process that
        died mid-sync. Returns the number of jobs marked FAILED.
        """
        finished_at = ensure_utc(now) if now is not None else now_utc()
        orphaned = [
            job_id for (job_id,) in db.query(SyncJob.id).filter(SyncJob.status == SyncJobStatus.RUNNING).all()
            if job_id not in self._tasks
        ]
        recovered = 0
        for job_id in orphaned:
            message = "Sync job was interrupted before completion"
            if self._transition(
                db, job_id, SyncJobStatus.RUNNING, SyncJobStatus.FAILED,
                finished_at=finished_at,
                error_message=message,
                result_json={
                    "success": False,
                    "cancelled": False,
                    "counts": {},
                    "errors": [{"type": "INTERRUPTED", "message": message}],
                    "device_results": [],
                },
            ):
                recovered += 1
        db.commit()
        if recovered:
            logger.warning("Marked %d interrupted sync job(s) as FAILED", recovered)
        return recovered

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _throttle_for(self, device_id: str) -> AlertThrottle:
        # alert cooldown is kept per terminal
        throttle = self._throttles.get(device_id)
        if throttle is None:
            throttle = self._throttles[device_id] = AlertThrottle(self.notification_cooldown_s)
        return throttle

    def _client_for(self, device: DeviceConfig) -> DeviceSyncClient:
        executor = RetryExecutor(
            policy=self.retry_policy,
            backoff=BackoffCalculator(self.backoff_policy),
            breaker=self.breakers.get(device.id),
            notifier=self.notifier,
            throttle=self._throttle_for(device.id),
            sleep=self._sleep,
        )
        return DeviceSyncClient(device, self.connection_factory(device), executor)

    def _cancel_requested(self, db: Session, job_id: int) -> bool:
        flag = db.query(SyncJob.cancel_requested).filter(SyncJob.id == job_id).scalar()
        # end the read transaction before going back to the network
        db.commit()
        return bool(flag)

    async def execute_job(self, job_id: int) -> Dict[str, Any]:
        """
        Run a PENDING job to completion.

        Returns:
            Result dict with ``success``, ``counts``, ``errors`` and ``device_results``

        Raises:
            SyncJobNotFoundError: If the job does not exist
            InvalidJobTransitionError: If the job is not PENDING
        """
        db = self.session_factory()
        try:
            job = self.get_job(db, job_id)
            config_json = job.config_json
            current = SyncJobStatus(job.status)
            if not self._transition(db, job_id, current, SyncJobStatus.RUNNING, started_at=now_utc()):
                db.rollback()
                latest = self._current_status(db, job_id) or current
                raise InvalidJobTransitionError(job_id, latest.value, SyncJobStatus.RUNNING.value)
            db.commit()
            started = time.monotonic()
            logger.info("Sync job %s started", job_id)

            totals = ReconciliationSummary()
            errors: List[Dict[str, Any]] = []
            device_results: List[Dict[str, Any]] = []
            cancelled = False
            unexpected: Optional[BaseException] = None
            interrupted: Optional[asyncio.CancelledError] = None

            try:
                config = SyncJobConfig.model_validate(config_json)
                devices = sorted((d for d in config.devices if d.enabled), key=lambda d: d.priority)

                for device in devices:
                    if self._cancel_requested(db, job_id):
                        cancelled = True
                        logger.info("Sync job %s observed cancellation before device %s", job_id, device.id)
                        break
                    device_results.append(
                        await self._sync_device(db, job_id, device, config.start_date, config.end_date, totals, errors)
                    )
            except asyncio.CancelledError as e:
                # task cancelled (service shutdown); finish the row before propagating
                db.rollback()
                interrupted = e
                cancelled = True
                logger.warning("Sync job %s interrupted while running", job_id)
                errors.append({"type": "INTERRUPTED", "message": "Sync job task was cancelled before completion"})
            except Exception as e:
                db.rollback()
                unexpected = e
                logger.error("Sync job %s failed unexpectedly: %s", job_id, e, exc_info=True)
                errors.append({"type": "UNEXPECTED", "message": str(e)})

            succeeded = [r for r in device_results if r["status"] == "SUCCESS"]
            failed = [r for r in device_results if r["status"] == "FAILED"]
            if cancelled:
                final_status = SyncJobStatus.CANCELLED
            elif unexpected is not None:
                final_status = SyncJobStatus.FAILED
            elif failed and not succeeded:
                final_status = SyncJobStatus.FAILED
            else:
                final_status = SyncJobStatus.COMPLETED

            result = {
                "success": final_status == SyncJobStatus.COMPLETED,
                "cancelled": cancelled,
                "counts": {
                    "total_processed": totals.total_processed,
                    "created": totals.created,
                    "updated": totals.updated,
                    "skipped": totals.skipped,
                    "duplicates": totals.duplicates,
                    "conflicts": totals.conflicts,
                    "errors": len(errors),
                    "devices_succeeded": len(succeeded),
                    "devices_failed": len(failed),
                },
                "errors": errors,
                "device_results": device_results,
            }

            values: Dict[str, Any] = {
                "finished_at": now_utc(),
                "duration_ms": int((time.monotonic() - started) * 1000),
                "result_json": sanitize_for_json(result),
            }
            if final_status == SyncJobStatus.FAILED:
                values["error_message"] = str(unexpected) if unexpected is not None else "All devices failed"
            if not self._transition(db, job_id, SyncJobStatus.RUNNING, final_status, **values):
                db.rollback()
                logger.warning(
                    "Sync job %s left RUNNING by another session (now %s), result not recorded",
                    job_id, self._current_status(db, job_id),
                )
                if interrupted is not None:
                    raise interrupted
                return result
            db.commit()
            logger.info(
                "Sync job %s finished %s: created=%d updated=%d duplicates=%d errors=%d",
                job_id, final_status.value, totals.created, totals.updated, totals.duplicates, len(errors),
            )
            safe_notify(self.notifier, SYNC_JOBS_CHANNEL, {
                "event": "sync_job_finished",
                "job_id": job_id,
                "status": final_status.value,
                "counts": result["counts"],
            })
            if interrupted is not None:
                raise interrupted
            return result
        finally:
            db.close()

    async def _sync_device(
        self,
        db: Session,
        job_id: int,
        device: DeviceConfig,
        start_date: date,
        end_date: date,
        totals: ReconciliationSummary,
        errors: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        client = self._client_for(device)
        started = time.monotonic()
        entry: Dict[str, Any] = {"device_id": device.id, "device_name": device.name}
        try:
            punches = await client.fetch_punches(start_date, end_date)
            summary = reconcile_punches(db, punches, sync_job_id=job_id, terminal_id=device.id)
            db.commit()
        except DeviceOperationError as e:
            db.rollback()
            classified = e.classified
            logger.error("Device %s failed in sync job %s: %s", device.id, job_id,
                         classified.format_for_logging() if classified else e)
            error = classified.to_dict() if classified else {"message": str(e)}
            entry.update(status="FAILED", error=error)
            errors.append({"type": "DEVICE", "device_id": device.id, **error})
        except Exception as e:
            db.rollback()
            logger.error("Reconciling punches from %s failed in sync job %s: %s", device.id, job_id, e, exc_info=True)
            entry.update(status="FAILED", error={"message": str(e)})
            errors.append({"type": "RECONCILIATION", "device_id": device.id, "message": str(e)})
        else:
            totals.merge(summary)
            entry.update(
                status="SUCCESS",
                punches=len(punches),
                created=summary.created,
                updated=summary.updated,
                duplicates=summary.duplicates,
                conflicts=summary.conflicts,
            )
            errors.extend({"device_id": device.id, **sanitize_for_json(err)} for err in summary.errors)
        entry["duration_ms"] = int((time.monotonic() - started) * 1000)
        return entry

    async def test_connection(self, device: DeviceConfig) -> ConnectionTestResult:
        return await self._client_for(device).test_connection()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_job_metrics(self, db: Session) -> SyncJobMetrics:
        jobs = db.query(SyncJob).all()
        by_status: Dict[SyncJobStatus, int] = {status: 0 for status in SyncJobStatus}
        for job in jobs:
            by_status[SyncJobStatus(job.status)] += 1

        completed = by_status[SyncJobStatus.COMPLETED]
        failed = by_status[SyncJobStatus.FAILED]
        finished_runs = completed + failed
        durations = [j.duration_ms for j in jobs if j.status == SyncJobStatus.COMPLETED and j.duration_ms is not None]
        finished_at = [ensure_utc(j.finished_at) for j in jobs if j.finished_at is not None and j.started_at is not None]

        pending = sorted(
            (j for j in jobs if j.status == SyncJobStatus.PENDING),
            key=lambda j: ensure_utc(j.scheduled_at),
        )[:5]

        return SyncJobMetrics(
            total_jobs=len(jobs),
            completed_jobs=completed,
            failed_jobs=failed,
            cancelled_jobs=by_status[SyncJobStatus.CANCELLED],
            running_jobs=by_status[SyncJobStatus.RUNNING],
            pending_jobs=by_status[SyncJobStatus.PENDING],
            success_rate=round(completed / finished_runs, 4) if finished_runs else 0.0,
            average_duration_ms=sum(durations) / len(durations) if durations else None,
            last_run=max(finished_at) if finished_at else None,
            upcoming_jobs=[
                UpcomingJob(id=j.id, type=j.type, scheduled_at=ensure_utc(j.scheduled_at)) for j in pending
            ],
        )

    def get_health_status(self, db: Session, now: Optional[datetime] = None) -> SyncHealthStatus:
        now = ensure_utc(now) if now is not None else now_utc()
        recent = db.query(SyncJob).filter(
            SyncJob.status.in_([SyncJobStatus.COMPLETED, SyncJobStatus.FAILED]),
            SyncJob.finished_at.isnot(None),
        ).order_by(SyncJob.finished_at.desc(), SyncJob.id.desc()).limit(HEALTH_WINDOW).all()

        consecutive = 0
        for job in recent:
            if job.status != SyncJobStatus.FAILED:
                break
            consecutive += 1

        last_success = db.query(SyncJob).filter(
            SyncJob.status == SyncJobStatus.COMPLETED,
            SyncJob.finished_at.isnot(None),
        ).order_by(SyncJob.finished_at.desc()).first()
        last_successful_run = ensure_utc(last_success.finished_at) if last_success else None

        open_circuits = self.breakers.open_scopes()
        issues: List[str] = []
        if consecutive:
            issues.append(f"{consecutive} consecutive failed sync job(s)")
        for scope in open_circuits:
            issues.append(f"Circuit open for device {scope}")
        if recent and (last_successful_run is None or now - last_successful_run > timedelta(hours=STALE_SYNC_HOURS)):
            issues.append(f"No successful sync in the last {STALE_SYNC_HOURS} hours")

        if consecutive >= self.health_failure_threshold:
            current_status = "DOWN"
        elif issues:
            current_status = "DEGRADED"
        else:
            current_status = "ACTIVE"

        return SyncHealthStatus(
            is_healthy=consecutive < self.health_failure_threshold,
            current_status=current_status,
            consecutive_failures=consecutive,
            last_successful_run=last_successful_run,
            open_circuits=open_circuits,
            issues=issues,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def next_daily_run(self, now: datetime) -> datetime:
        now = ensure_utc(now)
        run_at = now.replace(hour=self.daily_hour, minute=0, second=0, microsecond=0)
        if run_at <= now:
            run_at += timedelta(days=1)
        return run_at

    def schedule_daily_sync(self, db: Session, now: Optional[datetime] = None) -> Optional[SyncJob]:
        """
        Make sure the next daily SCHEDULED job exists.

        The job covers the day before its run date and the run date itself.
        Returns the created job, or None when one is already pending or no
        terminals are configured.
        """
        if not self.default_devices:
            logger.debug("No terminals configured, skipping daily sync scheduling")
            return None
        pending = db.query(SyncJob.id).filter(
            SyncJob.type == SyncJobType.SCHEDULED,
            SyncJob.status == SyncJobStatus.PENDING,
        ).first()
        if pending is not None:
            return None

        run_at = self.next_daily_run(now or now_utc())
        config = SyncJobConfig(
            devices=self.default_devices,
            start_date=run_at.date() - timedelta(days=1),
            end_date=run_at.date(),
        )
        return self.create_sync_job(db, SyncJobType.SCHEDULED, config, requested_by=None, scheduled_at=run_at)

    def dispatch_due_jobs(self, now: Optional[datetime] = None) -> List[int]:
        """Submit every PENDING job whose scheduled time has passed. Returns the submitted ids."""
        now = ensure_utc(now) if now is not None else now_utc()
        db = self.session_factory()
        try:
            due = [
                job.id
                for job in db.query(SyncJob).filter(SyncJob.status == SyncJobStatus.PENDING).all()
                if ensure_utc(job.scheduled_at) <= now
            ]
        finally:
            db.close()
        submitted = []
        for job_id in due:
            if job_id in self._tasks:
                continue
            self.submit(job_id)
            submitted.append(job_id)
        return submitted

    def cleanup_old_jobs(self, db: Session, days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete finished jobs older than the retention window. Returns the number removed."""
        retention = days if days is not None else self.retention_days
        cutoff = (ensure_utc(now) if now is not None else now_utc()) - timedelta(days=retention)
        old = [
            job for job in db.query(SyncJob).filter(
                SyncJob.status.in_(list(FINISHED_JOB_STATUSES)),
                SyncJob.finished_at.isnot(None),
            ).all()
            if ensure_utc(job.finished_at) < cutoff
        ]
        if old:
            # records outlive the job that imported them
            db.query(AttendanceRecord).filter(
                AttendanceRecord.sync_job_id.in_([job.id for job in old]),
            ).update({AttendanceRecord.sync_job_id: None}, synchronize_session=False)
        for job in old:
            db.delete(job)
        db.commit()
        if old:
            logger.info("Removed %d sync job(s) finished before %s", len(old), cutoff.isoformat())
        return len(old)

    async def run_scheduler(self, stop_event: asyncio.Event, interval_s: float = 60.0) -> None:
        """Schedule and dispatch jobs until ``stop_event`` is set."""
        logger.info("Sync scheduler started (interval=%ss, daily hour=%s)", interval_s, self.daily_hour)
        while not stop_event.is_set():
            try:
                db = self.session_factory()
                try:
                    self.schedule_daily_sync(db)
                    self.cleanup_old_jobs(db)
                finally:
                    db.close()
                self.dispatch_due_jobs()
            except Exception as e:
                logger.error("Sync scheduler iteration failed: %s", e, exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass
        logger.info("Sync scheduler stopped")
