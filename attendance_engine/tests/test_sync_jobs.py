"""
Tests for sync job orchestration (lifecycle, execution, metrics, health, scheduling)
"""
import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from attendance_engine.core.config import DeviceConfig
from attendance_engine.core.exceptions import InvalidJobTransitionError, InvalidSyncConfigError, SyncJobNotFoundError
from attendance_engine.models.attendance import AttendanceRecord
from attendance_engine.models.sync_job import SyncJob, SyncJobStatus, SyncJobType
from attendance_engine.services.notification_service import ALERTS_CHANNEL, SYNC_JOBS_CHANNEL
from attendance_engine.services.sync_job_service import SyncJobOrchestrator
from attendance_engine.tests.conftest import TestingSessionLocal, FakeConnection, device_dict, make_staff

UTC = timezone.utc


def config(*devices, start="2024-01-15", end="2024-01-15"):
    return {"devices": list(devices) or [device_dict("T1")], "start_date": start, "end_date": end}


def rows(*entries):
    return [{"uid": uid, "user_id": user, "timestamp": ts} for uid, user, ts in entries]


def reload(db, job_id):
    db.expire_all()
    return db.query(SyncJob).filter(SyncJob.id == job_id).one()


class HangingConnection(FakeConnection):
    """Terminal that accepts the connection and never answers the fetch"""

    def __init__(self, fetching):
        super().__init__()
        self.fetching = fetching

    async def fetch_punches(self, start_date, end_date):
        self.fetches += 1
        self.fetching.set()
        await asyncio.Event().wait()


def finished_job(db, status, finished_at, duration_ms=100):
    job = SyncJob(
        type=SyncJobType.MANUAL_TRIGGER,
        status=status,
        config_json=config(),
        scheduled_at=finished_at - timedelta(minutes=1),
        started_at=finished_at - timedelta(seconds=1),
        finished_at=finished_at,
        duration_ms=duration_ms,
        cancel_requested=False,
    )
    db.add(job)
    db.commit()
    return job


# ---------------------------------------------------------------------------
# Creation and validation
# ---------------------------------------------------------------------------

def test_create_job_persists_pending(db, orchestrator):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config(), requested_by=7)
    assert job.id is not None
    assert job.status == SyncJobStatus.PENDING
    assert job.requested_by == 7
    assert job.config_json["devices"][0]["id"] == "T1"
    assert job.config_json["start_date"] == "2024-01-15"


@pytest.mark.parametrize("bad_config, message", [
    (config(device_dict("T1", enabled=False)), "At least one enabled device"),
    (config(device_dict("T1"), device_dict("T1")), "Duplicate device id"),
    (config(device_dict("T1", port=70000)), "invalid port"),
    (config(device_dict("T1", ip="  ")), "no IP address"),
    (config(start="2024-01-20", end="2024-01-10"), "start_date must be on or before end_date"),
    (config(start="2024-01-01", end="2024-03-01"), "exceeds 31 days"),
])
def test_create_job_rejects_invalid_config(db, orchestrator, bad_config, message):
    with pytest.raises(InvalidSyncConfigError) as exc_info:
        orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, bad_config)
    assert any(message in error for error in exc_info.value.errors)
    assert db.query(SyncJob).count() == 0


def test_get_unknown_job_raises(db, orchestrator):
    with pytest.raises(SyncJobNotFoundError):
        orchestrator.get_job(db, 999)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def test_execute_job_imports_punches(db, orchestrator, connections, notifier):
    staff = make_staff(db, "E001")
    connections["T1"] = FakeConnection(rows=rows(
        (1, "E001", "2024-01-15T08:00:00"),
        (2, "E001", "2024-01-15T17:00:00"),
        (3, "E404", "2024-01-15T09:00:00"),
    ))
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())

    result = asyncio.run(orchestrator.execute_job(job.id))

    assert result["success"] is True
    assert result["counts"]["total_processed"] == 3
    assert result["counts"]["created"] == 1
    assert result["counts"]["updated"] == 1
    assert result["counts"]["devices_succeeded"] == 1
    assert result["errors"][0]["type"] == "EMPLOYEE_MAPPING"
    assert result["device_results"][0]["status"] == "SUCCESS"

    job = reload(db, job.id)
    assert job.status == SyncJobStatus.COMPLETED
    assert job.started_at is not None and job.finished_at is not None
    assert job.duration_ms is not None
    assert job.result_json["counts"]["created"] == 1

    record = db.query(AttendanceRecord).one()
    assert record.staff_id == staff.id
    assert record.sync_job_id == job.id
    assert record.terminal_id == "T1"

    events = notifier.on(SYNC_JOBS_CHANNEL)
    assert events[-1]["status"] == "COMPLETED"
    assert events[-1]["job_id"] == job.id


def test_rerunning_same_range_creates_nothing(db, orchestrator, connections):
    make_staff(db, "E001")
    connections["T1"] = FakeConnection(rows=rows((1, "E001", "2024-01-15T08:00:00")))
    first = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    asyncio.run(orchestrator.execute_job(first.id))

    second = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    result = asyncio.run(orchestrator.execute_job(second.id))
    assert result["counts"]["created"] == 0
    assert result["counts"]["duplicates"] == 1
    db.expire_all()
    assert db.query(AttendanceRecord).count() == 1


def test_partial_failure_keeps_successful_devices(db, orchestrator, connections):
    make_staff(db, "E001")
    connections["T1"] = FakeConnection(fail_with=ConnectionError("connection refused"))
    connections["T2"] = FakeConnection(rows=rows((5, "E001", "2024-01-15T08:00:00")))
    job = orchestrator.create_sync_job(
        db, SyncJobType.MANUAL_TRIGGER, config(device_dict("T1", priority=1), device_dict("T2", priority=2)),
    )

    result = asyncio.run(orchestrator.execute_job(job.id))

    assert result["success"] is True
    assert result["counts"]["devices_failed"] == 1
    assert result["counts"]["devices_succeeded"] == 1
    assert [r["device_id"] for r in result["device_results"]] == ["T1", "T2"]
    device_error = result["errors"][0]
    assert device_error["type"] == "DEVICE"
    assert device_error["device_id"] == "T1"
    assert device_error["category"] == "NETWORK"
    # default policy: 3 attempts
    assert connections["T1"].connects == 3
    assert reload(db, job.id).status == SyncJobStatus.COMPLETED
    db.expire_all()
    assert db.query(AttendanceRecord).count() == 1


def test_all_devices_failing_fails_job(db, orchestrator, connections):
    connections["T1"] = FakeConnection(fail_with=PermissionError("unauthorized: wrong comm key"))
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())

    result = asyncio.run(orchestrator.execute_job(job.id))

    assert result["success"] is False
    job = reload(db, job.id)
    assert job.status == SyncJobStatus.FAILED
    assert job.error_message == "All devices failed"
    # authentication errors are not retried
    assert connections["T1"].connects == 1


def test_critical_alerts_are_throttled_per_device(db, orchestrator, connections, notifier):
    connections["T1"] = FakeConnection(fail_with=Exception("Unauthorized: wrong comm key"))
    connections["T2"] = FakeConnection(fail_with=Exception("Unauthorized: wrong comm key"))
    both = config(device_dict("T1", priority=1), device_dict("T2", priority=2))

    first = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, both)
    asyncio.run(orchestrator.execute_job(first.id))
    alerted = [alert["error"]["device_id"] for alert in notifier.on(ALERTS_CHANNEL)]
    assert alerted == ["T1", "T2"]

    # a second failure of the same terminals falls inside each cooldown
    second = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, both)
    asyncio.run(orchestrator.execute_job(second.id))
    assert len(notifier.on(ALERTS_CHANNEL)) == 2


def test_devices_run_in_priority_order_and_disabled_are_skipped(db, orchestrator, connections):
    order = []
    for device_id in ("A", "B", "C"):
        connections[device_id] = FakeConnection(on_fetch=lambda d=device_id: order.append(d))
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config(
        device_dict("A", priority=3), device_dict("B", priority=1), device_dict("C", priority=2, enabled=False),
    ))
    asyncio.run(orchestrator.execute_job(job.id))
    assert order == ["B", "A"]


def test_execute_twice_is_rejected(db, orchestrator):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    asyncio.run(orchestrator.execute_job(job.id))
    with pytest.raises(InvalidJobTransitionError):
        asyncio.run(orchestrator.execute_job(job.id))


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

def test_cancel_pending_job(db, orchestrator):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    assert orchestrator.cancel_job(db, job.id) is True
    job = reload(db, job.id)
    assert job.status == SyncJobStatus.CANCELLED
    assert job.result_json["cancelled"] is True
    # finished jobs cannot be cancelled again, and cannot be started
    assert orchestrator.cancel_job(db, job.id) is False
    with pytest.raises(InvalidJobTransitionError):
        asyncio.run(orchestrator.execute_job(job.id))


def test_cancel_unknown_job_returns_false(db, orchestrator):
    assert orchestrator.cancel_job(db, 12345) is False


def test_cancel_completed_job_returns_false(db, orchestrator):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    asyncio.run(orchestrator.execute_job(job.id))
    assert reload(db, job.id).status == SyncJobStatus.COMPLETED

    assert orchestrator.cancel_job(db, job.id) is False
    job = reload(db, job.id)
    assert job.status == SyncJobStatus.COMPLETED
    assert job.cancel_requested is False


def test_cancel_running_job_stops_before_next_device(db, orchestrator, connections):
    make_staff(db, "E001")
    job = orchestrator.create_sync_job(
        db, SyncJobType.MANUAL_TRIGGER, config(device_dict("T1", priority=1), device_dict("T2", priority=2)),
    )

    job_id = job.id

    def request_cancel():
        session = TestingSessionLocal()
        try:
            assert orchestrator.cancel_job(session, job_id) is True
        finally:
            session.close()

    connections["T1"] = FakeConnection(
        rows=rows((1, "E001", "2024-01-15T08:00:00"), (2, "E001", "2024-01-15T17:00:00")),
        on_fetch=request_cancel,
    )
    connections["T2"] = FakeConnection()

    result = asyncio.run(orchestrator.execute_job(job_id))

    assert result["cancelled"] is True
    assert result["success"] is False
    assert [r["device_id"] for r in result["device_results"]] == ["T1"]
    assert result["counts"]["created"] == 1
    assert connections["T2"].connects == 0
    assert reload(db, job_id).status == SyncJobStatus.CANCELLED

    # work committed for T1 before the cancellation was observed is kept
    record = db.query(AttendanceRecord).one()
    assert record.sync_job_id == job_id
    assert record.clock_out_time == datetime(2024, 1, 15, 17, 0)


def test_cancel_committed_before_start_keeps_job_cancelled(db, orchestrator, connections, monkeypatch):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    job_id = job.id
    load_job = orchestrator.get_job

    def load_then_cancel_elsewhere(session, requested_id):
        found = load_job(session, requested_id)
        other = TestingSessionLocal()
        try:
            assert orchestrator.cancel_job(other, requested_id) is True
        finally:
            other.close()
        return found

    monkeypatch.setattr(orchestrator, "get_job", load_then_cancel_elsewhere)

    with pytest.raises(InvalidJobTransitionError):
        asyncio.run(orchestrator.execute_job(job_id))

    assert reload(db, job_id).status == SyncJobStatus.CANCELLED
    assert "T1" not in connections


def test_finished_status_is_not_overwritten_by_running_job(db, orchestrator, connections):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    job_id = job.id

    def fail_elsewhere():
        session = TestingSessionLocal()
        try:
            assert orchestrator.recover_interrupted_jobs(session) == 1
        finally:
            session.close()

    connections["T1"] = FakeConnection(on_fetch=fail_elsewhere)

    asyncio.run(orchestrator.execute_job(job_id))

    job = reload(db, job_id)
    assert job.status == SyncJobStatus.FAILED
    assert job.error_message == "Sync job was interrupted before completion"


def test_shutdown_finishes_interrupted_job_as_cancelled(db, orchestrator, connections):
    make_staff(db, "E001")
    job = orchestrator.create_sync_job(
        db, SyncJobType.MANUAL_TRIGGER, config(device_dict("T1", priority=1), device_dict("T2", priority=2)),
    )
    job_id = job.id
    connections["T1"] = FakeConnection(rows=rows((1, "E001", "2024-01-15T08:00:00")))

    async def run():
        fetching = asyncio.Event()
        connections["T2"] = HangingConnection(fetching)
        task = orchestrator.submit(job_id)
        await fetching.wait()
        await orchestrator.shutdown()
        return task

    task = asyncio.run(run())

    assert task.cancelled()
    job = reload(db, job_id)
    assert job.status == SyncJobStatus.CANCELLED
    assert job.finished_at is not None
    assert job.result_json["cancelled"] is True
    assert job.result_json["errors"][-1]["type"] == "INTERRUPTED"
    assert [r["device_id"] for r in job.result_json["device_results"]] == ["T1"]
    assert db.query(AttendanceRecord).count() == 1
    assert orchestrator.cancel_job(db, job_id) is False


def test_recover_interrupted_jobs_fails_orphaned_running_jobs(db, orchestrator):
    now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    orphan = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())
    orphan.status = SyncJobStatus.RUNNING
    orphan.started_at = now - timedelta(hours=1)
    db.commit()
    orphan_id = orphan.id
    done_id = finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(hours=2)).id

    assert orchestrator.recover_interrupted_jobs(db, now=now) == 1

    orphan = reload(db, orphan_id)
    assert orphan.status == SyncJobStatus.FAILED
    assert orphan.error_message == "Sync job was interrupted before completion"
    assert orphan.result_json["success"] is False
    assert orphan.result_json["errors"][0]["type"] == "INTERRUPTED"
    assert reload(db, done_id).status == SyncJobStatus.COMPLETED
    assert orchestrator.cancel_job(db, orphan_id) is False
    assert orchestrator.recover_interrupted_jobs(db, now=now) == 0


def test_submit_runs_job_in_background(db, orchestrator):
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config())

    async def run():
        task = orchestrator.submit(job.id)
        assert orchestrator.submit(job.id) is task
        assert orchestrator.active_job_ids == [job.id]
        await task
        await asyncio.sleep(0)
        return task.result()

    result = asyncio.run(run())
    assert result["success"] is True
    assert orchestrator.active_job_ids == []
    assert reload(db, job.id).status == SyncJobStatus.COMPLETED


# ---------------------------------------------------------------------------
# Metrics and health
# ---------------------------------------------------------------------------

def test_job_metrics(db, orchestrator):
    now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(hours=3), duration_ms=100)
    finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(hours=2), duration_ms=300)
    finished_job(db, SyncJobStatus.FAILED, now - timedelta(hours=1))
    orchestrator.create_sync_job(db, SyncJobType.SCHEDULED, config(), scheduled_at=now + timedelta(hours=5))

    metrics = orchestrator.get_job_metrics(db)
    assert metrics.total_jobs == 4
    assert metrics.completed_jobs == 2
    assert metrics.failed_jobs == 1
    assert metrics.pending_jobs == 1
    assert metrics.success_rate == pytest.approx(0.6667)
    assert metrics.average_duration_ms == 200
    assert metrics.last_run == now - timedelta(hours=1)
    assert len(metrics.upcoming_jobs) == 1
    assert metrics.upcoming_jobs[0].type == SyncJobType.SCHEDULED


def test_health_active_when_recent_success(db, orchestrator):
    now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    finished_job(db, SyncJobStatus.FAILED, now - timedelta(hours=5))
    finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(hours=1))
    health = orchestrator.get_health_status(db, now=now)
    assert health.current_status == "ACTIVE"
    assert health.is_healthy is True
    assert health.consecutive_failures == 0
    assert health.last_successful_run == now - timedelta(hours=1)


def test_health_degraded_then_down(db, orchestrator):
    now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(hours=4))
    finished_job(db, SyncJobStatus.FAILED, now - timedelta(hours=3))
    health = orchestrator.get_health_status(db, now=now)
    assert health.current_status == "DEGRADED"
    assert health.consecutive_failures == 1

    finished_job(db, SyncJobStatus.FAILED, now - timedelta(hours=2))
    finished_job(db, SyncJobStatus.FAILED, now - timedelta(hours=1))
    health = orchestrator.get_health_status(db, now=now)
    assert health.current_status == "DOWN"
    assert health.is_healthy is False
    assert health.consecutive_failures == 3


def test_health_degraded_when_last_success_is_stale(db, orchestrator):
    now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(hours=72))
    health = orchestrator.get_health_status(db, now=now)
    assert health.current_status == "DEGRADED"
    assert any("48 hours" in issue for issue in health.issues)


def test_health_reports_open_circuits(db, orchestrator):
    breaker = orchestrator.breakers.get("T9")
    for _ in range(breaker.config.failure_threshold):
        breaker.record_failure()
    health = orchestrator.get_health_status(db)
    assert health.open_circuits == ["T9"]
    assert health.current_status == "DEGRADED"


# ---------------------------------------------------------------------------
# Scheduling and retention
# ---------------------------------------------------------------------------

def test_schedule_daily_sync(db, orchestrator):
    orchestrator.default_devices = []
    assert orchestrator.schedule_daily_sync(db, now=datetime(2024, 1, 15, 7, 0, tzinfo=UTC)) is None

    orchestrator.default_devices = [DeviceConfig(**device_dict("T1"))]
    job = orchestrator.schedule_daily_sync(db, now=datetime(2024, 1, 15, 7, 0, tzinfo=UTC))
    assert job.type == SyncJobType.SCHEDULED
    assert job.requested_by is None
    assert job.config_json["start_date"] == "2024-01-15"
    assert job.config_json["end_date"] == "2024-01-16"

    # one pending scheduled job at a time
    assert orchestrator.schedule_daily_sync(db, now=datetime(2024, 1, 15, 8, 0, tzinfo=UTC)) is None


def test_next_daily_run():
    orchestrator = SyncJobOrchestrator(session_factory=TestingSessionLocal, connection_factory=lambda d: None, daily_hour=6)
    assert orchestrator.next_daily_run(datetime(2024, 1, 15, 5, 0, tzinfo=UTC)) == datetime(2024, 1, 15, 6, 0, tzinfo=UTC)
    assert orchestrator.next_daily_run(datetime(2024, 1, 15, 6, 0, tzinfo=UTC)) == datetime(2024, 1, 16, 6, 0, tzinfo=UTC)


def test_dispatch_due_jobs(db, orchestrator):
    now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    due = orchestrator.create_sync_job(db, SyncJobType.SCHEDULED, config(), scheduled_at=now - timedelta(minutes=1))
    later = orchestrator.create_sync_job(db, SyncJobType.SCHEDULED, config(), scheduled_at=now + timedelta(hours=1))

    async def run():
        submitted = orchestrator.dispatch_due_jobs(now=now)
        await asyncio.gather(*list(orchestrator._tasks.values()))
        return submitted

    assert asyncio.run(run()) == [due.id]
    assert reload(db, due.id).status == SyncJobStatus.COMPLETED
    assert reload(db, later.id).status == SyncJobStatus.PENDING


def test_cleanup_old_jobs_keeps_imported_records(db, orchestrator):
    staff = make_staff(db, "E001")
    now = datetime(2024, 3, 1, tzinfo=UTC)
    old = finished_job(db, SyncJobStatus.COMPLETED, now - timedelta(days=45))
    recent = finished_job(db, SyncJobStatus.FAILED, now - timedelta(days=2))
    db.add(AttendanceRecord(
        staff_id=staff.id,
        employee_external_id="E001",
        date=date(2024, 1, 15),
        clock_in_time=datetime(2024, 1, 15, 8, 0),
        source_transaction_id="T1:uid:1",
        sync_job_id=old.id,
    ))
    db.commit()
    old_id, recent_id = old.id, recent.id

    assert orchestrator.cleanup_old_jobs(db, days=30, now=now) == 1
    db.expire_all()
    assert db.query(SyncJob).filter(SyncJob.id == old_id).first() is None
    assert db.query(SyncJob).filter(SyncJob.id == recent_id).first() is not None
    assert db.query(AttendanceRecord).one().sync_job_id is None


def test_run_scheduler_schedules_and_stops(db, orchestrator, monkeypatch):
    orchestrator.default_devices = [DeviceConfig(**device_dict("T1"))]
    dispatched = []

    async def run():
        stop = asyncio.Event()

        def dispatch(now=None):
            dispatched.append(now)
            stop.set()
            return []

        monkeypatch.setattr(orchestrator, "dispatch_due_jobs", dispatch)
        await asyncio.wait_for(orchestrator.run_scheduler(stop, interval_s=5), timeout=2)

    asyncio.run(run())
    assert len(dispatched) == 1
    db.expire_all()
    scheduled = db.query(SyncJob).one()
    assert scheduled.type == SyncJobType.SCHEDULED
    assert scheduled.status == SyncJobStatus.PENDING
