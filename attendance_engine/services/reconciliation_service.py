"""
Reconciliation of terminal punches into attendance records.

Punches are applied in timestamp order. The first punch of a staff member on a
day opens a record (clock-in), the next one closes it (clock-out). Punches are
deduplicated on their source transaction id so re-running a sync is a no-op.
The caller owns the transaction: this module flushes but never commits.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from attendance_engine.models.attendance import (
    AttendancePeriod,
    AttendanceRecord,
    PeriodStatus,
    SyncStatus,
    ValidationStatus,
)
from attendance_engine.models.staff import Staff
from attendance_engine.services.device_client import AttendancePunch
from attendance_engine.utils.datetime_utils import wall_clock

logger = logging.getLogger(__name__)

EMPLOYEE_MAPPING = "EMPLOYEE_MAPPING"
VALIDATION = "VALIDATION"
CONFLICT = "CONFLICT"

_HOURS_QUANT = Decimal("0.01")


@dataclass
class ReconciliationError:
    type: str
    message: str
    employee_external_id: str
    source_transaction_id: str
    record_id: Optional[int] = None


@dataclass
class ReconciliationSummary:
    total_processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates: int = 0
    conflicts: int = 0
    errors: List[ReconciliationError] = field(default_factory=list)

    def merge(self, other: "ReconciliationSummary") -> None:
        self.total_processed += other.total_processed
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.duplicates += other.duplicates
        self.conflicts += other.conflicts
        self.errors.extend(other.errors)


def compute_total_hours(clock_in, clock_out) -> Optional[Decimal]:
    """Hours between clock-in and clock-out, rounded to 2 places; None unless both are set."""
    if clock_in is None or clock_out is None:
        return None
    seconds = (wall_clock(clock_out) - wall_clock(clock_in)).total_seconds()
    return (Decimal(str(seconds)) / Decimal(3600)).quantize(_HOURS_QUANT, rounding=ROUND_HALF_UP)


def _transaction_exists(db: Session, transaction_id: str) -> bool:
    return db.query(AttendanceRecord.id).filter(
        or_(
            AttendanceRecord.source_transaction_id == transaction_id,
            AttendanceRecord.clock_out_transaction_id == transaction_id,
        )
    ).first() is not None


def _covering_period(db: Session, day: date) -> Optional[AttendancePeriod]:
    return db.query(AttendancePeriod).filter(
        AttendancePeriod.start_date <= day,
        AttendancePeriod.end_date >= day,
    ).order_by(AttendancePeriod.id.desc()).first()


def _open_synced_record(db: Session, staff_id: int, day: date) -> Optional[AttendanceRecord]:
    return db.query(AttendanceRecord).filter(
        AttendanceRecord.staff_id == staff_id,
        AttendanceRecord.date == day,
        AttendanceRecord.sync_status == SyncStatus.SYNCED,
        AttendanceRecord.clock_in_time.isnot(None),
        AttendanceRecord.clock_out_time.is_(None),
    ).order_by(AttendanceRecord.clock_in_time.asc(), AttendanceRecord.id.asc()).first()


def _unresolved_manual_record(db: Session, staff_id: int, day: date) -> Optional[AttendanceRecord]:
    return db.query(AttendanceRecord).filter(
        AttendanceRecord.staff_id == staff_id,
        AttendanceRecord.date == day,
        AttendanceRecord.sync_status == SyncStatus.MANUAL,
        AttendanceRecord.conflict_resolved.is_(False),
    ).first()


def reconcile_punches(
    db: Session,
    punches: Iterable[AttendancePunch],
    sync_job_id: Optional[int] = None,
    terminal_id: Optional[str] = None,
) -> ReconciliationSummary:
    """
    Apply a batch of punches to the attendance records.

    Args:
        db: Database session (not committed here)
        punches: Punches from one terminal fetch
        sync_job_id: Job that produced the batch, stored on created records
        terminal_id: Terminal recorded on created records when a punch carries none

    Returns:
        ReconciliationSummary with counts and per-punch errors
    """
    summary = ReconciliationSummary()
    staff_cache: Dict[str, Optional[int]] = {}
    finalized_cache: Dict[date, bool] = {}

    for punch in sorted(punches, key=lambda p: (p.timestamp, p.source_transaction_id)):
        summary.total_processed += 1
        tx_id = punch.source_transaction_id
        external_id = punch.employee_external_id

        if external_id not in staff_cache:
            staff = db.query(Staff).filter(
                Staff.employee_code == external_id,
                Staff.active.is_(True),
            ).first()
            staff_cache[external_id] = staff.id if staff else None
        staff_id = staff_cache[external_id]
        if staff_id is None:
            summary.skipped += 1
            summary.errors.append(ReconciliationError(
                type=EMPLOYEE_MAPPING,
                message=f"No active staff member enrolled as {external_id}",
                employee_external_id=external_id,
                source_transaction_id=tx_id,
            ))
            continue

        day = punch.date
        if day not in finalized_cache:
            period = _covering_period(db, day)
            finalized_cache[day] = period is not None and period.status == PeriodStatus.FINALIZED
        if finalized_cache[day]:
            summary.skipped += 1
            summary.errors.append(ReconciliationError(
                type=VALIDATION,
                message=f"Attendance period for {day.isoformat()} is finalized",
                employee_external_id=external_id,
                source_transaction_id=tx_id,
            ))
            continue

        if _transaction_exists(db, tx_id):
            summary.duplicates += 1
            summary.skipped += 1
            continue

        open_record = _open_synced_record(db, staff_id, day)
        if open_record is not None:
            if wall_clock(open_record.clock_in_time) >= punch.timestamp:
                open_record.has_conflict = True
                open_record.validation_status = ValidationStatus.INVALID
                db.flush()
                summary.conflicts += 1
                summary.skipped += 1
                summary.errors.append(ReconciliationError(
                    type=VALIDATION,
                    message="Clock-out does not follow clock-in",
                    employee_external_id=external_id,
                    source_transaction_id=tx_id,
                    record_id=open_record.id,
                ))
                continue

            open_record.clock_out_time = punch.timestamp
            open_record.clock_out_transaction_id = tx_id
            open_record.total_hours = compute_total_hours(open_record.clock_in_time, punch.timestamp)
            db.flush()
            summary.updated += 1
            continue

        record = AttendanceRecord(
            staff_id=staff_id,
            employee_external_id=external_id,
            date=day,
            clock_in_time=punch.timestamp,
            source_transaction_id=tx_id,
            terminal_id=punch.terminal_id or terminal_id,
            sync_job_id=sync_job_id,
            sync_status=SyncStatus.SYNCED,
            validation_status=ValidationStatus.VALID,
            has_conflict=False,
            conflict_resolved=False,
            is_finalized=False,
        )
        period = _covering_period(db, day)
        if period is not None:
            record.period_id = period.id

        if _unresolved_manual_record(db, staff_id, day) is not None:
            record.has_conflict = True
            record.validation_status = ValidationStatus.CONFLICT
            summary.conflicts += 1

        db.add(record)
        db.flush()
        summary.created += 1
        if record.has_conflict:
            summary.errors.append(ReconciliationError(
                type=CONFLICT,
                message="Manual entry exists for this day, manual review required",
                employee_external_id=external_id,
                source_transaction_id=tx_id,
                record_id=record.id,
            ))

    logger.info(
        "Reconciled %d punches: created=%d updated=%d duplicates=%d conflicts=%d errors=%d",
        summary.total_processed, summary.created, summary.updated,
        summary.duplicates, summary.conflicts, len(summary.errors),
    )
    return summary
