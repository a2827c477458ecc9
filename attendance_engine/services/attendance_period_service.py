"""
Attendance period service - period lifecycle (create, finalize, unlock) and
manual conflict resolution on attendance records
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from attendance_engine.core.exceptions import NotFoundError, PeriodStateError
from attendance_engine.models.attendance import (
    AttendancePeriod,
    AttendanceRecord,
    PeriodStatus,
    ValidationStatus,
)
from attendance_engine.models.payroll import PayrollPeriod
from attendance_engine.schemas.attendance import PeriodIssue, PeriodSummaryOut, PeriodValidationOut
from attendance_engine.services.audit_service import log_audit
from attendance_engine.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)


def get_period(db: Session, period_id: int) -> AttendancePeriod:
    """
    Get an attendance period by ID

    Raises:
        NotFoundError: If the period does not exist
    """
    period = db.query(AttendancePeriod).filter(AttendancePeriod.id == period_id).first()
    if period is None:
        raise NotFoundError("Attendance period", period_id)
    return period


def list_periods(db: Session, status: Optional[PeriodStatus] = None) -> List[AttendancePeriod]:
    query = db.query(AttendancePeriod)
    if status is not None:
        query = query.filter(AttendancePeriod.status == status)
    return query.order_by(AttendancePeriod.start_date.desc()).all()


def create_period(db: Session, start_date: date, end_date: date, actor_id: int) -> AttendancePeriod:
    """
    Create a PENDING attendance period and link the unassigned records it covers

    Raises:
        PeriodStateError: If the range is inverted or overlaps an existing period
    """
    if start_date > end_date:
        raise PeriodStateError("start_date must be on or before end_date")

    overlapping = db.query(AttendancePeriod).filter(
        AttendancePeriod.start_date <= end_date,
        AttendancePeriod.end_date >= start_date,
    ).first()
    if overlapping is not None:
        raise PeriodStateError(f"Period overlaps with existing period {overlapping.id}")

    try:
        period = AttendancePeriod(
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.PENDING,
            created_by=actor_id,
        )
        db.add(period)
        db.flush()

        linked = db.query(AttendanceRecord).filter(
            AttendanceRecord.period_id.is_(None),
            AttendanceRecord.date >= start_date,
            AttendanceRecord.date <= end_date,
        ).update({AttendanceRecord.period_id: period.id}, synchronize_session=False)

        log_audit(
            db=db,
            actor_id=actor_id,
            action="CREATE_ATTENDANCE_PERIOD",
            entity_type="attendance_periods",
            entity_id=period.id,
            meta={"start_date": start_date, "end_date": end_date, "linked_records": linked},
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(period)
    logger.info("Created attendance period %s (%s..%s), linked %d records", period.id, start_date, end_date, linked)
    return period


def _unresolved_conflicts(db: Session, period_id: int) -> int:
    return db.query(AttendanceRecord).filter(
        AttendanceRecord.period_id == period_id,
        AttendanceRecord.has_conflict.is_(True),
        AttendanceRecord.conflict_resolved.is_(False),
    ).count()


def _missing_clock_out(db: Session, period_id: int) -> int:
    return db.query(AttendanceRecord).filter(
        AttendanceRecord.period_id == period_id,
        AttendanceRecord.clock_in_time.isnot(None),
        AttendanceRecord.clock_out_time.is_(None),
    ).count()


def validate_period_for_finalization(db: Session, period_id: int) -> PeriodValidationOut:
    """Report what stands between a period and finalization. Only unresolved conflicts block it."""
    period = get_period(db, period_id)
    issues: List[PeriodIssue] = []

    conflicts = _unresolved_conflicts(db, period.id)
    if conflicts:
        issues.append(PeriodIssue(
            type="UNRESOLVED_CONFLICTS",
            count=conflicts,
            message="Attendance records have unresolved conflicts that must be addressed",
            blocking=True,
        ))
    missing = _missing_clock_out(db, period.id)
    if missing:
        issues.append(PeriodIssue(
            type="MISSING_CLOCK_OUT",
            count=missing,
            message="Attendance records are missing clock out times",
            blocking=False,
        ))

    return PeriodValidationOut(
        period_id=period.id,
        can_finalize=period.status == PeriodStatus.PENDING and not any(i.blocking for i in issues),
        issues=issues,
    )


def finalize_period(db: Session, period_id: int, actor_id: int) -> AttendancePeriod:
    """
    Finalize a PENDING period; its records become read-only for reconciliation

    Raises:
        NotFoundError: If the period does not exist
        PeriodStateError: If the period is not PENDING or has unresolved conflicts
    """
    period = db.query(AttendancePeriod).filter(AttendancePeriod.id == period_id).with_for_update().first()
    if period is None:
        raise NotFoundError("Attendance period", period_id)
    if period.status != PeriodStatus.PENDING:
        raise PeriodStateError("Period is not in pending status")

    unresolved = _unresolved_conflicts(db, period.id)
    if unresolved:
        raise PeriodStateError(f"{unresolved} records have unresolved conflicts")

    try:
        finalized_records = db.query(AttendanceRecord).filter(
            AttendanceRecord.period_id == period.id,
        ).update({AttendanceRecord.is_finalized: True}, synchronize_session=False)
        period.status = PeriodStatus.FINALIZED
        period.finalized_by = actor_id
        period.finalized_at = now_utc()
        log_audit(
            db=db,
            actor_id=actor_id,
            action="FINALIZE_ATTENDANCE_PERIOD",
            entity_type="attendance_periods",
            entity_id=period.id,
            meta={"records": finalized_records},
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(period)
    logger.info("Attendance period %s finalized by %s (%d records)", period.id, actor_id, finalized_records)
    return period


def unlock_period(db: Session, period_id: int, actor_id: int, reason: str) -> AttendancePeriod:
    """
    Reopen a FINALIZED period

    Any current payroll period for it is marked superseded, so the next payroll
    calculation starts from a fresh PayrollPeriod.

    Raises:
        NotFoundError: If the period does not exist
        PeriodStateError: If no reason is given or the period is not FINALIZED
    """
    if not reason or not reason.strip():
        raise PeriodStateError("Unlock reason is required")

    period = db.query(AttendancePeriod).filter(AttendancePeriod.id == period_id).with_for_update().first()
    if period is None:
        raise NotFoundError("Attendance period", period_id)
    if period.status != PeriodStatus.FINALIZED:
        raise PeriodStateError("Only finalized periods can be unlocked")

    try:
        superseded = db.query(PayrollPeriod).filter(
            PayrollPeriod.attendance_period_id == period.id,
            PayrollPeriod.is_superseded.is_(False),
        ).update({PayrollPeriod.is_superseded: True}, synchronize_session=False)
        db.query(AttendanceRecord).filter(
            AttendanceRecord.period_id == period.id,
        ).update({AttendanceRecord.is_finalized: False}, synchronize_session=False)

        period.status = PeriodStatus.PENDING
        period.unlock_reason = reason.strip()
        period.unlocked_by = actor_id
        period.unlocked_at = now_utc()
        period.finalized_by = None
        period.finalized_at = None
        log_audit(
            db=db,
            actor_id=actor_id,
            action="UNLOCK_ATTENDANCE_PERIOD",
            entity_type="attendance_periods",
            entity_id=period.id,
            meta={"reason": reason.strip(), "superseded_payroll_periods": superseded},
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(period)
    logger.warning("Attendance period %s unlocked by %s: %s", period.id, actor_id, reason.strip())
    return period


def resolve_conflict(db: Session, record_id: int, resolver_id: int, notes: Optional[str] = None) -> AttendanceRecord:
    """
    Mark a record's conflict as reviewed

    Raises:
        NotFoundError: If the record does not exist
        PeriodStateError: If the record has no conflict or its period is finalized
    """
    record = db.query(AttendanceRecord).filter(AttendanceRecord.id == record_id).first()
    if record is None:
        raise NotFoundError("Attendance record", record_id)
    if record.is_finalized:
        raise PeriodStateError("Record is part of a finalized period and cannot be edited")
    if not record.has_conflict:
        raise PeriodStateError("Record has no conflict to resolve")

    try:
        record.conflict_resolved = True
        record.conflict_resolved_by = resolver_id
        record.conflict_resolved_at = now_utc()
        record.conflict_notes = notes
        if record.validation_status == ValidationStatus.CONFLICT:
            record.validation_status = ValidationStatus.VALID
        log_audit(
            db=db,
            actor_id=resolver_id,
            action="RESOLVE_ATTENDANCE_CONFLICT",
            entity_type="attendance_records",
            entity_id=record.id,
            meta={"notes": notes},
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


def get_period_summary(db: Session, period_id: int) -> PeriodSummaryOut:
    period = get_period(db, period_id)
    records = db.query(AttendanceRecord).filter(AttendanceRecord.period_id == period.id).all()
    return PeriodSummaryOut(
        period_id=period.id,
        status=period.status,
        total_records=len(records),
        employee_count=len({r.staff_id for r in records}),
        total_hours=sum((Decimal(r.total_hours) for r in records if r.total_hours is not None), Decimal("0")),
        conflicts=sum(1 for r in records if r.has_conflict),
        unresolved_conflicts=sum(1 for r in records if r.has_conflict and not r.conflict_resolved),
        missing_clock_out=sum(1 for r in records if r.clock_in_time is not None and r.clock_out_time is None),
    )
