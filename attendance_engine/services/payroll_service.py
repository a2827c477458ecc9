"""
Payroll service - preview, calculation, approval and reporting of payroll periods
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from attendance_engine.core.config import settings
from attendance_engine.core.exceptions import (
    NotFoundError,
    PayrollEligibilityError,
    PayrollTransactionError,
    PeriodStateError,
)
from attendance_engine.models.attendance import AttendancePeriod, AttendanceRecord
from attendance_engine.models.payroll import PayrollPeriod, PayrollRecord, PayrollStatus
from attendance_engine.models.staff import Staff
from attendance_engine.schemas.payroll import PayrollPreviewRow, PayrollSummaryOut
from attendance_engine.services.audit_service import log_audit
from attendance_engine.services.notification_service import PAYROLL_CHANNEL, safe_notify
from attendance_engine.services.overtime_calculator import (
    ZERO,
    EmployeeOvertime,
    HoursRow,
    OvertimeRules,
    calculate_overtime,
    quantize_hours,
    quantize_money,
)
from attendance_engine.services.payroll_eligibility import validate_payroll_eligibility
from attendance_engine.utils.datetime_utils import now_utc
from attendance_engine.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)


@dataclass
class PayrollCalculationResult:
    success: bool
    payroll_period_id: Optional[int] = None
    records_processed: int = 0
    total_hours: Decimal = ZERO
    total_overtime_hours: Decimal = ZERO
    total_amount: Decimal = ZERO
    error_code: Optional[str] = None
    reason: Optional[str] = None


def _load_hours(
    db: Session,
    period: AttendancePeriod,
    employee_ids: Optional[List[int]] = None,
) -> Tuple[List[HoursRow], Dict[int, Staff]]:
    """Attendance rows of the period as overtime calculator input, plus the staff they belong to."""
    query = db.query(AttendanceRecord).filter(AttendanceRecord.period_id == period.id)
    if employee_ids:
        query = query.filter(AttendanceRecord.staff_id.in_(employee_ids))
    records = query.order_by(AttendanceRecord.staff_id, AttendanceRecord.date).all()

    rows = [HoursRow(employee_id=r.staff_id, date=r.date, hours=r.total_hours) for r in records]
    staff_ids = {r.staff_id for r in records}
    staff = {s.id: s for s in db.query(Staff).filter(Staff.id.in_(staff_ids)).all()} if staff_ids else {}
    return rows, staff


def _rates(staff: Dict[int, Staff]) -> Dict[int, Optional[Decimal]]:
    return {staff_id: member.hourly_rate for staff_id, member in staff.items()}


def _current_payroll_period(db: Session, attendance_period_id: int) -> Optional[PayrollPeriod]:
    return db.query(PayrollPeriod).filter(
        PayrollPeriod.attendance_period_id == attendance_period_id,
        PayrollPeriod.is_superseded.is_(False),
    ).order_by(PayrollPeriod.id.desc()).first()


def get_payroll_calculation_preview(
    db: Session,
    attendance_period_id: int,
    employee_ids: Optional[List[int]] = None,
    rules: Optional[OvertimeRules] = None,
) -> List[PayrollPreviewRow]:
    """
    Compute payroll for a period without writing anything

    Raises:
        NotFoundError: If the attendance period does not exist
    """
    rules = rules or settings.overtime_rules()
    period = db.query(AttendancePeriod).filter(AttendancePeriod.id == attendance_period_id).first()
    if period is None:
        raise NotFoundError("Attendance period", attendance_period_id)

    rows, staff = _load_hours(db, period, employee_ids)
    results = calculate_overtime(rows, _rates(staff), rules)
    return [
        PayrollPreviewRow(
            employee_id=r.employee_id,
            employee_name=staff[r.employee_id].name,
            department=staff[r.employee_id].department,
            total_hours=r.total_hours,
            standard_hours=r.standard_hours,
            overtime_hours=r.overtime_hours,
            standard_rate=r.standard_rate,
            overtime_rate=r.overtime_rate,
            gross_pay=r.gross_pay,
            attendance_records=r.record_count,
        )
        for r in results
    ]


def _calculation_json(result: EmployeeOvertime, rules: OvertimeRules) -> dict:
    return sanitize_for_json({
        "total_hours": result.total_hours,
        "daily_overtime_hours": result.daily_overtime_hours,
        "weekly_overtime_hours": result.weekly_overtime_hours,
        "days": result.days,
        "rules": rules,
    })


def calculate_payroll_for_period(
    db: Session,
    attendance_period_id: int,
    requester_id: int,
    employee_ids: Optional[List[int]] = None,
    rules: Optional[OvertimeRules] = None,
    notifier=None,
) -> PayrollCalculationResult:
    """
    Calculate and store payroll for a finalized attendance period

    Runs as one transaction: eligibility is re-checked with the attendance period
    row locked, the PayrollPeriod moves through CALCULATING to CALCULATED, prior
    records for the affected employees are replaced, and an audit entry is
    written. Any failure rolls everything back.

    Args:
        db: Database session
        attendance_period_id: Finalized attendance period
        requester_id: ID of the requester (audit actor)
        employee_ids: Recalculate only these staff ids (optional)
        rules: Overtime rules; defaults to the configured ones
        notifier: Receives a milestone event after commit (optional)

    Returns:
        PayrollCalculationResult; on failure ``error_code`` is ELIGIBILITY_ERROR or TRANSACTION_ERROR
    """
    rules = rules or settings.overtime_rules()
    try:
        eligibility = validate_payroll_eligibility(db, attendance_period_id, for_update=True)
        if not eligibility.eligible:
            raise PayrollEligibilityError(eligibility.reason)

        period = db.query(AttendancePeriod).filter(AttendancePeriod.id == attendance_period_id).one()

        payroll = _current_payroll_period(db, attendance_period_id)
        if payroll is None:
            payroll = PayrollPeriod(
                attendance_period_id=period.id,
                start_date=period.start_date,
                end_date=period.end_date,
                is_superseded=False,
            )
            db.add(payroll)
        payroll.status = PayrollStatus.CALCULATING
        payroll.calculated_by = requester_id
        payroll.calculated_at = now_utc()
        db.flush()

        stale = db.query(PayrollRecord).filter(PayrollRecord.payroll_period_id == payroll.id)
        if employee_ids:
            stale = stale.filter(PayrollRecord.employee_id.in_(employee_ids))
        stale.delete(synchronize_session=False)
        db.flush()

        rows, staff = _load_hours(db, period, employee_ids)
        results = calculate_overtime(rows, _rates(staff), rules)
        for result in results:
            db.add(PayrollRecord(
                payroll_period_id=payroll.id,
                employee_id=result.employee_id,
                standard_hours=result.standard_hours,
                overtime_hours=result.overtime_hours,
                standard_rate=result.standard_rate,
                overtime_rate=result.overtime_rate,
                gross_pay=result.gross_pay,
                calculation_json=_calculation_json(result, rules),
            ))
        db.flush()

        stored = db.query(PayrollRecord).filter(PayrollRecord.payroll_period_id == payroll.id).all()
        total_standard = sum((Decimal(r.standard_hours) for r in stored), ZERO)
        total_overtime = sum((Decimal(r.overtime_hours) for r in stored), ZERO)
        payroll.total_hours = quantize_hours(total_standard + total_overtime)
        payroll.total_overtime_hours = quantize_hours(total_overtime)
        payroll.total_amount = quantize_money(sum((Decimal(r.gross_pay) for r in stored), ZERO))
        payroll.status = PayrollStatus.CALCULATED

        log_audit(
            db=db,
            actor_id=requester_id,
            action="CALCULATE_PAYROLL_PERIOD",
            entity_type="payroll_periods",
            entity_id=payroll.id,
            meta={
                "attendance_period_id": attendance_period_id,
                "employee_ids": employee_ids,
                "records_processed": len(results),
                "total_amount": payroll.total_amount,
            },
            commit=False,
        )
        db.commit()
    except PayrollEligibilityError as e:
        db.rollback()
        logger.info("Payroll calculation for attendance period %s refused: %s", attendance_period_id, e.reason)
        return PayrollCalculationResult(success=False, error_code=e.code, reason=e.reason)
    except Exception as e:
        db.rollback()
        logger.error("Payroll calculation for attendance period %s failed: %s", attendance_period_id, e, exc_info=True)
        error = PayrollTransactionError(f"Payroll calculation failed: {e}", cause=e)
        return PayrollCalculationResult(success=False, error_code=error.code, reason=error.reason)

    db.refresh(payroll)
    logger.info(
        "Payroll period %s calculated for attendance period %s: %d employees, total %s",
        payroll.id, attendance_period_id, len(results), payroll.total_amount,
    )
    safe_notify(notifier, PAYROLL_CHANNEL, {
        "event": "payroll_calculated",
        "payroll_period_id": payroll.id,
        "attendance_period_id": attendance_period_id,
        "total_amount": str(payroll.total_amount),
    })
    return PayrollCalculationResult(
        success=True,
        payroll_period_id=payroll.id,
        records_processed=len(results),
        total_hours=Decimal(payroll.total_hours),
        total_overtime_hours=Decimal(payroll.total_overtime_hours),
        total_amount=Decimal(payroll.total_amount),
    )


def get_payroll_period(db: Session, payroll_period_id: int) -> PayrollPeriod:
    payroll = db.query(PayrollPeriod).filter(PayrollPeriod.id == payroll_period_id).first()
    if payroll is None:
        raise NotFoundError("Payroll period", payroll_period_id)
    return payroll


def approve_payroll_period(
    db: Session,
    payroll_period_id: int,
    requester_id: int,
    notes: Optional[str] = None,
    notifier=None,
) -> PayrollPeriod:
    """
    Approve a calculated payroll period. APPROVED is terminal.

    Raises:
        NotFoundError: If the payroll period does not exist
        PeriodStateError: If the period is not CALCULATED or has been superseded
    """
    payroll = db.query(PayrollPeriod).filter(PayrollPeriod.id == payroll_period_id).with_for_update().first()
    if payroll is None:
        raise NotFoundError("Payroll period", payroll_period_id)
    if payroll.is_superseded:
        raise PeriodStateError("Payroll period has been superseded and cannot be approved")
    if payroll.status != PayrollStatus.CALCULATED:
        raise PeriodStateError(
            f"Payroll period must be CALCULATED to approve (current status: {PayrollStatus(payroll.status).value})"
        )

    try:
        payroll.status = PayrollStatus.APPROVED
        payroll.approved_by = requester_id
        payroll.approved_at = now_utc()
        payroll.approval_notes = notes
        log_audit(
            db=db,
            actor_id=requester_id,
            action="APPROVE_PAYROLL_PERIOD",
            entity_type="payroll_periods",
            entity_id=payroll.id,
            meta={"notes": notes, "total_amount": payroll.total_amount},
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(payroll)

    logger.info("Payroll period %s approved by %s", payroll.id, requester_id)
    safe_notify(notifier, PAYROLL_CHANNEL, {
        "event": "payroll_approved",
        "payroll_period_id": payroll.id,
        "approved_by": requester_id,
    })
    return payroll


def get_payroll_summary(db: Session, payroll_period_id: int) -> PayrollSummaryOut:
    """
    Totals for a payroll period

    Raises:
        NotFoundError: If the payroll period does not exist
    """
    payroll = get_payroll_period(db, payroll_period_id)
    records = db.query(PayrollRecord).filter(PayrollRecord.payroll_period_id == payroll.id).all()

    count = len(records)
    standard = sum((Decimal(r.standard_hours) for r in records), ZERO)
    overtime = sum((Decimal(r.overtime_hours) for r in records), ZERO)
    total_hours = standard + overtime
    amount = sum((Decimal(r.gross_pay) for r in records), ZERO)

    return PayrollSummaryOut(
        payroll_period_id=payroll.id,
        status=payroll.status,
        employee_count=count,
        total_hours=quantize_hours(total_hours),
        total_standard_hours=quantize_hours(standard),
        total_overtime_hours=quantize_hours(overtime),
        total_amount=quantize_money(amount),
        average_hours_per_employee=quantize_hours(total_hours / count) if count else ZERO,
        overtime_percentage=quantize_hours(overtime / total_hours * 100) if total_hours else ZERO,
    )


def list_payroll_periods(
    db: Session,
    attendance_period_id: Optional[int] = None,
    include_superseded: bool = True,
) -> List[PayrollPeriod]:
    query = db.query(PayrollPeriod)
    if attendance_period_id is not None:
        query = query.filter(PayrollPeriod.attendance_period_id == attendance_period_id)
    if not include_superseded:
        query = query.filter(PayrollPeriod.is_superseded.is_(False))
    return query.order_by(PayrollPeriod.id.desc()).all()
