"""
Payroll eligibility gate
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from attendance_engine.models.attendance import AttendancePeriod, PeriodStatus
from attendance_engine.models.payroll import PayrollPeriod, PayrollStatus

PERIOD_NOT_FOUND = "Attendance period not found"
PERIOD_NOT_FINALIZED = "Attendance period must be finalized before payroll calculation"
PAYROLL_ALREADY_APPROVED = "Payroll already approved for this period"


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: Optional[str] = None


def validate_payroll_eligibility(
    db: Session,
    attendance_period_id: int,
    for_update: bool = False,
) -> EligibilityResult:
    """
    Check whether payroll may be calculated for an attendance period

    Args:
        db: Database session
        attendance_period_id: Attendance period to check
        for_update: Lock the attendance period row (SELECT ... FOR UPDATE where the
            database supports it). Used when re-checking inside the calculation
            transaction so a concurrent unlock cannot slip in.

    Returns:
        EligibilityResult; ``reason`` is set when not eligible
    """
    query = db.query(AttendancePeriod).filter(AttendancePeriod.id == attendance_period_id)
    if for_update:
        query = query.with_for_update()
    period = query.first()

    if period is None:
        return EligibilityResult(eligible=False, reason=PERIOD_NOT_FOUND)
    if period.status != PeriodStatus.FINALIZED:
        return EligibilityResult(eligible=False, reason=PERIOD_NOT_FINALIZED)

    approved = db.query(PayrollPeriod.id).filter(
        PayrollPeriod.attendance_period_id == attendance_period_id,
        PayrollPeriod.is_superseded.is_(False),
        PayrollPeriod.status == PayrollStatus.APPROVED,
    ).first()
    if approved is not None:
        return EligibilityResult(eligible=False, reason=PAYROLL_ALREADY_APPROVED)

    return EligibilityResult(eligible=True)
