"""
Tests for payroll eligibility, calculation, approval and reporting
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from attendance_engine.core.exceptions import NotFoundError, PeriodStateError
from attendance_engine.models.attendance import AttendancePeriod, AttendanceRecord, PeriodStatus
from attendance_engine.models.audit_log import AuditLog
from attendance_engine.models.payroll import PayrollPeriod, PayrollRecord, PayrollStatus
from attendance_engine.services import payroll_service
from attendance_engine.services.attendance_period_service import unlock_period
from attendance_engine.services.notification_service import PAYROLL_CHANNEL
from attendance_engine.services.payroll_eligibility import (
    PAYROLL_ALREADY_APPROVED,
    PERIOD_NOT_FINALIZED,
    PERIOD_NOT_FOUND,
    validate_payroll_eligibility,
)
from attendance_engine.services.payroll_service import (
    approve_payroll_period,
    calculate_payroll_for_period,
    get_payroll_calculation_preview,
    get_payroll_summary,
    list_payroll_periods,
)
from attendance_engine.tests.conftest import make_staff

MONDAY = date(2024, 1, 15)


def make_period(db, status=PeriodStatus.FINALIZED):
    period = AttendancePeriod(start_date=date(2024, 1, 15), end_date=date(2024, 1, 21), status=status, created_by=1)
    db.add(period)
    db.commit()
    db.refresh(period)
    return period


def add_days(db, staff, period, hours):
    for offset, value in enumerate(hours):
        day = MONDAY + timedelta(days=offset)
        db.add(AttendanceRecord(
            staff_id=staff.id,
            employee_external_id=staff.employee_code,
            date=day,
            clock_in_time=datetime(day.year, day.month, day.day, 8, 0),
            clock_out_time=datetime(day.year, day.month, day.day, 8, 0) + timedelta(hours=value),
            total_hours=Decimal(str(value)),
            source_transaction_id=f"T1:{staff.employee_code}:{day.isoformat()}",
            period_id=period.id,
            is_finalized=period.status == PeriodStatus.FINALIZED,
        ))
    db.commit()


@pytest.fixture
def finalized_period(db):
    """Finalized week: E001 works 5 x 10h at 10.00, E002 works 8h + 9.5h at 10.00"""
    period = make_period(db)
    alice = make_staff(db, "E001", name="Alice")
    bob = make_staff(db, "E002", name="Bob")
    add_days(db, alice, period, [10, 10, 10, 10, 10])
    add_days(db, bob, period, [8, 9.5])
    return period, alice, bob


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

def test_eligibility_reasons(db, finalized_period):
    period, _, _ = finalized_period
    assert validate_payroll_eligibility(db, 999).reason == PERIOD_NOT_FOUND

    pending = AttendancePeriod(start_date=date(2024, 2, 1), end_date=date(2024, 2, 7), status=PeriodStatus.PENDING)
    db.add(pending)
    db.commit()
    result = validate_payroll_eligibility(db, pending.id)
    assert result.eligible is False
    assert result.reason == PERIOD_NOT_FINALIZED

    assert validate_payroll_eligibility(db, period.id).eligible is True


# ---------------------------------------------------------------------------
# Preview and calculation
# ---------------------------------------------------------------------------

def test_preview_writes_nothing(db, finalized_period):
    period, alice, bob = finalized_period
    rows = get_payroll_calculation_preview(db, period.id)

    by_id = {row.employee_id: row for row in rows}
    assert by_id[alice.id].gross_pay == Decimal("550.00")
    assert by_id[alice.id].employee_name == "Alice"
    assert by_id[alice.id].attendance_records == 5
    assert by_id[bob.id].gross_pay == Decimal("182.50")
    assert db.query(PayrollPeriod).count() == 0


def test_preview_unknown_period(db):
    with pytest.raises(NotFoundError):
        get_payroll_calculation_preview(db, 42)


def test_calculate_payroll(db, finalized_period, notifier):
    period, alice, bob = finalized_period

    result = calculate_payroll_for_period(db, period.id, requester_id=9, notifier=notifier)

    assert result.success is True
    assert result.records_processed == 2
    assert result.total_amount == Decimal("732.50")
    assert result.total_hours == Decimal("67.50")
    assert result.total_overtime_hours == Decimal("11.50")

    payroll = db.query(PayrollPeriod).one()
    assert payroll.id == result.payroll_period_id
    assert payroll.status == PayrollStatus.CALCULATED
    assert payroll.calculated_by == 9
    assert payroll.start_date == period.start_date

    alice_record = db.query(PayrollRecord).filter(PayrollRecord.employee_id == alice.id).one()
    assert alice_record.standard_hours == Decimal("40.00")
    assert alice_record.overtime_hours == Decimal("10.00")
    assert alice_record.overtime_rate == Decimal("15.00")
    assert alice_record.calculation_json["daily_overtime_hours"] == "10.00"

    audit = db.query(AuditLog).filter(AuditLog.action == "CALCULATE_PAYROLL_PERIOD").one()
    assert audit.actor_id == 9
    assert audit.entity_id == payroll.id
    assert notifier.on(PAYROLL_CHANNEL)[-1]["event"] == "payroll_calculated"


def test_calculate_refused_for_pending_period(db):
    period = make_period(db, status=PeriodStatus.PENDING)
    result = calculate_payroll_for_period(db, period.id, requester_id=1)
    assert result.success is False
    assert result.error_code == "ELIGIBILITY_ERROR"
    assert result.reason == PERIOD_NOT_FINALIZED
    assert db.query(PayrollPeriod).count() == 0


def test_recalculation_replaces_records(db, finalized_period):
    period, alice, _ = finalized_period
    first = calculate_payroll_for_period(db, period.id, requester_id=1)
    second = calculate_payroll_for_period(db, period.id, requester_id=1)
    assert second.success is True
    assert second.payroll_period_id == first.payroll_period_id
    assert db.query(PayrollRecord).count() == 2


def test_partial_recalculation_keeps_other_employees(db, finalized_period):
    period, alice, bob = finalized_period
    calculate_payroll_for_period(db, period.id, requester_id=1)

    bob_record = db.query(AttendanceRecord).filter(AttendanceRecord.staff_id == bob.id).order_by(AttendanceRecord.date).first()
    bob_record.total_hours = Decimal("12.00")
    db.commit()

    result = calculate_payroll_for_period(db, period.id, requester_id=1, employee_ids=[bob.id])
    assert result.success is True
    assert result.records_processed == 1
    assert db.query(PayrollRecord).count() == 2
    # bob: 8 + 8 standard, 4 + 1.5 overtime -> 160 + 82.5
    assert result.total_amount == Decimal("792.50")


def test_failure_rolls_back_everything(db, finalized_period, monkeypatch):
    period, _, _ = finalized_period

    def explode(*args, **kwargs):
        raise RuntimeError("calculator crashed")

    monkeypatch.setattr(payroll_service, "calculate_overtime", explode)
    result = calculate_payroll_for_period(db, period.id, requester_id=1)

    assert result.success is False
    assert result.error_code == "TRANSACTION_ERROR"
    assert "calculator crashed" in result.reason
    assert db.query(PayrollPeriod).count() == 0
    assert db.query(PayrollRecord).count() == 0
    assert db.query(AuditLog).count() == 0


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------

def test_approve_is_terminal(db, finalized_period, notifier):
    period, _, _ = finalized_period
    calc = calculate_payroll_for_period(db, period.id, requester_id=1)

    payroll = approve_payroll_period(db, calc.payroll_period_id, requester_id=2, notes="Looks right", notifier=notifier)
    assert payroll.status == PayrollStatus.APPROVED
    assert payroll.approved_by == 2
    assert payroll.approval_notes == "Looks right"
    assert notifier.on(PAYROLL_CHANNEL)[-1]["event"] == "payroll_approved"

    with pytest.raises(PeriodStateError):
        approve_payroll_period(db, calc.payroll_period_id, requester_id=2)

    again = calculate_payroll_for_period(db, period.id, requester_id=1)
    assert again.success is False
    assert again.reason == PAYROLL_ALREADY_APPROVED


def test_approve_requires_calculated_status(db, finalized_period):
    period, _, _ = finalized_period
    payroll = PayrollPeriod(
        attendance_period_id=period.id,
        start_date=period.start_date,
        end_date=period.end_date,
        status=PayrollStatus.PENDING,
        is_superseded=False,
    )
    db.add(payroll)
    db.commit()
    with pytest.raises(PeriodStateError):
        approve_payroll_period(db, payroll.id, requester_id=1)
    with pytest.raises(NotFoundError):
        approve_payroll_period(db, 999, requester_id=1)


def test_unlock_supersedes_payroll_and_allows_fresh_calculation(db, finalized_period):
    period, _, _ = finalized_period
    calc = calculate_payroll_for_period(db, period.id, requester_id=1)
    approve_payroll_period(db, calc.payroll_period_id, requester_id=2)

    unlock_period(db, period.id, actor_id=3, reason="Missing overtime on Friday")
    db.expire_all()
    old = db.query(PayrollPeriod).filter(PayrollPeriod.id == calc.payroll_period_id).one()
    assert old.is_superseded is True
    assert old.status == PayrollStatus.APPROVED

    with pytest.raises(PeriodStateError):
        approve_payroll_period(db, old.id, requester_id=2)

    # pending again, so not eligible until finalized
    assert validate_payroll_eligibility(db, period.id).reason == PERIOD_NOT_FINALIZED

    period.status = PeriodStatus.FINALIZED
    db.commit()
    fresh = calculate_payroll_for_period(db, period.id, requester_id=1)
    assert fresh.success is True
    assert fresh.payroll_period_id != calc.payroll_period_id
    assert len(list_payroll_periods(db, attendance_period_id=period.id)) == 2
    assert len(list_payroll_periods(db, attendance_period_id=period.id, include_superseded=False)) == 1


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def test_payroll_summary(db, finalized_period):
    period, _, _ = finalized_period
    calc = calculate_payroll_for_period(db, period.id, requester_id=1)

    summary = get_payroll_summary(db, calc.payroll_period_id)
    assert summary.employee_count == 2
    assert summary.total_hours == Decimal("67.50")
    assert summary.total_standard_hours == Decimal("56.00")
    assert summary.total_overtime_hours == Decimal("11.50")
    assert summary.total_amount == Decimal("732.50")
    assert summary.average_hours_per_employee == Decimal("33.75")
    # 11.5 / 67.5 * 100
    assert summary.overtime_percentage == Decimal("17.04")


def test_summary_unknown_period(db):
    with pytest.raises(NotFoundError):
        get_payroll_summary(db, 1)
