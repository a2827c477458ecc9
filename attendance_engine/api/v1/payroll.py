"""
Payroll endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from attendance_engine.core.deps import get_db, get_notifier, get_requester_id
from attendance_engine.core.exceptions import PayrollEligibilityError
from attendance_engine.schemas.payroll import (
    EligibilityOut,
    PayrollApproveRequest,
    PayrollCalculateRequest,
    PayrollCalculationOut,
    PayrollPeriodOut,
    PayrollPreviewRow,
    PayrollSummaryOut,
)
from attendance_engine.services.payroll_eligibility import validate_payroll_eligibility
from attendance_engine.services.payroll_service import (
    approve_payroll_period,
    calculate_payroll_for_period,
    get_payroll_calculation_preview,
    get_payroll_period,
    get_payroll_summary,
    list_payroll_periods,
)

router = APIRouter()


@router.get("/eligibility/{attendance_period_id}", response_model=EligibilityOut)
async def payroll_eligibility_endpoint(
    attendance_period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    result = validate_payroll_eligibility(db, attendance_period_id)
    return EligibilityOut(attendance_period_id=attendance_period_id, eligible=result.eligible, reason=result.reason)


@router.get("/preview/{attendance_period_id}", response_model=List[PayrollPreviewRow])
async def payroll_preview_endpoint(
    attendance_period_id: int,
    employee_ids: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    """Payroll figures for a period without saving anything"""
    return get_payroll_calculation_preview(db, attendance_period_id, employee_ids)


@router.post("/calculate", response_model=PayrollCalculationOut)
async def calculate_payroll_endpoint(
    body: PayrollCalculateRequest,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    notifier=Depends(get_notifier),
):
    result = calculate_payroll_for_period(
        db, body.attendance_period_id, requester_id, body.employee_ids, notifier=notifier
    )
    if not result.success:
        if result.error_code == PayrollEligibilityError.code:
            raise PayrollEligibilityError(result.reason)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.reason)
    return PayrollCalculationOut(**vars(result))


@router.post("/periods/{payroll_period_id}/approve", response_model=PayrollPeriodOut)
async def approve_payroll_endpoint(
    payroll_period_id: int,
    body: PayrollApproveRequest,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    notifier=Depends(get_notifier),
):
    return approve_payroll_period(db, payroll_period_id, requester_id, body.notes, notifier=notifier)


@router.get("/periods", response_model=List[PayrollPeriodOut])
async def list_payroll_periods_endpoint(
    attendance_period_id: Optional[int] = Query(None),
    include_superseded: bool = Query(True),
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return list_payroll_periods(db, attendance_period_id, include_superseded)


@router.get("/periods/{payroll_period_id}", response_model=PayrollPeriodOut)
async def get_payroll_period_endpoint(
    payroll_period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return get_payroll_period(db, payroll_period_id)


@router.get("/periods/{payroll_period_id}/summary", response_model=PayrollSummaryOut)
async def payroll_summary_endpoint(
    payroll_period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return get_payroll_summary(db, payroll_period_id)
