"""
Attendance period endpoints (lifecycle and conflict resolution)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from attendance_engine.core.deps import get_db, get_requester_id
from attendance_engine.models.attendance import PeriodStatus
from attendance_engine.schemas.attendance import (
    AttendancePeriodCreate,
    AttendancePeriodOut,
    AttendancePeriodUnlock,
    AttendanceRecordOut,
    ConflictResolution,
    PeriodSummaryOut,
    PeriodValidationOut,
)
from attendance_engine.services.attendance_period_service import (
    create_period,
    finalize_period,
    get_period,
    get_period_summary,
    list_periods,
    resolve_conflict,
    unlock_period,
    validate_period_for_finalization,
)

router = APIRouter()


@router.post("/periods", response_model=AttendancePeriodOut, status_code=201)
async def create_period_endpoint(
    body: AttendancePeriodCreate,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return create_period(db, body.start_date, body.end_date, requester_id)


@router.get("/periods", response_model=List[AttendancePeriodOut])
async def list_periods_endpoint(
    status: Optional[PeriodStatus] = Query(None),
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return list_periods(db, status)


@router.get("/periods/{period_id}", response_model=AttendancePeriodOut)
async def get_period_endpoint(
    period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return get_period(db, period_id)


@router.get("/periods/{period_id}/summary", response_model=PeriodSummaryOut)
async def period_summary_endpoint(
    period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return get_period_summary(db, period_id)


@router.get("/periods/{period_id}/validation", response_model=PeriodValidationOut)
async def period_validation_endpoint(
    period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return validate_period_for_finalization(db, period_id)


@router.post("/periods/{period_id}/finalize", response_model=AttendancePeriodOut)
async def finalize_period_endpoint(
    period_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return finalize_period(db, period_id, requester_id)


@router.post("/periods/{period_id}/unlock", response_model=AttendancePeriodOut)
async def unlock_period_endpoint(
    period_id: int,
    body: AttendancePeriodUnlock,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return unlock_period(db, period_id, requester_id, body.reason)


@router.post("/records/{record_id}/resolve-conflict", response_model=AttendanceRecordOut)
async def resolve_conflict_endpoint(
    record_id: int,
    body: ConflictResolution,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
):
    return resolve_conflict(db, record_id, requester_id, body.notes)
