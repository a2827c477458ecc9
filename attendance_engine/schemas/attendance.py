"""
Attendance period and record schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from attendance_engine.models.attendance import PeriodStatus, SyncStatus, ValidationStatus


class AttendancePeriodCreate(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class AttendancePeriodUnlock(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ConflictResolution(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class AttendancePeriodOut(BaseModel):
    id: int
    start_date: date
    end_date: date
    status: PeriodStatus
    finalized_by: Optional[int]
    finalized_at: Optional[datetime]
    unlock_reason: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordOut(BaseModel):
    id: int
    staff_id: int
    employee_external_id: str
    date: date
    clock_in_time: Optional[datetime]
    clock_out_time: Optional[datetime]
    total_hours: Optional[Decimal]
    source_transaction_id: str
    terminal_id: Optional[str]
    sync_job_id: Optional[int]
    sync_status: SyncStatus
    validation_status: ValidationStatus
    has_conflict: bool
    conflict_resolved: bool
    conflict_notes: Optional[str]
    period_id: Optional[int]
    is_finalized: bool

    model_config = ConfigDict(from_attributes=True)


class PeriodIssue(BaseModel):
    type: str  # UNRESOLVED_CONFLICTS, MISSING_CLOCK_OUT
    count: int
    message: str
    blocking: bool


class PeriodValidationOut(BaseModel):
    period_id: int
    can_finalize: bool
    issues: List[PeriodIssue]


class PeriodSummaryOut(BaseModel):
    period_id: int
    status: PeriodStatus
    total_records: int
    employee_count: int
    total_hours: Decimal
    conflicts: int
    unresolved_conflicts: int
    missing_clock_out: int
