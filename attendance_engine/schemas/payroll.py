"""
Payroll schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from attendance_engine.models.payroll import PayrollStatus


class PayrollCalculateRequest(BaseModel):
    attendance_period_id: int
    employee_ids: Optional[List[int]] = Field(default=None, description="Limit the run to these staff ids")


class PayrollApproveRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class EligibilityOut(BaseModel):
    attendance_period_id: int
    eligible: bool
    reason: Optional[str] = None


class PayrollPreviewRow(BaseModel):
    employee_id: int
    employee_name: str
    department: Optional[str]
    total_hours: Decimal
    standard_hours: Decimal
    overtime_hours: Decimal
    standard_rate: Decimal
    overtime_rate: Decimal
    gross_pay: Decimal
    attendance_records: int


class PayrollCalculationOut(BaseModel):
    success: bool
    payroll_period_id: Optional[int] = None
    records_processed: int = 0
    total_hours: Decimal = Decimal("0")
    total_overtime_hours: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    error_code: Optional[str] = None
    reason: Optional[str] = None


class PayrollPeriodOut(BaseModel):
    id: int
    attendance_period_id: int
    start_date: date
    end_date: date
    status: PayrollStatus
    total_hours: Decimal
    total_overtime_hours: Decimal
    total_amount: Decimal
    calculated_by: Optional[int]
    calculated_at: Optional[datetime]
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    approval_notes: Optional[str]
    is_superseded: bool

    model_config = ConfigDict(from_attributes=True)


class PayrollSummaryOut(BaseModel):
    payroll_period_id: int
    status: PayrollStatus
    employee_count: int
    total_hours: Decimal
    total_standard_hours: Decimal
    total_overtime_hours: Decimal
    total_amount: Decimal
    average_hours_per_employee: Decimal
    overtime_percentage: Decimal
