"""
Database models
"""
from attendance_engine.models.staff import Staff
from attendance_engine.models.audit_log import AuditLog
from attendance_engine.models.attendance import (
    AttendancePeriod,
    AttendanceRecord,
    PeriodStatus,
    SyncStatus,
    ValidationStatus,
)
from attendance_engine.models.sync_job import (
    SyncJob,
    SyncJobStatus,
    SyncJobType,
    FINISHED_JOB_STATUSES,
)
from attendance_engine.models.payroll import PayrollPeriod, PayrollRecord, PayrollStatus

__all__ = [
    "Staff",
    "AuditLog",
    "AttendancePeriod",
    "AttendanceRecord",
    "PeriodStatus",
    "SyncStatus",
    "ValidationStatus",
    "SyncJob",
    "SyncJobStatus",
    "SyncJobType",
    "FINISHED_JOB_STATUSES",
    "PayrollPeriod",
    "PayrollRecord",
    "PayrollStatus",
]
