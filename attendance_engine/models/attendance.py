"""
Attendance models - synced/manual attendance records and attendance periods
"""
from sqlalchemy import (
    Column,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    Numeric,
    Enum as SQLEnum,
    Boolean,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, text
import enum
from attendance_engine.db.base import Base


class SyncStatus(str, enum.Enum):
    SYNCED = "SYNCED"
    MANUAL = "MANUAL"


class ValidationStatus(str, enum.Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    CONFLICT = "CONFLICT"


class PeriodStatus(str, enum.Enum):
    PENDING = "PENDING"
    FINALIZED = "FINALIZED"


class AttendancePeriod(Base):
    __tablename__ = "attendance_periods"

    id = Column(Integer, primary_key=True, index=True)
    start_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=False, index=True)
    status = Column(SQLEnum(PeriodStatus), nullable=False, server_default=text("'PENDING'"))
    created_by = Column(Integer, nullable=True)
    finalized_by = Column(Integer, nullable=True)
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    unlock_reason = Column(Text, nullable=True)
    unlocked_by = Column(Integer, nullable=True)
    unlocked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    records = relationship("AttendanceRecord", back_populates="period")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    employee_external_id = Column(String, nullable=False)  # user id as reported by the terminal
    date = Column(Date, nullable=False, index=True)
    clock_in_time = Column(DateTime(timezone=True), nullable=True)
    clock_out_time = Column(DateTime(timezone=True), nullable=True)
    total_hours = Column(Numeric(6, 2), nullable=True)  # None unless both clock-in and clock-out are set
    source_transaction_id = Column(String, unique=True, nullable=False)
    clock_out_transaction_id = Column(String, unique=True, nullable=True)  # punch merged in as clock-out
    terminal_id = Column(String, nullable=True)
    sync_job_id = Column(Integer, ForeignKey("sync_jobs.id", ondelete="SET NULL"), nullable=True, index=True)  # None for manual entries
    sync_status = Column(SQLEnum(SyncStatus), nullable=False, server_default=text("'SYNCED'"))
    validation_status = Column(SQLEnum(ValidationStatus), nullable=False, server_default=text("'VALID'"))
    has_conflict = Column(Boolean, default=False, nullable=False)
    conflict_resolved = Column(Boolean, default=False, nullable=False)
    conflict_resolved_by = Column(Integer, nullable=True)
    conflict_resolved_at = Column(DateTime(timezone=True), nullable=True)
    conflict_notes = Column(Text, nullable=True)
    period_id = Column(Integer, ForeignKey("attendance_periods.id"), nullable=True, index=True)
    is_finalized = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    __table_args__ = (
        Index("ix_attendance_records_staff_date", "staff_id", "date"),
    )

    # Relationships
    staff = relationship("Staff", backref="attendance_records")
    period = relationship("AttendancePeriod", back_populates="records")
