"""
Sync job model - one run of pulling punches from the terminals
"""
from sqlalchemy import Column, Integer, DateTime, Boolean, Text, JSON, Enum as SQLEnum
from sqlalchemy.sql import func, text
import enum
from attendance_engine.db.base import Base


class SyncJobType(str, enum.Enum):
    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    SCHEDULED = "SCHEDULED"


class SyncJobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


FINISHED_JOB_STATUSES = (SyncJobStatus.COMPLETED, SyncJobStatus.FAILED, SyncJobStatus.CANCELLED)


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(SQLEnum(SyncJobType), nullable=False)
    status = Column(SQLEnum(SyncJobStatus), nullable=False, server_default=text("'PENDING'"), index=True)
    config_json = Column(JSON, nullable=False)  # devices, start_date, end_date, options
    requested_by = Column(Integer, nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    cancel_requested = Column(Boolean, default=False, nullable=False)
    result_json = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)
