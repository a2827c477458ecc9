"""
Sync job schemas
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from attendance_engine.core.config import DeviceConfig
from attendance_engine.models.sync_job import SyncJobStatus, SyncJobType


class SyncJobConfig(BaseModel):
    """What a sync job pulls: which terminals and which days"""
    devices: List[DeviceConfig] = Field(default_factory=list)
    start_date: date
    end_date: date
    options: Dict[str, Any] = Field(default_factory=dict)


class SyncJobCreate(BaseModel):
    """Request body for triggering a manual sync. Devices default to the configured terminals."""
    devices: Optional[List[DeviceConfig]] = None
    start_date: date
    end_date: date
    options: Dict[str, Any] = Field(default_factory=dict)


class SyncJobOut(BaseModel):
    id: int
    type: SyncJobType
    status: SyncJobStatus
    config_json: Dict[str, Any]
    requested_by: Optional[int]
    scheduled_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    duration_ms: Optional[int]
    cancel_requested: bool
    result_json: Optional[Dict[str, Any]]
    error_message: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class SyncJobCancelOut(BaseModel):
    job_id: int
    cancelled: bool


class UpcomingJob(BaseModel):
    id: int
    type: SyncJobType
    scheduled_at: datetime


class SyncJobMetrics(BaseModel):
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    running_jobs: int
    pending_jobs: int
    success_rate: float
    average_duration_ms: Optional[float]
    last_run: Optional[datetime]
    upcoming_jobs: List[UpcomingJob]


class SyncHealthStatus(BaseModel):
    is_healthy: bool
    current_status: str  # ACTIVE, DEGRADED, DOWN
    consecutive_failures: int
    last_successful_run: Optional[datetime]
    open_circuits: List[str]
    issues: List[str]


class ConnectionTestOut(BaseModel):
    device_id: str
    success: bool
    response_time_ms: float
    message: str
    error: Optional[Dict[str, Any]] = None
