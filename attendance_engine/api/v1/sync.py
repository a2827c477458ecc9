"""
Sync job endpoints
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from attendance_engine.core.config import DeviceConfig, settings
from attendance_engine.core.deps import get_db, get_orchestrator, get_requester_id
from attendance_engine.models.sync_job import SyncJobType
from attendance_engine.schemas.sync import (
    ConnectionTestOut,
    SyncHealthStatus,
    SyncJobCancelOut,
    SyncJobConfig,
    SyncJobCreate,
    SyncJobMetrics,
    SyncJobOut,
)
from attendance_engine.services.sync_job_service import SyncJobOrchestrator

router = APIRouter()


@router.post("/jobs", response_model=SyncJobOut, status_code=202)
async def create_sync_job_endpoint(
    body: SyncJobCreate,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    """Create a manual sync job and start it in the background"""
    config = SyncJobConfig(
        devices=body.devices if body.devices is not None else settings.SYNC_DEVICES,
        start_date=body.start_date,
        end_date=body.end_date,
        options=body.options,
    )
    job = orchestrator.create_sync_job(db, SyncJobType.MANUAL_TRIGGER, config, requested_by=requester_id)
    orchestrator.submit(job.id)
    return job


@router.get("/jobs", response_model=List[SyncJobOut])
async def list_sync_jobs_endpoint(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_jobs(db, limit=limit)


@router.get("/jobs/{job_id}", response_model=SyncJobOut)
async def get_sync_job_endpoint(
    job_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_job(db, job_id)


@router.post("/jobs/{job_id}/cancel", response_model=SyncJobCancelOut)
async def cancel_sync_job_endpoint(
    job_id: int,
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    """Cancel a pending job, or ask a running job to stop after its current device"""
    return SyncJobCancelOut(job_id=job_id, cancelled=orchestrator.cancel_job(db, job_id))


@router.get("/metrics", response_model=SyncJobMetrics)
async def sync_metrics_endpoint(
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_job_metrics(db)


@router.get("/health", response_model=SyncHealthStatus)
async def sync_health_endpoint(
    db: Session = Depends(get_db),
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_health_status(db)


@router.post("/devices/test", response_model=ConnectionTestOut)
async def test_device_connection_endpoint(
    device: DeviceConfig,
    requester_id: int = Depends(get_requester_id),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    """Try to reach one terminal"""
    result = await orchestrator.test_connection(device)
    return ConnectionTestOut(
        device_id=device.id,
        success=result.success,
        response_time_ms=result.response_time_ms,
        message=result.message,
        error=result.error.to_dict() if result.error else None,
    )
