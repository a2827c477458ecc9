"""
Attendance Sync & Payroll Engine - application entry point
"""
import asyncio
import logging
from urllib.parse import urlparse, urlunparse

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from attendance_engine import __version__
from attendance_engine.api.router import api_router
from attendance_engine.core.config import settings
from attendance_engine.core.errors import (
    engine_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from attendance_engine.core.exceptions import EngineError
from attendance_engine.core.logging import setup_logging
from attendance_engine.db.session import SessionLocal
from attendance_engine.services.notification_service import LoggingNotifier
from attendance_engine.services.sync_job_service import SyncJobOrchestrator
from attendance_engine.services.zk_connection import ZKDeviceConnection

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)


def _mask_database_url(url: str) -> str:
    """Mask password in DATABASE_URL for safe logging"""
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite") or not parsed.password:
        return url
    netloc = f"{parsed.username}:****@{parsed.hostname or ''}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


app = FastAPI(
    title="Attendance Sync & Payroll Engine",
    description="Biometric terminal synchronization, attendance reconciliation and payroll calculation",
    version=settings.VERSION or __version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(EngineError, engine_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(api_router, prefix="/api/v1")

app.state.notifier = LoggingNotifier(enabled=settings.NOTIFICATIONS_ENABLED)
app.state.orchestrator = SyncJobOrchestrator.from_settings(
    settings,
    session_factory=SessionLocal,
    connection_factory=lambda device: ZKDeviceConnection(),
    notifier=app.state.notifier,
)
app.state.scheduler_stop = None
app.state.scheduler_task = None


@app.on_event("startup")
async def startup() -> None:
    logger.info("DATABASE_URL (app): %s", _mask_database_url(settings.DATABASE_URL))
    db = SessionLocal()
    try:
        app.state.orchestrator.recover_interrupted_jobs(db)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not recover interrupted sync jobs: %s", e)
    finally:
        db.close()
    if settings.SYNC_SCHEDULER_ENABLED:
        stop = asyncio.Event()
        app.state.scheduler_stop = stop
        app.state.scheduler_task = asyncio.create_task(
            app.state.orchestrator.run_scheduler(stop, settings.SYNC_SCHEDULER_INTERVAL_S)
        )
        logger.info("Sync scheduler enabled for %d terminal(s)", len(settings.SYNC_DEVICES))


@app.on_event("shutdown")
async def shutdown() -> None:
    if app.state.scheduler_stop is not None:
        app.state.scheduler_stop.set()
        await app.state.scheduler_task
    await app.state.orchestrator.shutdown()
