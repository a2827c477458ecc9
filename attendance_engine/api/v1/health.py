"""
Health check endpoint
"""
from fastapi import APIRouter

from attendance_engine import __version__
from attendance_engine.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness probe"""
    return {
        "status": "ok",
        "service": "attendance-payroll-engine",
        "version": settings.VERSION or __version__,
    }
