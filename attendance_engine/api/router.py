"""
Main API router
"""
from fastapi import APIRouter

from attendance_engine.api.v1 import attendance_periods, health, payroll, sync

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(payroll.router, prefix="/payroll", tags=["payroll"])
api_router.include_router(attendance_periods.router, prefix="/attendance", tags=["attendance-periods"])
