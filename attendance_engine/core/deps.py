"""
Dependencies for FastAPI endpoints
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from attendance_engine.core.security import requester_id_from_token
from attendance_engine.db.session import get_db  # noqa: F401  (re-exported for routers)
from attendance_engine.services.sync_job_service import SyncJobOrchestrator

security = HTTPBearer()


async def get_requester_id(credentials: HTTPAuthorizationCredentials = Depends(security)) -> int:
    """Id of the authenticated caller, taken from the bearer token's ``sub`` claim"""
    try:
        return requester_id_from_token(credentials.credentials)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_orchestrator(request: Request) -> SyncJobOrchestrator:
    return request.app.state.orchestrator


def get_notifier(request: Request):
    return request.app.state.notifier
