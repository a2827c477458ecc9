"""
Requester identity from bearer tokens.

Login and session management live outside this service; callers present a JWT
signed with ``JWT_SECRET_KEY`` whose ``sub`` claim is their numeric id.
"""
import logging
from datetime import timedelta
from typing import Dict, Optional

from jose import JWTError, jwt

from attendance_engine.core.config import settings
from attendance_engine.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)


def create_access_token(data: Dict, expires_minutes: Optional[int] = None) -> str:
    """Create a JWT access token (used by operator tooling and tests)"""
    to_encode = data.copy()
    if expires_minutes is None:
        expires_minutes = settings.JWT_EXPIRE_MINUTES
    to_encode.update({"exp": now_utc() + timedelta(minutes=expires_minutes)})
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict:
    """
    Decode and verify a JWT token

    Raises:
        ValueError: If the token is invalid or expired
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.debug("Rejected token: %s", e)
        raise ValueError("Invalid token")


def requester_id_from_token(token: str) -> int:
    """
    Extract the requester id (``sub``) from a token

    Raises:
        ValueError: If the token is invalid or ``sub`` is missing / not numeric
    """
    payload = decode_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise ValueError("Token has no subject")
    return int(sub)
