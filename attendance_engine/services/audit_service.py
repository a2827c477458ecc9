"""
Audit logging service
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from attendance_engine.models.audit_log import AuditLog
from attendance_engine.utils.datetime_utils import now_utc
from attendance_engine.utils.json_serializer import sanitize_for_json


def log_audit(
    db: Session,
    actor_id: int,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Create an audit log entry

    Args:
        db: Database session
        actor_id: ID of the requester performing the action
        action: Action type (e.g., "CALCULATE_PAYROLL_PERIOD", "FINALIZE_ATTENDANCE_PERIOD")
        entity_type: Type of entity (e.g., "payroll_periods", "attendance_periods")
        entity_id: ID of the affected entity (optional)
        meta: Additional metadata as dictionary (optional)
        commit: Commit immediately. Pass False when the entry must land in the
            caller's transaction (it is then only flushed).

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_json=sanitize_for_json(meta) if meta is not None else None,
        created_at=now_utc(),
    )
    db.add(audit_log)
    if commit:
        db.commit()
        db.refresh(audit_log)
    else:
        db.flush()
    return audit_log


def list_audit_entries(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
) -> List[AuditLog]:
    """Audit entries, oldest first, optionally filtered by entity."""
    query = db.query(AuditLog)
    if entity_type is not None:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    return query.order_by(AuditLog.id.asc()).all()
