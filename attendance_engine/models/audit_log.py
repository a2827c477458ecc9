"""
Audit log model
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from attendance_engine.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, nullable=False, index=True)  # requester id from the bearer token
    action = Column(String, nullable=False)  # e.g., "CALCULATE_PAYROLL_PERIOD", "FINALIZE_ATTENDANCE_PERIOD"
    entity_type = Column(String, nullable=False)  # e.g., "payroll_periods", "attendance_periods"
    entity_id = Column(Integer, nullable=True)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
