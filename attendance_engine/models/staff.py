"""
Staff model - employees enrolled on the biometric terminals
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric
from sqlalchemy.sql import func
from attendance_engine.db.base import Base


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    employee_code = Column(String, unique=True, nullable=False, index=True)  # user id enrolled on the terminal
    name = Column(String, nullable=False)
    department = Column(String, nullable=True)
    hourly_rate = Column(Numeric(10, 2), nullable=True)  # None -> PAYROLL_DEFAULT_STANDARD_RATE
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)
