"""
Payroll models
"""
from sqlalchemy import (
    Column,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    Text,
    Numeric,
    Boolean,
    JSON,
    Enum as SQLEnum,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, text
import enum
from attendance_engine.db.base import Base


class PayrollStatus(str, enum.Enum):
    PENDING = "PENDING"
    CALCULATING = "CALCULATING"
    CALCULATED = "CALCULATED"
    APPROVED = "APPROVED"


class PayrollPeriod(Base):
    __tablename__ = "payroll_periods"

    id = Column(Integer, primary_key=True, index=True)
    attendance_period_id = Column(Integer, ForeignKey("attendance_periods.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(SQLEnum(PayrollStatus), nullable=False, server_default=text("'PENDING'"))
    total_hours = Column(Numeric(10, 2), nullable=False, default=0)
    total_overtime_hours = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    calculated_by = Column(Integer, nullable=True)
    calculated_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_notes = Column(Text, nullable=True)
    is_superseded = Column(Boolean, default=False, nullable=False)  # set when the attendance period is unlocked
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    # Relationships
    attendance_period = relationship("AttendancePeriod", backref="payroll_periods")
    records = relationship("PayrollRecord", back_populates="payroll_period", cascade="all, delete-orphan")


class PayrollRecord(Base):
    __tablename__ = "payroll_records"

    id = Column(Integer, primary_key=True, index=True)
    payroll_period_id = Column(Integer, ForeignKey("payroll_periods.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    standard_hours = Column(Numeric(10, 2), nullable=False)
    overtime_hours = Column(Numeric(10, 2), nullable=False)
    standard_rate = Column(Numeric(10, 2), nullable=False)
    overtime_rate = Column(Numeric(10, 2), nullable=False)
    gross_pay = Column(Numeric(12, 2), nullable=False)
    calculation_json = Column(JSON, nullable=True)  # per-day breakdown and thresholds applied
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint('payroll_period_id', 'employee_id', name='uq_payroll_record_period_employee'),
    )

    payroll_period = relationship("PayrollPeriod", back_populates="records")
    employee = relationship("Staff", backref="payroll_records")
