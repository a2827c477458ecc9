"""Initial attendance sync and payroll schema

Revision ID: 001_initial_engine
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    # CURRENT_TIMESTAMP works on SQLite and Postgres
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'staff',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('employee_code', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('department', sa.String(), nullable=True),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_staff_id'), 'staff', ['id'], unique=False)
    op.create_index(op.f('ix_staff_employee_code'), 'staff', ['employee_code'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('meta_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_id'), 'audit_logs', ['id'], unique=False)
    op.create_index(op.f('ix_audit_logs_actor_id'), 'audit_logs', ['actor_id'], unique=False)

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.Enum('MANUAL_TRIGGER', 'SCHEDULED', name='syncjobtype'), nullable=False),
        sa.Column(
            'status',
            sa.Enum('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED', name='syncjobstatus'),
            nullable=False,
            server_default='PENDING',
        ),
        sa.Column('config_json', sa.JSON(), nullable=False),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('result_json', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_sync_jobs_id'), 'sync_jobs', ['id'], unique=False)
    op.create_index(op.f('ix_sync_jobs_status'), 'sync_jobs', ['status'], unique=False)
    op.create_index(op.f('ix_sync_jobs_scheduled_at'), 'sync_jobs', ['scheduled_at'], unique=False)

    op.create_table(
        'attendance_periods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'FINALIZED', name='periodstatus'), nullable=False, server_default='PENDING'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('finalized_by', sa.Integer(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unlock_reason', sa.Text(), nullable=True),
        sa.Column('unlocked_by', sa.Integer(), nullable=True),
        sa.Column('unlocked_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_attendance_periods_id'), 'attendance_periods', ['id'], unique=False)
    op.create_index(op.f('ix_attendance_periods_start_date'), 'attendance_periods', ['start_date'], unique=False)
    op.create_index(op.f('ix_attendance_periods_end_date'), 'attendance_periods', ['end_date'], unique=False)

    op.create_table(
        'attendance_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('employee_external_id', sa.String(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('clock_in_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('clock_out_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_hours', sa.Numeric(6, 2), nullable=True),
        sa.Column('source_transaction_id', sa.String(), nullable=False),
        sa.Column('clock_out_transaction_id', sa.String(), nullable=True),
        sa.Column('terminal_id', sa.String(), nullable=True),
        sa.Column('sync_job_id', sa.Integer(), nullable=True),
        sa.Column('sync_status', sa.Enum('SYNCED', 'MANUAL', name='syncstatus'), nullable=False, server_default='SYNCED'),
        sa.Column(
            'validation_status',
            sa.Enum('VALID', 'INVALID', 'CONFLICT', name='validationstatus'),
            nullable=False,
            server_default='VALID',
        ),
        sa.Column('has_conflict', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conflict_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conflict_resolved_by', sa.Integer(), nullable=True),
        sa.Column('conflict_resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('conflict_notes', sa.Text(), nullable=True),
        sa.Column('period_id', sa.Integer(), nullable=True),
        sa.Column('is_finalized', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ),
        sa.ForeignKeyConstraint(['sync_job_id'], ['sync_jobs.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['period_id'], ['attendance_periods.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_transaction_id'),
        sa.UniqueConstraint('clock_out_transaction_id'),
    )
    op.create_index(op.f('ix_attendance_records_id'), 'attendance_records', ['id'], unique=False)
    op.create_index(op.f('ix_attendance_records_staff_id'), 'attendance_records', ['staff_id'], unique=False)
    op.create_index(op.f('ix_attendance_records_date'), 'attendance_records', ['date'], unique=False)
    op.create_index(op.f('ix_attendance_records_sync_job_id'), 'attendance_records', ['sync_job_id'], unique=False)
    op.create_index(op.f('ix_attendance_records_period_id'), 'attendance_records', ['period_id'], unique=False)
    op.create_index('ix_attendance_records_staff_date', 'attendance_records', ['staff_id', 'date'], unique=False)

    op.create_table(
        'payroll_periods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attendance_period_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column(
            'status',
            sa.Enum('PENDING', 'CALCULATING', 'CALCULATED', 'APPROVED', name='payrollstatus'),
            nullable=False,
            server_default='PENDING',
        ),
        sa.Column('total_hours', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_overtime_hours', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('calculated_by', sa.Integer(), nullable=True),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('is_superseded', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['attendance_period_id'], ['attendance_periods.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_payroll_periods_id'), 'payroll_periods', ['id'], unique=False)
    op.create_index(op.f('ix_payroll_periods_attendance_period_id'), 'payroll_periods', ['attendance_period_id'], unique=False)

    op.create_table(
        'payroll_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payroll_period_id', sa.Integer(), nullable=False),
        sa.Column('employee_id', sa.Integer(), nullable=False),
        sa.Column('standard_hours', sa.Numeric(10, 2), nullable=False),
        sa.Column('overtime_hours', sa.Numeric(10, 2), nullable=False),
        sa.Column('standard_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('overtime_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('gross_pay', sa.Numeric(12, 2), nullable=False),
        sa.Column('calculation_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['payroll_period_id'], ['payroll_periods.id'], ),
        sa.ForeignKeyConstraint(['employee_id'], ['staff.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payroll_period_id', 'employee_id', name='uq_payroll_record_period_employee'),
    )
    op.create_index(op.f('ix_payroll_records_id'), 'payroll_records', ['id'], unique=False)
    op.create_index(op.f('ix_payroll_records_payroll_period_id'), 'payroll_records', ['payroll_period_id'], unique=False)
    op.create_index(op.f('ix_payroll_records_employee_id'), 'payroll_records', ['employee_id'], unique=False)


def downgrade() -> None:
    op.drop_table('payroll_records')
    op.drop_table('payroll_periods')
    op.drop_table('attendance_records')
    op.drop_table('attendance_periods')
    op.drop_table('sync_jobs')
    op.drop_table('audit_logs')
    op.drop_table('staff')
    bind = op.get_bind()
    for enum_name in ('payrollstatus', 'validationstatus', 'syncstatus', 'periodstatus', 'syncjobstatus', 'syncjobtype'):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
