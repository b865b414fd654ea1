"""Create payroll engine tables

Revision ID: 20261018_0900
Revises:
Create Date: 2026-10-18 09:00:00.000000

Tables read by the payroll computation engine:
- payroll_employees: pay master with optional employee-specific OT rate
- attendance: daily attendance, one row per employee per date
- advances: salary advances
- employee_leave_balances: casual/earned balance per year
- formula_variables / employee_variable_overrides: formula inputs
- payroll_formulas: admin-authored formulas by type
- payroll_settings: effective-dated PF/ESI rates and Sunday multiplier
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_0900'
down_revision = None
branch_labels = None
depends_on = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    return table_name in inspector.get_table_names()


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _audit():
    return [
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('updated_by_id', sa.Uuid(), nullable=True),
    ]


def _employee_fk():
    return sa.Column(
        'employee_id', sa.Uuid(),
        sa.ForeignKey('payroll_employees.id', ondelete='CASCADE'),
        nullable=False, index=True,
    )


def upgrade() -> None:
    # ===========================================
    # EMPLOYEES
    # ===========================================
    if not table_exists('payroll_employees'):
        op.create_table('payroll_employees',
            sa.Column('id', sa.Uuid(), primary_key=True),
            sa.Column('employee_code', sa.String(50), nullable=True, unique=True, comment='Human-facing employee code'),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('base_salary', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('hra_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('other_conv_amount', sa.Numeric(12, 2), nullable=False, server_default='0', comment='Other / conveyance allowance'),
            sa.Column('overtime_rate_per_hour', sa.Numeric(10, 2), nullable=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
            sa.Column('unit_id', sa.Uuid(), nullable=True, index=True),
            *_audit(),
            *_timestamps(),
            sa.CheckConstraint(
                'overtime_rate_per_hour IS NULL OR overtime_rate_per_hour >= 0',
                name='ck_payroll_employees_overtime_rate_non_negative',
            ),
        )

    # ===========================================
    # ATTENDANCE & ADVANCES
    # ===========================================
    if not table_exists('attendance'):
        op.create_table('attendance',
            sa.Column('id', sa.Uuid(), primary_key=True),
            _employee_fk(),
            sa.Column('attendance_date', sa.Date(), nullable=False, index=True),
            sa.Column('hours_worked', sa.Numeric(5, 2), nullable=False, server_default='0'),
            sa.Column('overtime_hours', sa.Numeric(5, 2), nullable=False, server_default='0'),
            sa.Column('status', sa.String(20), nullable=False, server_default='PRESENT'),
            *_timestamps(),
            sa.UniqueConstraint('employee_id', 'attendance_date', name='uq_attendance_employee_date'),
        )

    if not table_exists('advances'):
        op.create_table('advances',
            sa.Column('id', sa.Uuid(), primary_key=True),
            _employee_fk(),
            sa.Column('advance_date', sa.Date(), nullable=False),
            sa.Column('advance_amount', sa.Numeric(12, 2), nullable=False),
            *_timestamps(),
        )

    if not table_exists('employee_leave_balances'):
        op.create_table('employee_leave_balances',
            sa.Column('id', sa.Uuid(), primary_key=True),
            _employee_fk(),
            sa.Column('year', sa.Integer(), nullable=False),
            sa.Column('casual_leave_balance', sa.Numeric(6, 2), nullable=False, server_default='0'),
            sa.Column('earned_leave_balance', sa.Numeric(6, 2), nullable=False, server_default='0'),
            *_timestamps(),
            sa.UniqueConstraint('employee_id', 'year', name='uq_leave_balance_employee_year'),
        )

    # ===========================================
    # FORMULAS, VARIABLES & SETTINGS
    # ===========================================
    if not table_exists('formula_variables'):
        op.create_table('formula_variables',
            sa.Column('id', sa.Uuid(), primary_key=True),
            sa.Column('name', sa.String(100), nullable=False, unique=True),
            sa.Column('variable_type', sa.String(30), nullable=False, server_default='system'),
            sa.Column('default_value', sa.Numeric(14, 4), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )

    if not table_exists('employee_variable_overrides'):
        op.create_table('employee_variable_overrides',
            sa.Column('id', sa.Uuid(), primary_key=True),
            _employee_fk(),
            sa.Column('variable_id', sa.Uuid(), sa.ForeignKey('formula_variables.id', ondelete='CASCADE'), nullable=False),
            sa.Column('override_value', sa.Numeric(14, 4), nullable=False),
            sa.Column('effective_from', sa.Date(), nullable=False),
            sa.Column('effective_to', sa.Date(), nullable=True),
            *_audit(),
            *_timestamps(),
        )

    if not table_exists('payroll_formulas'):
        op.create_table('payroll_formulas',
            sa.Column('id', sa.Uuid(), primary_key=True),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('formula_type', sa.String(50), nullable=False, index=True),
            sa.Column('expression', sa.Text(), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('effective_from', sa.Date(), nullable=False),
            *_audit(),
            *_timestamps(),
        )

    if not table_exists('payroll_settings'):
        op.create_table('payroll_settings',
            sa.Column('id', sa.Uuid(), primary_key=True),
            sa.Column('effective_from', sa.Date(), nullable=False, unique=True),
            sa.Column('pf_rate', sa.Numeric(5, 2), nullable=True),
            sa.Column('esi_rate', sa.Numeric(5, 2), nullable=True),
            sa.Column('sunday_overtime_multiplier', sa.Numeric(4, 2), nullable=True),
            *_audit(),
            *_timestamps(),
        )


def downgrade() -> None:
    op.drop_table('payroll_settings')
    op.drop_table('payroll_formulas')
    op.drop_table('employee_variable_overrides')
    op.drop_table('formula_variables')
    op.drop_table('employee_leave_balances')
    op.drop_table('advances')
    op.drop_table('attendance')
    op.drop_table('payroll_employees')
