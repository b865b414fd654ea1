"""
Payroll Engine - Payroll Models

Tables read by the payroll computation engine:
- payroll_employees: pay master (base, HRA, other/conveyance, own OT rate)
- attendance: one row per employee per day
- advances: salary advances recovered in the month they were paid
- employee_leave_balances: casual/earned leave balance per year
- formula_variables / employee_variable_overrides: formula inputs
- payroll_formulas: admin-authored expressions, latest active per type wins
- payroll_settings: effective-dated PF/ESI rates and Sunday multiplier

Employees are never deleted; they are deactivated.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String, Text, Uuid,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, AuditMixin


# ===========================================
# EMPLOYEE MODEL
# ===========================================

class Employee(BaseModel, AuditMixin):
    """
    Employee pay master.

    ``overtime_rate_per_hour`` is optional; when set and positive it takes
    priority over any formula or system default overtime rate.
    """

    __tablename__ = "payroll_employees"
    __table_args__ = (
        CheckConstraint(
            "overtime_rate_per_hour IS NULL OR overtime_rate_per_hour >= 0",
            name="overtime_rate_non_negative",
        ),
    )

    employee_code: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, unique=True,
        comment="Human-facing employee code",
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Salary structure (monthly)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    hra_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    other_conv_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False,
        comment="Other / conveyance allowance",
    )
    overtime_rate_per_hour: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)


# ===========================================
# ATTENDANCE & ADVANCES
# ===========================================

class AttendanceRecord(BaseModel):
    """
    Daily attendance.

    Status is stored as free text so rows that break the status/hours
    invariants still load; the engine tolerates them.
    """

    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_employee_date"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hours_worked: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PRESENT", nullable=False)


class Advance(BaseModel):
    """Salary advance, deducted in the month of ``advance_date``."""

    __tablename__ = "advances"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    advance_date: Mapped[date] = mapped_column(Date, nullable=False)
    advance_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class LeaveBalance(BaseModel):
    __tablename__ = "employee_leave_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="uq_leave_balance_employee_year"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    casual_leave_balance: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("0"), nullable=False)
    earned_leave_balance: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("0"), nullable=False)


# ===========================================
# FORMULAS & VARIABLES
# ===========================================

class FormulaVariable(BaseModel):
    """Global variable catalog; ``variable_type`` is fixed/calculated/employee_specific/system."""

    __tablename__ = "formula_variables"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    variable_type: Mapped[str] = mapped_column(String(30), default="system", nullable=False)
    default_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class EmployeeVariableOverride(BaseModel, AuditMixin):
    """Employee-specific value for a catalog variable over a date window."""

    __tablename__ = "employee_variable_overrides"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    variable_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("formula_variables.id", ondelete="CASCADE"),
        nullable=False,
    )
    override_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class PayrollFormula(BaseModel, AuditMixin):
    __tablename__ = "payroll_formulas"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    formula_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    expression: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)


class PayrollSettingsRow(BaseModel, AuditMixin):
    """Statutory settings; the latest ``effective_from`` on or before a date is in force."""

    __tablename__ = "payroll_settings"

    effective_from: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    pf_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    esi_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    sunday_overtime_multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
