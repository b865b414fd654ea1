"""
Payroll Engine - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, AuditMixin
from app.models.payroll import (
    Employee,
    AttendanceRecord,
    Advance,
    LeaveBalance,
    FormulaVariable,
    EmployeeVariableOverride,
    PayrollFormula,
    PayrollSettingsRow,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    "Employee",
    "AttendanceRecord",
    "Advance",
    "LeaveBalance",
    "FormulaVariable",
    "EmployeeVariableOverride",
    "PayrollFormula",
    "PayrollSettingsRow",
]
