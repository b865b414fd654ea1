"""
Payroll Engine - Data Records

Plain records exchanged between the engine and its data store.
The engine never sees ORM objects; repositories map rows onto these.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce a stored numeric (None, int, float, str, Decimal) to Decimal."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        # str() keeps floats like 0.75 exact
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    return result if result.is_finite() else default


def money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half up."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# ===========================================
# ENUMS
# ===========================================

class AttendanceStatus(str, Enum):
    """Day status on an attendance row."""
    PRESENT = "PRESENT"
    WEEKLY_OFF = "WEEKLY_OFF"
    CASUAL_LEAVE = "CASUAL_LEAVE"
    EARNED_LEAVE = "EARNED_LEAVE"
    UNPAID_LEAVE = "UNPAID_LEAVE"


LEAVE_STATUSES = frozenset({
    AttendanceStatus.CASUAL_LEAVE,
    AttendanceStatus.EARNED_LEAVE,
    AttendanceStatus.UNPAID_LEAVE,
})


class VariableType(str, Enum):
    """Formula variable catalog type."""
    FIXED = "fixed"
    CALCULATED = "calculated"
    EMPLOYEE_SPECIFIC = "employee_specific"
    SYSTEM = "system"


class RateSource(str, Enum):
    """Which tier produced the overtime unit rate."""
    EMPLOYEE_SPECIFIC = "employee_specific"
    FORMULA_BASED = "formula_based"
    SYSTEM_DEFAULT = "system_default"
    NONE = "none"


OVERTIME_FORMULA_TYPE = "overtime_calculation"


# ===========================================
# RECORDS
# ===========================================

@dataclass(frozen=True)
class EmployeeRecord:
    """Employee master data relevant to pay."""
    id: uuid.UUID
    name: str
    base_salary: Decimal = ZERO
    hra_amount: Decimal = ZERO
    other_conv_amount: Decimal = ZERO
    overtime_rate_per_hour: Optional[Decimal] = None
    active: bool = True
    unit_id: Optional[uuid.UUID] = None
    employee_code: Optional[str] = None


@dataclass(frozen=True)
class AttendanceRow:
    """One (employee, date) attendance entry."""
    employee_id: uuid.UUID
    attendance_date: date
    hours_worked: Optional[Decimal] = ZERO
    overtime_hours: Optional[Decimal] = ZERO
    status: Optional[str] = AttendanceStatus.PRESENT.value
    id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class AdvanceRecord:
    employee_id: uuid.UUID
    advance_date: date
    advance_amount: Decimal


@dataclass(frozen=True)
class LeaveBalanceRecord:
    employee_id: uuid.UUID
    year: int
    casual_leave_balance: Decimal = ZERO
    earned_leave_balance: Decimal = ZERO


@dataclass(frozen=True)
class FormulaVariableRecord:
    id: uuid.UUID
    name: str
    variable_type: str = VariableType.SYSTEM.value
    default_value: Optional[Decimal] = None
    active: bool = True


@dataclass(frozen=True)
class VariableOverrideRecord:
    employee_id: uuid.UUID
    variable_id: uuid.UUID
    override_value: Decimal
    effective_from: date
    effective_to: Optional[date] = None

    def is_effective_on(self, on: date) -> bool:
        if self.effective_from > on:
            return False
        return self.effective_to is None or self.effective_to >= on


@dataclass(frozen=True)
class FormulaRecord:
    id: uuid.UUID
    name: str
    formula_type: str
    expression: str
    effective_from: date
    active: bool = True


@dataclass(frozen=True)
class SettingsRecord:
    """One effective-dated row of statutory settings."""
    effective_from: date
    pf_rate: Optional[Decimal] = None
    esi_rate: Optional[Decimal] = None
    sunday_overtime_multiplier: Optional[Decimal] = None


@dataclass(frozen=True)
class AttendanceCorrection:
    """A data-hygiene write: new status and/or overtime hours for one row."""
    attendance_id: uuid.UUID
    status: Optional[str] = None
    overtime_hours: Optional[Decimal] = None
    reason: str = ""
