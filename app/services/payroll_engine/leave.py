"""
Payroll Engine - Leave Reconciliation

Leave taken beyond the available balance is reclassified as unpaid leave,
never carried as a negative balance. The salary impact of unpaid leave is

    base_salary / 26 * effective_unpaid_days

The flat 26-day divisor differs from the 30-day basis used for overtime.
Reconciliation is reported next to the pay figures; it is not deducted from
net salary a second time.

Also holds the yearly leave utilisation report used to spot employees who
have drawn more leave than their balance.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from app.config import settings
from app.services.payroll_engine.records import (
    ZERO,
    AttendanceStatus,
    EmployeeRecord,
    LeaveBalanceRecord,
    money,
    to_decimal,
)

logger = logging.getLogger(__name__)


NO_BALANCE_WARNING = "No leave balance data available for reconciliation"


@dataclass(frozen=True)
class ReconciledLeaveData:
    casual_leave_taken: int
    earned_leave_taken: int
    casual_leave_balance: Decimal
    earned_leave_balance: Decimal
    total_leave_taken: int
    total_leave_available: Decimal
    excess_leave_days: Decimal
    raw_unpaid_leave_days: int
    unpaid_leave_days: Decimal
    leave_adjustment_applied: bool = True


@dataclass(frozen=True)
class LeaveReconciliation:
    reconciled_leave_data: Optional[ReconciledLeaveData]
    leave_impact_amount: Decimal
    warning: Optional[str] = None


class LeaveReconciler:

    def reconcile(
        self,
        casual_taken: int,
        earned_taken: int,
        raw_unpaid_days: int,
        balance: Optional[LeaveBalanceRecord],
        base_salary: Decimal,
    ) -> LeaveReconciliation:
        if balance is None:
            return LeaveReconciliation(
                reconciled_leave_data=None,
                leave_impact_amount=money(ZERO),
                warning=NO_BALANCE_WARNING,
            )

        casual_balance = to_decimal(balance.casual_leave_balance)
        earned_balance = to_decimal(balance.earned_leave_balance)
        warning = None
        if casual_balance < 0 or earned_balance < 0:
            warning = "Negative leave balance counted against leave taken"
            logger.warning(f"Negative leave balance for employee {balance.employee_id} in {balance.year}")

        total_taken = casual_taken + earned_taken
        total_available = casual_balance + earned_balance
        excess = max(ZERO, Decimal(total_taken) - total_available)
        effective_unpaid = Decimal(raw_unpaid_days) + excess

        daily_salary = to_decimal(base_salary) / settings.payroll_leave_day_divisor
        return LeaveReconciliation(
            reconciled_leave_data=ReconciledLeaveData(
                casual_leave_taken=casual_taken,
                earned_leave_taken=earned_taken,
                casual_leave_balance=casual_balance,
                earned_leave_balance=earned_balance,
                total_leave_taken=total_taken,
                total_leave_available=total_available,
                excess_leave_days=excess,
                raw_unpaid_leave_days=raw_unpaid_days,
                unpaid_leave_days=effective_unpaid,
            ),
            leave_impact_amount=money(daily_salary * effective_unpaid),
            warning=warning,
        )


# ===========================================
# LEAVE UTILISATION REPORT
# ===========================================

class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


RISK_ORDER = {RiskLevel.CRITICAL: 4, RiskLevel.HIGH: 3, RiskLevel.MEDIUM: 2, RiskLevel.LOW: 1}


def risk_level_for(over_utilization: Decimal) -> RiskLevel:
    if over_utilization >= 5:
        return RiskLevel.CRITICAL
    if over_utilization >= 3:
        return RiskLevel.HIGH
    if over_utilization >= 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass(frozen=True)
class LeaveUtilization:
    employee_id: uuid.UUID
    employee_name: str
    year: int
    casual_leave_balance: Decimal
    earned_leave_balance: Decimal
    casual_leave_used: int
    earned_leave_used: int
    over_utilized_casual: Decimal
    over_utilized_earned: Decimal
    has_negative_balance: bool
    risk_level: RiskLevel

    @property
    def total_over_utilization(self) -> Decimal:
        return self.over_utilized_casual + self.over_utilized_earned


@dataclass(frozen=True)
class LeaveUtilizationReport:
    year: int
    entries: List[LeaveUtilization] = field(default_factory=list)

    @property
    def total_employees(self) -> int:
        return len(self.entries)

    @property
    def employees_with_negative_balance(self) -> int:
        return sum(1 for entry in self.entries if entry.has_negative_balance)

    @property
    def total_over_utilization(self) -> Decimal:
        return sum((entry.total_over_utilization for entry in self.entries), ZERO)

    @property
    def critical_cases(self) -> int:
        return sum(1 for entry in self.entries if entry.risk_level == RiskLevel.CRITICAL)


def assess_leave_utilization(
    employee: EmployeeRecord,
    balance: LeaveBalanceRecord,
    casual_used: int,
    earned_used: int,
) -> LeaveUtilization:
    casual_balance = to_decimal(balance.casual_leave_balance)
    earned_balance = to_decimal(balance.earned_leave_balance)
    over_casual = max(ZERO, Decimal(casual_used) - casual_balance)
    over_earned = max(ZERO, Decimal(earned_used) - earned_balance)
    return LeaveUtilization(
        employee_id=employee.id,
        employee_name=employee.name,
        year=balance.year,
        casual_leave_balance=casual_balance,
        earned_leave_balance=earned_balance,
        casual_leave_used=casual_used,
        earned_leave_used=earned_used,
        over_utilized_casual=over_casual,
        over_utilized_earned=over_earned,
        has_negative_balance=over_casual > 0 or over_earned > 0,
        risk_level=risk_level_for(over_casual + over_earned),
    )


def build_utilization_report(year: int, entries: Iterable[LeaveUtilization]) -> LeaveUtilizationReport:
    ordered = sorted(
        entries,
        key=lambda entry: (RISK_ORDER[entry.risk_level], entry.total_over_utilization),
        reverse=True,
    )
    return LeaveUtilizationReport(year=year, entries=ordered)


async def leave_utilization_report(repository, year: int) -> LeaveUtilizationReport:
    """Compare a year's CL/EL attendance with each active employee's balance."""
    employees = {employee.id: employee for employee in await repository.list_active_employees()}
    balances = await repository.list_leave_balances(year)
    rows = await repository.get_attendance(date(year, 1, 1), date(year, 12, 31))

    used: Dict[uuid.UUID, Dict[str, int]] = {}
    for row in rows:
        status = str(row.status).strip().upper()
        if status not in (AttendanceStatus.CASUAL_LEAVE.value, AttendanceStatus.EARNED_LEAVE.value):
            continue
        counts = used.setdefault(row.employee_id, {})
        counts[status] = counts.get(status, 0) + 1

    entries = []
    for balance in balances:
        employee = employees.get(balance.employee_id)
        if employee is None:
            continue
        counts = used.get(employee.id, {})
        entries.append(
            assess_leave_utilization(
                employee,
                balance,
                casual_used=counts.get(AttendanceStatus.CASUAL_LEAVE.value, 0),
                earned_used=counts.get(AttendanceStatus.EARNED_LEAVE.value, 0),
            )
        )

    report = build_utilization_report(year, entries)
    logger.info(
        f"Leave utilisation {year}: {report.total_employees} employees, "
        f"{report.employees_with_negative_balance} over balance, {report.critical_cases} critical"
    )
    return report
