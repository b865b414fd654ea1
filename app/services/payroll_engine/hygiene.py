"""
Payroll Engine - Attendance Data Hygiene

Explicitly invoked checks for attendance rows that break the status/hours
rules, and the write that fixes them. The payroll calculation never applies
these corrections on its own.

Consistency:
    PRESENT with 0 hours            -> UNPAID_LEAVE
    leave or WEEKLY_OFF with hours  -> PRESENT

Sunday overtime:
    every hour worked on a Sunday is overtime, so a PRESENT Sunday row with
    hours whose overtime_hours differs from hours_worked is corrected to
    overtime_hours = hours_worked.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from app.config import settings
from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.records import (
    LEAVE_STATUSES,
    ZERO,
    AttendanceCorrection,
    AttendanceRow,
    AttendanceStatus,
    EmployeeRecord,
    money,
    to_decimal,
)
from app.services.payroll_engine.repository import PayrollRepository
from app.services.payroll_engine.settings import settings_as_of

logger = logging.getLogger(__name__)

SUNDAY = 6


@dataclass(frozen=True)
class ConsistencyIssue:
    attendance_id: Optional[uuid.UUID]
    employee_id: uuid.UUID
    employee_name: str
    attendance_date: date
    status: str
    hours_worked: Decimal
    suggested_status: AttendanceStatus
    reason: str


@dataclass(frozen=True)
class SundayOvertimeFinding:
    attendance_id: Optional[uuid.UUID]
    employee_id: uuid.UUID
    employee_name: str
    attendance_date: date
    hours_worked: Decimal
    overtime_hours: Decimal
    needs_correction: bool
    overtime_amount: Decimal
    sunday_premium: Decimal


@dataclass(frozen=True)
class AttendanceHygieneReport:
    month: str
    consistency_issues: List[ConsistencyIssue] = field(default_factory=list)
    sunday_findings: List[SundayOvertimeFinding] = field(default_factory=list)

    @property
    def sunday_corrections_needed(self) -> int:
        return sum(1 for finding in self.sunday_findings if finding.needs_correction)

    def corrections(self) -> List[AttendanceCorrection]:
        """One correction per fixable row; rows without an id are skipped."""
        by_row: Dict[uuid.UUID, AttendanceCorrection] = {}
        for issue in self.consistency_issues:
            if issue.attendance_id is None:
                continue
            by_row[issue.attendance_id] = AttendanceCorrection(
                attendance_id=issue.attendance_id,
                status=issue.suggested_status.value,
                reason=issue.reason,
            )
        for finding in self.sunday_findings:
            if not finding.needs_correction or finding.attendance_id is None:
                continue
            existing = by_row.get(finding.attendance_id)
            by_row[finding.attendance_id] = AttendanceCorrection(
                attendance_id=finding.attendance_id,
                status=existing.status if existing else None,
                overtime_hours=finding.hours_worked,
                reason="Sunday hours are overtime",
            )
        return list(by_row.values())


def _status(row: AttendanceRow) -> Optional[AttendanceStatus]:
    try:
        return AttendanceStatus(str(row.status).strip().upper())
    except ValueError:
        return None


def consistency_issue(row: AttendanceRow, employee_name: str) -> Optional[ConsistencyIssue]:
    status = _status(row)
    hours = to_decimal(row.hours_worked)
    if status == AttendanceStatus.PRESENT and hours <= 0:
        suggested = AttendanceStatus.UNPAID_LEAVE
        reason = "PRESENT with 0 hours worked"
    elif (status in LEAVE_STATUSES or status == AttendanceStatus.WEEKLY_OFF) and hours > 0:
        suggested = AttendanceStatus.PRESENT
        reason = f"{status.value} with {hours} hours worked"
    else:
        return None
    return ConsistencyIssue(
        attendance_id=row.id,
        employee_id=row.employee_id,
        employee_name=employee_name,
        attendance_date=row.attendance_date,
        status=str(row.status),
        hours_worked=hours,
        suggested_status=suggested,
        reason=reason,
    )


def sunday_finding(
    row: AttendanceRow,
    employee: Optional[EmployeeRecord],
    sunday_multiplier: Decimal,
    regular_multiplier: Decimal,
) -> Optional[SundayOvertimeFinding]:
    hours = to_decimal(row.hours_worked)
    if row.attendance_date.weekday() != SUNDAY or _status(row) != AttendanceStatus.PRESENT or hours <= 0:
        return None

    overtime = to_decimal(row.overtime_hours)
    base = to_decimal(employee.base_salary) if employee else ZERO
    hourly = base / settings.payroll_overtime_day_divisor / settings.payroll_hours_per_day
    return SundayOvertimeFinding(
        attendance_id=row.id,
        employee_id=row.employee_id,
        employee_name=employee.name if employee else str(row.employee_id),
        attendance_date=row.attendance_date,
        hours_worked=hours,
        overtime_hours=overtime,
        needs_correction=overtime != hours,
        overtime_amount=money(hourly * overtime * regular_multiplier),
        sunday_premium=money(hourly * hours * sunday_multiplier),
    )


class AttendanceHygieneService:

    def __init__(self, repository: PayrollRepository):
        self.repository = repository

    async def _employees(self, rows: List[AttendanceRow]) -> Dict[uuid.UUID, EmployeeRecord]:
        employees = {employee.id: employee for employee in await self.repository.list_active_employees()}
        for employee_id in {row.employee_id for row in rows} - set(employees):
            employee = await self.repository.get_employee(employee_id)
            if employee is not None:
                employees[employee_id] = employee
        return employees

    async def check(self, month: PayrollMonth) -> AttendanceHygieneReport:
        rows = await self.repository.get_attendance(month.start, month.end)
        employees = await self._employees(rows)
        sunday_multiplier = settings_as_of(
            await self.repository.get_settings_rows(), date.today()
        ).sunday_overtime_multiplier
        regular_multiplier = settings.payroll_default_overtime_multiplier

        issues, findings = [], []
        for row in rows:
            employee = employees.get(row.employee_id)
            name = employee.name if employee else str(row.employee_id)
            issue = consistency_issue(row, name)
            if issue is not None:
                issues.append(issue)
            finding = sunday_finding(row, employee, sunday_multiplier, regular_multiplier)
            if finding is not None:
                findings.append(finding)

        report = AttendanceHygieneReport(
            month=str(month),
            consistency_issues=issues,
            sunday_findings=findings,
        )
        logger.info(
            f"Attendance check for {month}: {len(issues)} consistency issues, "
            f"{report.sunday_corrections_needed} Sunday overtime corrections"
        )
        return report

    async def apply(self, month: PayrollMonth) -> int:
        """Re-check the month and write every suggested correction."""
        report = await self.check(month)
        corrections = report.corrections()
        if not corrections:
            return 0
        return await self.repository.apply_attendance_corrections(corrections)
