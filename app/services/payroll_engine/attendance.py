"""
Payroll Engine - Attendance Aggregator

Summarises one employee's attendance rows for a payroll month. Rows are
counted as they are: a PRESENT day with 0 hours does not count as worked,
a leave day with hours does. Fixing such rows is the job of the explicit
hygiene operations in ``hygiene.py``.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.records import (
    ZERO,
    AttendanceRow,
    AttendanceStatus,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceSummary:
    records_count: int
    actual_days_worked: int
    total_hours_worked: Decimal
    total_overtime_hours: Decimal
    casual_leave_days: int
    earned_leave_days: int
    unpaid_leave_days: int
    weekly_off_days: int
    working_days_in_month: int
    warnings: List[str] = field(default_factory=list)

    @property
    def has_attendance(self) -> bool:
        return self.records_count > 0


def _status_of(row: AttendanceRow) -> Optional[AttendanceStatus]:
    try:
        return AttendanceStatus(str(row.status).strip().upper())
    except ValueError:
        return None


class AttendanceAggregator:

    def summarize(self, rows: Iterable[AttendanceRow], month: PayrollMonth) -> AttendanceSummary:
        """Aggregate the rows that fall inside ``month``."""
        records = 0
        days_worked = 0
        hours = ZERO
        overtime = ZERO
        counts = {status: 0 for status in AttendanceStatus}
        warnings = []

        for row in rows:
            if not month.start <= row.attendance_date <= month.end:
                continue
            records += 1

            worked = to_decimal(row.hours_worked)
            if worked > 0:
                days_worked += 1
            hours += worked
            overtime += to_decimal(row.overtime_hours)

            status = _status_of(row)
            if status is None:
                warnings.append(
                    f"Unrecognised attendance status {row.status!r} on {row.attendance_date}"
                )
                continue
            counts[status] += 1

        if warnings:
            logger.warning(f"{len(warnings)} attendance rows with unrecognised status in {month}")

        return AttendanceSummary(
            records_count=records,
            actual_days_worked=days_worked,
            total_hours_worked=hours,
            total_overtime_hours=overtime,
            casual_leave_days=counts[AttendanceStatus.CASUAL_LEAVE],
            earned_leave_days=counts[AttendanceStatus.EARNED_LEAVE],
            unpaid_leave_days=counts[AttendanceStatus.UNPAID_LEAVE],
            weekly_off_days=counts[AttendanceStatus.WEEKLY_OFF],
            working_days_in_month=month.working_days,
            warnings=warnings,
        )
