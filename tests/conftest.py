"""
Payroll Engine - Test Configuration

Pytest fixtures and configuration.

Engine tests run against ``FakePayrollRepository``, an in-memory data store
that can be told to fail or stall individual operations.
"""

import asyncio
import uuid
from collections import Counter
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set

import pytest

from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.records import (
    AdvanceRecord,
    AttendanceCorrection,
    AttendanceRow,
    EmployeeRecord,
    FormulaRecord,
    FormulaVariableRecord,
    LeaveBalanceRecord,
    SettingsRecord,
    VariableOverrideRecord,
)
from app.services.payroll_engine.repository import PayrollRepository
from app.utils.error_handling import TransientBackendError


# January 2024: 31 days, 26 working days, Jan 1 is a Monday
JANUARY_2024 = PayrollMonth(2024, 1)


class FakePayrollRepository(PayrollRepository):
    """In-memory repository with failure and latency injection."""

    def __init__(self):
        self.employees: Dict[uuid.UUID, EmployeeRecord] = {}
        self.attendance: List[AttendanceRow] = []
        self.advances: List[AdvanceRecord] = []
        self.leave_balances: List[LeaveBalanceRecord] = []
        self.variables: List[FormulaVariableRecord] = []
        self.overrides: List[VariableOverrideRecord] = []
        self.formulas: List[FormulaRecord] = []
        self.settings_rows: List[SettingsRecord] = []
        self.applied: List[AttendanceCorrection] = []

        self.calls: Counter = Counter()
        self.failing_operations: Set[str] = set()
        self.failing_employees: Set[uuid.UUID] = set()
        self.delays: Dict[str, float] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def _call(self, operation: str, employee_id: Optional[uuid.UUID] = None) -> None:
        self.calls[operation] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(operation, 0))
        finally:
            self.in_flight -= 1
        if operation in self.failing_operations or (
            employee_id is not None and employee_id in self.failing_employees
        ):
            raise TransientBackendError(operation, "connection reset")

    # Seeding helpers

    def add_employee(self, **fields) -> EmployeeRecord:
        fields.setdefault("id", uuid.uuid4())
        fields.setdefault("name", f"Employee {len(self.employees) + 1}")
        employee = EmployeeRecord(**fields)
        self.employees[employee.id] = employee
        return employee

    def add_attendance(
        self,
        employee: EmployeeRecord,
        start: date,
        days: int,
        hours: str = "8",
        overtime: str = "0",
        status: str = "PRESENT",
    ) -> List[AttendanceRow]:
        rows = [
            AttendanceRow(
                id=uuid.uuid4(),
                employee_id=employee.id,
                attendance_date=start + timedelta(days=offset),
                hours_worked=Decimal(hours),
                overtime_hours=Decimal(overtime),
                status=status,
            )
            for offset in range(days)
        ]
        self.attendance.extend(rows)
        return rows

    # PayrollRepository

    async def get_employee(self, employee_id):
        await self._call("get_employee")
        return self.employees.get(employee_id)

    async def list_active_employees(self, unit_id=None):
        await self._call("list_active_employees")
        return [
            employee for employee in self.employees.values()
            if employee.active and (unit_id is None or employee.unit_id == unit_id)
        ]

    async def get_attendance(self, start, end, employee_id=None):
        await self._call("get_attendance", employee_id)
        return [
            row for row in self.attendance
            if start <= row.attendance_date <= end
            and (employee_id is None or row.employee_id == employee_id)
        ]

    async def get_advances(self, employee_id, start, end):
        await self._call("get_advances")
        return [
            advance for advance in self.advances
            if advance.employee_id == employee_id and start <= advance.advance_date <= end
        ]

    async def get_leave_balance(self, employee_id, year):
        await self._call("get_leave_balance")
        for balance in self.leave_balances:
            if balance.employee_id == employee_id and balance.year == year:
                return balance
        return None

    async def list_leave_balances(self, year):
        await self._call("list_leave_balances")
        return [balance for balance in self.leave_balances if balance.year == year]

    async def get_formula_variables(self):
        await self._call("get_formula_variables")
        return [variable for variable in self.variables if variable.active]

    async def get_variable_overrides(self, employee_id, on):
        await self._call("get_variable_overrides")
        return [
            override for override in self.overrides
            if override.employee_id == employee_id and override.is_effective_on(on)
        ]

    async def get_active_formula(self, formula_type):
        await self._call("get_active_formula")
        candidates = [
            formula for formula in self.formulas
            if formula.formula_type == formula_type and formula.active
        ]
        return max(candidates, key=lambda formula: formula.effective_from) if candidates else None

    async def get_settings_rows(self):
        await self._call("get_settings_rows")
        return list(self.settings_rows)

    async def apply_attendance_corrections(self, corrections):
        await self._call("apply_attendance_corrections")
        self.applied.extend(corrections)
        return len(corrections)


@pytest.fixture
def repository() -> FakePayrollRepository:
    return FakePayrollRepository()


@pytest.fixture
def month() -> PayrollMonth:
    return JANUARY_2024
