"""
Payroll Engine - Data Store Access

``PayrollRepository`` is everything the engine asks of the data store:
filtered reads by equality and date range, plus the one write used by the
attendance hygiene operation. ``SQLAlchemyPayrollRepository`` serves it
from the application database.

Each call opens its own short-lived session so concurrent calculations in a
batch never share one.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.payroll import (
    Advance,
    AttendanceRecord,
    Employee,
    EmployeeVariableOverride,
    FormulaVariable,
    LeaveBalance,
    PayrollFormula,
    PayrollSettingsRow,
)
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
    to_decimal,
)
from app.utils.error_handling import TransientBackendError

logger = logging.getLogger(__name__)


class PayrollRepository(ABC):
    """Read (and narrowly write) access the payroll engine needs."""

    @abstractmethod
    async def get_employee(self, employee_id: uuid.UUID) -> Optional[EmployeeRecord]:
        ...

    @abstractmethod
    async def list_active_employees(self, unit_id: Optional[uuid.UUID] = None) -> List[EmployeeRecord]:
        ...

    @abstractmethod
    async def get_attendance(
        self,
        start: date,
        end: date,
        employee_id: Optional[uuid.UUID] = None,
    ) -> List[AttendanceRow]:
        """Attendance rows with ``start <= attendance_date <= end``."""

    @abstractmethod
    async def get_advances(self, employee_id: uuid.UUID, start: date, end: date) -> List[AdvanceRecord]:
        ...

    @abstractmethod
    async def get_leave_balance(self, employee_id: uuid.UUID, year: int) -> Optional[LeaveBalanceRecord]:
        ...

    @abstractmethod
    async def list_leave_balances(self, year: int) -> List[LeaveBalanceRecord]:
        ...

    @abstractmethod
    async def get_formula_variables(self) -> List[FormulaVariableRecord]:
        """Active catalog variables."""

    @abstractmethod
    async def get_variable_overrides(self, employee_id: uuid.UUID, on: date) -> List[VariableOverrideRecord]:
        """Overrides for the employee whose window contains ``on``."""

    @abstractmethod
    async def get_active_formula(self, formula_type: str) -> Optional[FormulaRecord]:
        """Latest active formula of the type, by ``effective_from``."""

    @abstractmethod
    async def get_settings_rows(self) -> List[SettingsRecord]:
        ...

    @abstractmethod
    async def apply_attendance_corrections(self, corrections: Sequence[AttendanceCorrection]) -> int:
        """Write corrections; returns the number of rows updated."""


# ===========================================
# ROW MAPPING
# ===========================================

def employee_record(row: Employee) -> EmployeeRecord:
    return EmployeeRecord(
        id=row.id,
        name=row.name,
        base_salary=to_decimal(row.base_salary),
        hra_amount=to_decimal(row.hra_amount),
        other_conv_amount=to_decimal(row.other_conv_amount),
        overtime_rate_per_hour=(
            to_decimal(row.overtime_rate_per_hour) if row.overtime_rate_per_hour is not None else None
        ),
        active=row.active,
        unit_id=row.unit_id,
        employee_code=row.employee_code,
    )


def attendance_row(row: AttendanceRecord) -> AttendanceRow:
    return AttendanceRow(
        id=row.id,
        employee_id=row.employee_id,
        attendance_date=row.attendance_date,
        hours_worked=to_decimal(row.hours_worked),
        overtime_hours=to_decimal(row.overtime_hours),
        status=row.status,
    )


def leave_balance_record(row: LeaveBalance) -> LeaveBalanceRecord:
    return LeaveBalanceRecord(
        employee_id=row.employee_id,
        year=row.year,
        casual_leave_balance=to_decimal(row.casual_leave_balance),
        earned_leave_balance=to_decimal(row.earned_leave_balance),
    )


class SQLAlchemyPayrollRepository(PayrollRepository):
    """Repository backed by the application database."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Data store call {operation} failed: {e}")
            raise TransientBackendError(operation, str(e), original_error=e)

    async def get_employee(self, employee_id: uuid.UUID) -> Optional[EmployeeRecord]:
        async with self._session("get_employee") as session:
            row = await session.get(Employee, employee_id)
            return employee_record(row) if row else None

    async def list_active_employees(self, unit_id: Optional[uuid.UUID] = None) -> List[EmployeeRecord]:
        query = select(Employee).where(Employee.active.is_(True))
        if unit_id:
            query = query.where(Employee.unit_id == unit_id)
        query = query.order_by(Employee.name)

        async with self._session("list_active_employees") as session:
            result = await session.execute(query)
            return [employee_record(row) for row in result.scalars().all()]

    async def get_attendance(
        self,
        start: date,
        end: date,
        employee_id: Optional[uuid.UUID] = None,
    ) -> List[AttendanceRow]:
        query = select(AttendanceRecord).where(
            and_(
                AttendanceRecord.attendance_date >= start,
                AttendanceRecord.attendance_date <= end,
            )
        )
        if employee_id:
            query = query.where(AttendanceRecord.employee_id == employee_id)
        query = query.order_by(AttendanceRecord.employee_id, AttendanceRecord.attendance_date)

        async with self._session("get_attendance") as session:
            result = await session.execute(query)
            return [attendance_row(row) for row in result.scalars().all()]

    async def get_advances(self, employee_id: uuid.UUID, start: date, end: date) -> List[AdvanceRecord]:
        query = select(Advance).where(
            and_(
                Advance.employee_id == employee_id,
                Advance.advance_date >= start,
                Advance.advance_date <= end,
            )
        )
        async with self._session("get_advances") as session:
            result = await session.execute(query)
            return [
                AdvanceRecord(
                    employee_id=row.employee_id,
                    advance_date=row.advance_date,
                    advance_amount=to_decimal(row.advance_amount),
                )
                for row in result.scalars().all()
            ]

    async def get_leave_balance(self, employee_id: uuid.UUID, year: int) -> Optional[LeaveBalanceRecord]:
        query = select(LeaveBalance).where(
            and_(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
        )
        async with self._session("get_leave_balance") as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
            return leave_balance_record(row) if row else None

    async def list_leave_balances(self, year: int) -> List[LeaveBalanceRecord]:
        async with self._session("list_leave_balances") as session:
            result = await session.execute(select(LeaveBalance).where(LeaveBalance.year == year))
            return [leave_balance_record(row) for row in result.scalars().all()]

    async def get_formula_variables(self) -> List[FormulaVariableRecord]:
        query = select(FormulaVariable).where(FormulaVariable.active.is_(True))
        async with self._session("get_formula_variables") as session:
            result = await session.execute(query)
            return [
                FormulaVariableRecord(
                    id=row.id,
                    name=row.name,
                    variable_type=row.variable_type,
                    default_value=(
                        to_decimal(row.default_value) if row.default_value is not None else None
                    ),
                    active=row.active,
                )
                for row in result.scalars().all()
            ]

    async def get_variable_overrides(self, employee_id: uuid.UUID, on: date) -> List[VariableOverrideRecord]:
        query = select(EmployeeVariableOverride).where(
            and_(
                EmployeeVariableOverride.employee_id == employee_id,
                EmployeeVariableOverride.effective_from <= on,
                or_(
                    EmployeeVariableOverride.effective_to.is_(None),
                    EmployeeVariableOverride.effective_to >= on,
                ),
            )
        )
        async with self._session("get_variable_overrides") as session:
            result = await session.execute(query)
            return [
                VariableOverrideRecord(
                    employee_id=row.employee_id,
                    variable_id=row.variable_id,
                    override_value=to_decimal(row.override_value),
                    effective_from=row.effective_from,
                    effective_to=row.effective_to,
                )
                for row in result.scalars().all()
            ]

    async def get_active_formula(self, formula_type: str) -> Optional[FormulaRecord]:
        query = (
            select(PayrollFormula)
            .where(
                and_(
                    PayrollFormula.formula_type == formula_type,
                    PayrollFormula.active.is_(True),
                )
            )
            .order_by(PayrollFormula.effective_from.desc())
            .limit(1)
        )
        async with self._session("get_active_formula") as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return FormulaRecord(
                id=row.id,
                name=row.name,
                formula_type=row.formula_type,
                expression=row.expression,
                effective_from=row.effective_from,
                active=row.active,
            )

    async def get_settings_rows(self) -> List[SettingsRecord]:
        query = select(PayrollSettingsRow).order_by(PayrollSettingsRow.effective_from)
        async with self._session("get_settings_rows") as session:
            result = await session.execute(query)
            return [
                SettingsRecord(
                    effective_from=row.effective_from,
                    pf_rate=row.pf_rate,
                    esi_rate=row.esi_rate,
                    sunday_overtime_multiplier=row.sunday_overtime_multiplier,
                )
                for row in result.scalars().all()
            ]

    async def apply_attendance_corrections(self, corrections: Sequence[AttendanceCorrection]) -> int:
        updated = 0
        async with self._session("apply_attendance_corrections") as session:
            for correction in corrections:
                values = {}
                if correction.status is not None:
                    values["status"] = correction.status
                if correction.overtime_hours is not None:
                    values["overtime_hours"] = correction.overtime_hours
                if not values:
                    continue
                result = await session.execute(
                    update(AttendanceRecord)
                    .where(AttendanceRecord.id == correction.attendance_id)
                    .values(**values)
                )
                updated += result.rowcount or 0
            await session.commit()
        logger.info(f"Applied {updated} attendance corrections")
        return updated
