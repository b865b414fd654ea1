"""
Payroll Engine - Single-Employee Calculator

Composes attendance aggregation, variable resolution, the overtime rate
cascade, statutory deductions and leave reconciliation into one
``CalculationResult`` for an (employee, month).

Pipeline:
    1. Aggregate attendance; days present = override or actual days worked
    2. Pro-rate base / HRA / other by days present over working days
    3. Overtime amount via the rate cascade
    4. Gross = prorated components + overtime
    5. PF (capped), ESI (wage ceiling), advances
    6. Net = gross - deductions
    7. Leave reconciliation, reported alongside (never deducted again)
    8. Breakdown strings and transparency score

A missing employee fails the calculation. So does a failed attendance or
advances read, since pay cannot be stated without them. The formula,
settings, variable catalog and leave balance reads degrade to defaults
with a warning on the result.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Mapping, Optional, TypeVar

from app.config import settings
from app.services.payroll_engine.attendance import AttendanceAggregator, AttendanceSummary
from app.services.payroll_engine.formula import FormulaEvaluation, FormulaEvaluator
from app.services.payroll_engine.leave import LeaveReconciler, ReconciledLeaveData
from app.services.payroll_engine.overtime import (
    OvertimeContext,
    OvertimeQuote,
    OvertimeRateResolver,
    format_quantity,
)
from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.records import (
    ZERO,
    OVERTIME_FORMULA_TYPE,
    EmployeeRecord,
    RateSource,
    money,
    to_decimal,
)
from app.services.payroll_engine.repository import PayrollRepository
from app.services.payroll_engine.settings import PayrollSettings, settings_as_of
from app.services.payroll_engine.variables import (
    ResolvedVariables,
    VariableContext,
    VariableResolver,
)
from app.utils.error_handling import (
    EmployeeNotFoundException,
    TransientBackendError,
    ValidationException,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Transparency score weights
SCORE_BREAKDOWN = 30
SCORE_BY_RATE_SOURCE = {
    RateSource.EMPLOYEE_SPECIFIC: 40,
    RateSource.FORMULA_BASED: 30,
}
SCORE_OTHER_RATE_SOURCE = 10
SCORE_FORMULAS_USED = 20
SCORE_VARIABLES_USED = 10
MAX_SCORE = 100


@dataclass(frozen=True)
class CalculationBreakdown:
    """Human-readable audit trail of one calculation."""
    base_calculation: str
    overtime_calculation: str
    deductions_calculation: str
    formulas_used: List[str] = field(default_factory=list)
    variables_used: Dict[str, Decimal] = field(default_factory=dict)
    formula_result: Optional[Decimal] = None


@dataclass(frozen=True)
class CalculationResult:
    """Pay figures for one employee and month. Created fresh per calculation."""
    employee_id: uuid.UUID
    employee_name: str
    month: str
    working_days_in_month: int
    days_present: Decimal
    actual_days_worked: int

    # Prorated components
    base_salary: Decimal
    hra_amount: Decimal
    other_conv_amount: Decimal

    overtime_hours: Decimal
    overtime_amount: Decimal
    overtime_rate_source: RateSource

    gross_salary: Decimal
    pf_deduction: Decimal
    esi_deduction: Decimal
    esi_exempt: bool
    advances: Decimal
    total_deductions: Decimal
    net_salary: Decimal

    calculation_breakdown: CalculationBreakdown
    attendance_summary: AttendanceSummary
    reconciled_leave_data: Optional[ReconciledLeaveData]
    leave_impact_amount: Decimal
    reconciliation_warning: Optional[str]
    transparency_score: int
    warnings: List[str] = field(default_factory=list)


def transparency_score(breakdown: Optional[CalculationBreakdown], rate_source: RateSource) -> int:
    """Diagnostic 0-100 measure of how rule-driven a calculation was."""
    score = 0
    if breakdown is not None:
        score += SCORE_BREAKDOWN
    score += SCORE_BY_RATE_SOURCE.get(rate_source, SCORE_OTHER_RATE_SOURCE)
    if breakdown is not None and breakdown.formulas_used:
        score += SCORE_FORMULAS_USED
    if breakdown is not None and breakdown.variables_used:
        score += SCORE_VARIABLES_USED
    return min(score, MAX_SCORE)


class PayrollCalculator:
    """
    Single-employee payroll calculation.

    Collaborators are injectable so each stage can be replaced in tests;
    the defaults are the standard cascades.
    """

    def __init__(
        self,
        repository: PayrollRepository,
        evaluator: Optional[FormulaEvaluator] = None,
        variable_resolver: Optional[VariableResolver] = None,
        overtime_resolver: Optional[OvertimeRateResolver] = None,
        aggregator: Optional[AttendanceAggregator] = None,
        reconciler: Optional[LeaveReconciler] = None,
        backend_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.evaluator = evaluator or FormulaEvaluator()
        self.variable_resolver = variable_resolver or VariableResolver()
        self.overtime_resolver = overtime_resolver or OvertimeRateResolver()
        self.aggregator = aggregator or AttendanceAggregator()
        self.reconciler = reconciler or LeaveReconciler()
        self.backend_timeout = (
            backend_timeout if backend_timeout is not None
            else settings.payroll_backend_timeout_seconds
        )

    async def _fetch(self, operation: str, call: Awaitable[T]) -> T:
        """Await one data-store call under the per-call timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self.backend_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Data store call {operation} timed out after {self.backend_timeout}s")
            raise TransientBackendError(
                operation,
                f"timed out after {self.backend_timeout}s",
                original_error=e,
                timed_out=True,
            )

    # ===========================================
    # DEGRADING LOOKUPS
    # ===========================================

    async def _settings(self, on: date, warnings: List[str]) -> PayrollSettings:
        try:
            rows = await self._fetch("get_settings_rows", self.repository.get_settings_rows())
        except TransientBackendError as e:
            logger.warning(f"Using default payroll settings: {e.message}")
            warnings.append("Payroll settings unavailable; default rates used")
            return PayrollSettings.defaults()
        return settings_as_of(rows, on)

    async def _variables(
        self,
        employee: EmployeeRecord,
        month: PayrollMonth,
        context_variables: Mapping[str, Any],
        custom_variables: Mapping[str, Any],
        warnings: List[str],
    ) -> ResolvedVariables:
        catalog, overrides = [], []
        try:
            catalog = await self._fetch(
                "get_formula_variables", self.repository.get_formula_variables()
            )
            overrides = await self._fetch(
                "get_variable_overrides",
                self.repository.get_variable_overrides(employee.id, month.start),
            )
        except TransientBackendError as e:
            logger.warning(f"Formula variables unavailable for {employee.id}: {e.message}")
            warnings.append("Formula variables unavailable; catalog defaults skipped")

        return self.variable_resolver.resolve(
            VariableContext(
                employee=employee,
                on_date=month.start,
                catalog=catalog,
                overrides=overrides,
                context_variables=context_variables,
                custom_variables=custom_variables,
            )
        )

    async def _overtime_formula(
        self,
        variables: ResolvedVariables,
        warnings: List[str],
    ) -> Optional[FormulaEvaluation]:
        try:
            formula = await self._fetch(
                "get_active_formula",
                self.repository.get_active_formula(OVERTIME_FORMULA_TYPE),
            )
        except TransientBackendError as e:
            logger.warning(f"Overtime formula lookup failed, falling back: {e.message}")
            warnings.append("Overtime formula unavailable; system default rate applies")
            return None
        if formula is None:
            return None

        evaluation = self.evaluator.evaluate_detailed(formula.expression, variables.values)
        if not evaluation.succeeded:
            warnings.append(f"Overtime formula '{formula.name}' evaluated to 0: {evaluation.warning}")
        return evaluation

    # ===========================================
    # CALCULATION
    # ===========================================

    async def calculate(
        self,
        employee_id: uuid.UUID,
        month: PayrollMonth,
        days_present: Optional[Any] = None,
        overtime_hours: Optional[Any] = None,
        custom_variables: Optional[Mapping[str, Any]] = None,
    ) -> CalculationResult:
        """Calculate pay for one employee and month."""
        if days_present is not None and to_decimal(days_present, Decimal("-1")) < 0:
            raise ValidationException("days_present must be a non-negative number", field="days_present")
        if overtime_hours is not None and to_decimal(overtime_hours, Decimal("-1")) < 0:
            raise ValidationException("overtime_hours must be a non-negative number", field="overtime_hours")

        warnings: List[str] = []

        employee = await self._fetch("get_employee", self.repository.get_employee(employee_id))
        if employee is None:
            raise EmployeeNotFoundException(employee_id)

        rows = await self._fetch(
            "get_attendance",
            self.repository.get_attendance(month.start, month.end, employee_id=employee.id),
        )
        attendance = self.aggregator.summarize(rows, month)
        warnings.extend(attendance.warnings)

        working_days = attendance.working_days_in_month
        validated_days = (
            to_decimal(days_present) if days_present is not None
            else Decimal(attendance.actual_days_worked)
        )

        # Pro-ration
        base = to_decimal(employee.base_salary)
        hra = to_decimal(employee.hra_amount)
        other = to_decimal(employee.other_conv_amount)
        if validated_days == 0:
            prorated_base = prorated_hra = prorated_other = money(ZERO)
            base_calculation = (
                f"No days present: base ₹{money(base)}, HRA and other allowances set to ₹0.00"
            )
        elif validated_days < working_days:
            factor = validated_days / working_days
            prorated_base = money(base * factor)
            prorated_hra = money(hra * factor)
            prorated_other = money(other * factor)
            base_calculation = (
                f"₹{money(base)} × {format_quantity(validated_days)}/{working_days} days "
                f"= ₹{prorated_base}"
            )
        else:
            prorated_base, prorated_hra, prorated_other = money(base), money(hra), money(other)
            base_calculation = (
                f"₹{prorated_base} (full attendance: "
                f"{format_quantity(validated_days)}/{working_days} days)"
            )

        # Overtime hours: an explicit figure stands in only for a month with no attendance
        total_overtime = attendance.total_overtime_hours
        if overtime_hours is not None and not attendance.has_attendance:
            total_overtime = to_decimal(overtime_hours)

        payroll_settings = await self._settings(date.today(), warnings)

        context_variables = {
            "working_days_per_month": working_days,
            "hours_per_day": settings.payroll_hours_per_day,
            "overtime_hours": total_overtime,
            "days_present": validated_days,
        }
        variables = await self._variables(
            employee, month, context_variables, custom_variables or {}, warnings
        )

        formula = None
        if total_overtime > 0 and validated_days > 0:
            formula = await self._overtime_formula(variables, warnings)

        quote: OvertimeQuote = self.overtime_resolver.resolve(
            OvertimeContext(
                employee=employee,
                overtime_hours=total_overtime,
                days_present=validated_days,
                variables=variables.values,
                formula=formula,
            )
        )

        gross = prorated_base + prorated_hra + prorated_other + quote.amount

        # Deductions
        pf = money(ZERO)
        esi = money(ZERO)
        esi_exempt = gross > payroll_settings.esi_wage_ceiling
        if validated_days > 0:
            pf = min(money(prorated_base * payroll_settings.pf_rate / 100), money(payroll_settings.pf_cap))
            if not esi_exempt:
                esi = money(gross * payroll_settings.esi_rate / 100)

        advance_rows = await self._fetch(
            "get_advances",
            self.repository.get_advances(employee.id, month.start, month.end),
        )
        advances = money(sum((to_decimal(row.advance_amount) for row in advance_rows), ZERO))

        total_deductions = pf + esi + advances
        net = gross - total_deductions

        # Leave reconciliation, reported alongside net pay
        try:
            balance = await self._fetch(
                "get_leave_balance",
                self.repository.get_leave_balance(employee.id, month.year),
            )
        except TransientBackendError as e:
            logger.warning(f"Leave balance unavailable for {employee.id}: {e.message}")
            warnings.append("Leave balance unavailable; leave reconciliation skipped")
            balance = None
        reconciliation = self.reconciler.reconcile(
            casual_taken=attendance.casual_leave_days,
            earned_taken=attendance.earned_leave_days,
            raw_unpaid_days=attendance.unpaid_leave_days,
            balance=balance,
            base_salary=base,
        )

        esi_note = (
            f"ESI exempt (gross ₹{gross} > ₹{money(payroll_settings.esi_wage_ceiling)})"
            if esi_exempt else f"ESI {format_quantity(payroll_settings.esi_rate)}%: ₹{esi}"
        )
        breakdown = CalculationBreakdown(
            base_calculation=base_calculation,
            overtime_calculation=quote.explanation,
            deductions_calculation=(
                f"PF {format_quantity(payroll_settings.pf_rate)}% "
                f"(cap ₹{money(payroll_settings.pf_cap)}): ₹{pf} + {esi_note} + "
                f"Advances: ₹{advances} = ₹{total_deductions}"
            ),
            formulas_used=(
                [OVERTIME_FORMULA_TYPE] if quote.rate_source == RateSource.FORMULA_BASED else []
            ),
            variables_used=dict(variables.values),
            formula_result=formula.value if formula is not None and formula.succeeded else None,
        )

        result = CalculationResult(
            employee_id=employee.id,
            employee_name=employee.name,
            month=str(month),
            working_days_in_month=working_days,
            days_present=validated_days,
            actual_days_worked=attendance.actual_days_worked,
            base_salary=prorated_base,
            hra_amount=prorated_hra,
            other_conv_amount=prorated_other,
            overtime_hours=total_overtime,
            overtime_amount=quote.amount,
            overtime_rate_source=quote.rate_source,
            gross_salary=gross,
            pf_deduction=pf,
            esi_deduction=esi,
            esi_exempt=esi_exempt,
            advances=advances,
            total_deductions=total_deductions,
            net_salary=net,
            calculation_breakdown=breakdown,
            attendance_summary=attendance,
            reconciled_leave_data=reconciliation.reconciled_leave_data,
            leave_impact_amount=reconciliation.leave_impact_amount,
            reconciliation_warning=reconciliation.warning,
            transparency_score=transparency_score(breakdown, quote.rate_source),
            warnings=warnings,
        )

        logger.info(
            f"Calculated payroll for {employee.name} ({employee.id}) {month}: "
            f"gross={gross} net={net} overtime_source={quote.rate_source.value}"
        )
        return result
