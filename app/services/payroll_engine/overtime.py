"""
Payroll Engine - Overtime Rate Resolver

Selects the overtime unit rate by a fixed priority:

1. employee_specific - the employee's own hourly overtime rate (> 0)
2. formula_based     - the overtime formula evaluated cleanly; hourly basic
                       rate (base / 30 / 8) times the formula's
                       ``overtime_multiplier`` (1.5 when it supplies none)
3. system_default    - hourly basic rate times 1.5

Each tier is a strategy object; the resolver walks them in order and the
first one that produces a quote wins. With no overtime hours or no days
present there is nothing to pay and the quote says so.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Mapping, Optional, Sequence

from app.config import settings
from app.services.payroll_engine.formula import FormulaEvaluation
from app.services.payroll_engine.records import (
    ZERO,
    EmployeeRecord,
    RateSource,
    money,
    to_decimal,
)


def format_quantity(value: Decimal) -> str:
    """Render 20.00 as '20' and 7.50 as '7.5'."""
    normalized = to_decimal(value).normalize()
    return format(normalized, "f")


@dataclass(frozen=True)
class OvertimeContext:
    employee: EmployeeRecord
    overtime_hours: Decimal
    days_present: Decimal
    variables: Mapping[str, Decimal]
    formula: Optional[FormulaEvaluation] = None

    @property
    def hourly_basic_rate(self) -> Decimal:
        base = to_decimal(self.employee.base_salary)
        return base / settings.payroll_overtime_day_divisor / settings.payroll_hours_per_day


@dataclass(frozen=True)
class OvertimeQuote:
    amount: Decimal
    rate_source: RateSource
    explanation: str
    hourly_rate: Decimal = ZERO
    multiplier: Decimal = Decimal("1")


NO_OVERTIME = OvertimeQuote(
    amount=money(ZERO),
    rate_source=RateSource.NONE,
    explanation="No overtime",
)


class EmployeeSpecificRate:
    source = RateSource.EMPLOYEE_SPECIFIC

    def quote(self, ctx: OvertimeContext) -> Optional[OvertimeQuote]:
        rate = ctx.employee.overtime_rate_per_hour
        if rate is None or to_decimal(rate) <= 0:
            return None
        rate = to_decimal(rate)
        return OvertimeQuote(
            amount=money(ctx.overtime_hours * rate),
            rate_source=self.source,
            explanation=(
                f"{format_quantity(ctx.overtime_hours)} hours × ₹{format_quantity(rate)}/hour "
                f"(Employee-specific rate)"
            ),
            hourly_rate=rate,
        )


class FormulaBasedRate:
    source = RateSource.FORMULA_BASED

    def quote(self, ctx: OvertimeContext) -> Optional[OvertimeQuote]:
        if ctx.formula is None or not ctx.formula.succeeded:
            return None
        multiplier = to_decimal(ctx.variables.get("overtime_multiplier"))
        if multiplier <= 0:
            multiplier = settings.payroll_default_overtime_multiplier
        hourly = ctx.hourly_basic_rate
        return OvertimeQuote(
            amount=money(ctx.overtime_hours * hourly * multiplier),
            rate_source=self.source,
            explanation=(
                f"{format_quantity(ctx.overtime_hours)} hours × ₹{money(hourly)}/hour × "
                f"{format_quantity(multiplier)} multiplier (Formula-based)"
            ),
            hourly_rate=hourly,
            multiplier=multiplier,
        )


class SystemDefaultRate:
    source = RateSource.SYSTEM_DEFAULT

    def quote(self, ctx: OvertimeContext) -> Optional[OvertimeQuote]:
        multiplier = settings.payroll_default_overtime_multiplier
        hourly = ctx.hourly_basic_rate
        return OvertimeQuote(
            amount=money(ctx.overtime_hours * hourly * multiplier),
            rate_source=self.source,
            explanation=(
                f"{format_quantity(ctx.overtime_hours)} hours × ₹{money(hourly)}/hour × "
                f"{format_quantity(multiplier)} multiplier (System default)"
            ),
            hourly_rate=hourly,
            multiplier=multiplier,
        )


DEFAULT_STRATEGIES = (EmployeeSpecificRate(), FormulaBasedRate(), SystemDefaultRate())


class OvertimeRateResolver:
    """Walks the rate strategies in priority order."""

    def __init__(self, strategies: Sequence = DEFAULT_STRATEGIES):
        self.strategies: List = list(strategies)

    def resolve(self, ctx: OvertimeContext) -> OvertimeQuote:
        if ctx.overtime_hours <= 0 or ctx.days_present <= 0:
            return NO_OVERTIME
        for strategy in self.strategies:
            quote = strategy.quote(ctx)
            if quote is not None:
                return quote
        return NO_OVERTIME
