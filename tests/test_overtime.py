"""
Payroll Engine - Overtime Rate Resolver Tests

base_salary 24000 gives an hourly basic rate of 24000 / 30 / 8 = 100.
"""

import uuid
from decimal import Decimal

import pytest

from app.services.payroll_engine.formula import FormulaEvaluation
from app.services.payroll_engine.overtime import (
    NO_OVERTIME,
    FormulaBasedRate,
    OvertimeContext,
    OvertimeRateResolver,
    SystemDefaultRate,
)
from app.services.payroll_engine.records import EmployeeRecord, RateSource


def employee(rate=None):
    return EmployeeRecord(
        id=uuid.uuid4(),
        name="Ravi",
        base_salary=Decimal("24000"),
        overtime_rate_per_hour=Decimal(rate) if rate is not None else None,
    )


def formula(warning=None):
    return FormulaEvaluation(
        value=Decimal("0") if warning else Decimal("2000.00"),
        expression="overtime_hours * base_salary / 30 / 8 * overtime_multiplier",
        substituted_expression="10 * 24000 / 30 / 8 * 2",
        warning=warning,
    )


def context(emp, hours="10", days="20", variables=None, evaluation=None):
    return OvertimeContext(
        employee=emp,
        overtime_hours=Decimal(hours),
        days_present=Decimal(days),
        variables=variables or {},
        formula=evaluation,
    )


class TestRatePriority:

    def test_employee_specific_rate_always_wins(self):
        """Test the employee rate beats any formula."""
        quote = OvertimeRateResolver().resolve(
            context(employee("50"), hours="20", variables={"overtime_multiplier": Decimal("2")},
                    evaluation=formula())
        )

        assert quote.rate_source == RateSource.EMPLOYEE_SPECIFIC
        assert quote.amount == Decimal("1000.00")
        assert quote.explanation == "20 hours × ₹50/hour (Employee-specific rate)"

    def test_zero_employee_rate_falls_through(self):
        """Test a zero employee rate is skipped."""
        quote = OvertimeRateResolver().resolve(context(employee("0")))

        assert quote.rate_source == RateSource.SYSTEM_DEFAULT

    def test_formula_based_uses_formula_multiplier(self):
        """Test the formula tier uses the resolved multiplier."""
        quote = OvertimeRateResolver().resolve(
            context(employee(), variables={"overtime_multiplier": Decimal("2")}, evaluation=formula())
        )

        assert quote.rate_source == RateSource.FORMULA_BASED
        assert quote.amount == Decimal("2000.00")
        assert quote.multiplier == Decimal("2")
        assert "(Formula-based)" in quote.explanation

    def test_formula_based_default_multiplier(self):
        """Test the formula tier falls back to 1.5."""
        quote = OvertimeRateResolver().resolve(context(employee(), evaluation=formula()))

        assert quote.rate_source == RateSource.FORMULA_BASED
        assert quote.amount == Decimal("1500.00")

    def test_failed_formula_falls_back_to_system_default(self):
        """Test a failed formula drops to the system default."""
        quote = OvertimeRateResolver().resolve(
            context(employee(), evaluation=formula(warning="Invalid characters in formula expression"))
        )

        assert quote.rate_source == RateSource.SYSTEM_DEFAULT
        assert quote.amount == Decimal("1500.00")
        assert quote.explanation == "10 hours × ₹100.00/hour × 1.5 multiplier (System default)"

    def test_no_formula_uses_system_default(self):
        """Test the system default without a formula."""
        quote = OvertimeRateResolver().resolve(context(employee()))

        assert quote.rate_source == RateSource.SYSTEM_DEFAULT
        assert quote.amount == Decimal("1500.00")


class TestNoOvertime:

    def test_zero_hours(self):
        """Test zero hours means no overtime."""
        assert OvertimeRateResolver().resolve(context(employee("50"), hours="0")) is NO_OVERTIME

    def test_zero_days_present(self):
        """Test zero days present means no overtime."""
        quote = OvertimeRateResolver().resolve(context(employee("50"), days="0"))

        assert quote.amount == Decimal("0")
        assert quote.rate_source == RateSource.NONE
        assert quote.explanation == "No overtime"


class TestCustomChain:

    def test_strategies_tried_in_given_order(self):
        """Test strategies run in the order given."""
        resolver = OvertimeRateResolver(strategies=[SystemDefaultRate(), FormulaBasedRate()])
        quote = resolver.resolve(context(employee(), evaluation=formula()))

        assert quote.rate_source == RateSource.SYSTEM_DEFAULT

    def test_empty_chain_means_no_overtime(self):
        """Test an empty strategy chain."""
        assert OvertimeRateResolver(strategies=[]).resolve(context(employee())) is NO_OVERTIME
