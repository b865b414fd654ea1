"""
Payroll Engine - Leave Reconciliation & Utilisation Tests

base_salary 26000 gives a daily leave rate of 26000 / 26 = 1000.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from app.services.payroll_engine.leave import (
    NO_BALANCE_WARNING,
    LeaveReconciler,
    RiskLevel,
    assess_leave_utilization,
    build_utilization_report,
    leave_utilization_report,
    risk_level_for,
)
from app.services.payroll_engine.records import EmployeeRecord, LeaveBalanceRecord


BASE = Decimal("26000")


def balance(casual, earned, employee_id=None, year=2024):
    return LeaveBalanceRecord(
        employee_id=employee_id or uuid.uuid4(),
        year=year,
        casual_leave_balance=Decimal(casual),
        earned_leave_balance=Decimal(earned),
    )


class TestLeaveReconciler:

    def test_excess_leave_becomes_unpaid(self):
        """Test leave beyond the balance is reclassified as unpaid."""
        result = LeaveReconciler().reconcile(
            casual_taken=10, earned_taken=0, raw_unpaid_days=1,
            balance=balance("8", "0"), base_salary=BASE,
        )
        data = result.reconciled_leave_data

        assert data.total_leave_taken == 10
        assert data.total_leave_available == Decimal("8")
        assert data.excess_leave_days == Decimal("2")
        assert data.unpaid_leave_days == Decimal("3")
        assert result.leave_impact_amount == Decimal("3000.00")
        assert result.warning is None

    def test_within_balance(self):
        """Test leave within the balance has no impact."""
        result = LeaveReconciler().reconcile(
            casual_taken=2, earned_taken=1, raw_unpaid_days=0,
            balance=balance("5", "5"), base_salary=BASE,
        )

        assert result.reconciled_leave_data.excess_leave_days == Decimal("0")
        assert result.leave_impact_amount == Decimal("0")

    def test_raw_unpaid_only(self):
        """Test impact from recorded unpaid leave alone."""
        result = LeaveReconciler().reconcile(
            casual_taken=0, earned_taken=0, raw_unpaid_days=2,
            balance=balance("0", "0"), base_salary=Decimal("20000"),
        )

        assert result.leave_impact_amount == Decimal("1538.46")

    def test_missing_balance_skips_reconciliation(self):
        """Test reconciliation is skipped without a balance."""
        result = LeaveReconciler().reconcile(
            casual_taken=3, earned_taken=0, raw_unpaid_days=1, balance=None, base_salary=BASE,
        )

        assert result.reconciled_leave_data is None
        assert result.leave_impact_amount == Decimal("0")
        assert result.warning == NO_BALANCE_WARNING

    def test_negative_balance_counts_against_leave_taken(self):
        """An overdrawn balance reduces what is available this month."""
        result = LeaveReconciler().reconcile(
            casual_taken=4, earned_taken=0, raw_unpaid_days=0,
            balance=balance("-2", "5"), base_salary=BASE,
        )
        data = result.reconciled_leave_data

        assert data.total_leave_available == Decimal("3")
        assert data.excess_leave_days == Decimal("1")
        assert data.unpaid_leave_days == Decimal("1")
        assert result.leave_impact_amount == Decimal("1000.00")
        assert result.warning == "Negative leave balance counted against leave taken"

    def test_wholly_negative_balance(self):
        """With nothing available every day taken is excess, plus the overdraft."""
        result = LeaveReconciler().reconcile(
            casual_taken=1, earned_taken=0, raw_unpaid_days=0,
            balance=balance("-2", "0"), base_salary=BASE,
        )

        assert result.reconciled_leave_data.total_leave_available == Decimal("-2")
        assert result.reconciled_leave_data.excess_leave_days == Decimal("3")
        assert result.leave_impact_amount == Decimal("3000.00")


class TestLeaveUtilization:

    @pytest.mark.parametrize(
        "over, level",
        [("0", RiskLevel.LOW), ("1", RiskLevel.MEDIUM), ("3", RiskLevel.HIGH), ("5", RiskLevel.CRITICAL)],
    )
    def test_risk_levels(self, over, level):
        """Test risk levels by over-utilised days."""
        assert risk_level_for(Decimal(over)) == level

    def test_assessment(self):
        """Test one employee's utilisation entry."""
        emp = EmployeeRecord(id=uuid.uuid4(), name="Meena")
        entry = assess_leave_utilization(emp, balance("4", "2", emp.id), casual_used=7, earned_used=1)

        assert entry.over_utilized_casual == Decimal("3")
        assert entry.over_utilized_earned == Decimal("0")
        assert entry.has_negative_balance
        assert entry.risk_level == RiskLevel.HIGH

    def test_report_sorted_by_risk(self):
        """Test the report orders entries by risk."""
        low = assess_leave_utilization(
            EmployeeRecord(id=uuid.uuid4(), name="Low"), balance("5", "5"), 1, 1
        )
        critical = assess_leave_utilization(
            EmployeeRecord(id=uuid.uuid4(), name="Critical"), balance("0", "0"), 4, 2
        )
        medium = assess_leave_utilization(
            EmployeeRecord(id=uuid.uuid4(), name="Medium"), balance("1", "0"), 2, 0
        )
        report = build_utilization_report(2024, [low, critical, medium])

        assert [entry.employee_name for entry in report.entries] == ["Critical", "Medium", "Low"]
        assert report.total_employees == 3
        assert report.employees_with_negative_balance == 2
        assert report.total_over_utilization == Decimal("7")
        assert report.critical_cases == 1

    @pytest.mark.asyncio
    async def test_report_from_repository(self, repository):
        """Test building the report from stored data."""
        emp = repository.add_employee(name="Kiran")
        other = repository.add_employee(name="No Balance")
        repository.leave_balances.append(balance("1", "0", emp.id))
        repository.add_attendance(emp, date(2024, 3, 4), 3, hours="0", status="CASUAL_LEAVE")
        repository.add_attendance(emp, date(2023, 12, 1), 5, hours="0", status="CASUAL_LEAVE")
        repository.add_attendance(other, date(2024, 3, 4), 2, hours="0", status="EARNED_LEAVE")

        report = await leave_utilization_report(repository, 2024)

        assert report.total_employees == 1
        entry = report.entries[0]
        assert entry.employee_name == "Kiran"
        assert entry.casual_leave_used == 3
        assert entry.over_utilized_casual == Decimal("2")
        assert entry.risk_level == RiskLevel.MEDIUM
