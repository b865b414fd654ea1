"""
Payroll Engine - Attendance Hygiene Tests

Jan 7 and Jan 14 2024 are Sundays. base_salary 24000 gives an hourly
basic rate of 100.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.services.payroll_engine.hygiene import AttendanceHygieneService
from app.services.payroll_engine.records import AttendanceStatus, SettingsRecord


@pytest.fixture
def service(repository):
    return AttendanceHygieneService(repository)


class TestConsistencyCheck:

    @pytest.mark.asyncio
    async def test_present_without_hours(self, repository, service, month):
        """Test present rows with no hours are flagged as unpaid leave."""
        employee = repository.add_employee(name="Divya")
        [row] = repository.add_attendance(employee, date(2024, 1, 2), 1, hours="0")

        report = await service.check(month)

        [issue] = report.consistency_issues
        assert issue.attendance_id == row.id
        assert issue.employee_name == "Divya"
        assert issue.suggested_status == AttendanceStatus.UNPAID_LEAVE

    @pytest.mark.asyncio
    async def test_leave_with_hours(self, repository, service, month):
        """Test leave rows with hours are flagged as present."""
        employee = repository.add_employee()
        repository.add_attendance(employee, date(2024, 1, 3), 1, hours="4", status="CASUAL_LEAVE")
        repository.add_attendance(employee, date(2024, 1, 4), 1, hours="2", status="WEEKLY_OFF")

        report = await service.check(month)

        assert [issue.suggested_status for issue in report.consistency_issues] == [
            AttendanceStatus.PRESENT,
            AttendanceStatus.PRESENT,
        ]

    @pytest.mark.asyncio
    async def test_clean_rows_report_nothing(self, repository, service, month):
        """Test consistent rows produce no issues."""
        employee = repository.add_employee()
        repository.add_attendance(employee, date(2024, 1, 1), 6)
        repository.add_attendance(employee, date(2024, 1, 8), 1, hours="0", status="EARNED_LEAVE")

        report = await service.check(month)

        assert report.consistency_issues == []
        assert report.corrections() == []

    @pytest.mark.asyncio
    async def test_inactive_employee_named(self, repository, service, month):
        """Test issues for inactive employees still carry a name."""
        employee = repository.add_employee(name="Former", active=False)
        repository.add_attendance(employee, date(2024, 1, 2), 1, hours="0")

        report = await service.check(month)

        assert report.consistency_issues[0].employee_name == "Former"


class TestSundayOvertime:

    @pytest.mark.asyncio
    async def test_sunday_hours_become_overtime(self, repository, service, month):
        """Test Sunday hours not booked as overtime are flagged."""
        employee = repository.add_employee(base_salary=Decimal("24000"))
        [row] = repository.add_attendance(employee, date(2024, 1, 7), 1, hours="8", overtime="0")
        repository.add_attendance(employee, date(2024, 1, 14), 1, hours="6", overtime="6")
        repository.add_attendance(employee, date(2024, 1, 8), 1, hours="8", overtime="0")

        report = await service.check(month)

        assert len(report.sunday_findings) == 2
        assert report.sunday_corrections_needed == 1
        finding = report.sunday_findings[0]
        assert finding.attendance_id == row.id
        assert finding.needs_correction
        assert finding.sunday_premium == Decimal("1600.00")
        assert finding.overtime_amount == Decimal("0.00")

        [correction] = report.corrections()
        assert correction.overtime_hours == Decimal("8")
        assert correction.status is None

    @pytest.mark.asyncio
    async def test_sunday_multiplier_from_settings(self, repository, service, month):
        """Test the Sunday multiplier comes from settings."""
        repository.settings_rows.append(
            SettingsRecord(effective_from=date(2023, 1, 1), sunday_overtime_multiplier=Decimal("2.5"))
        )
        employee = repository.add_employee(base_salary=Decimal("24000"))
        repository.add_attendance(employee, date(2024, 1, 14), 1, hours="8", overtime="8")

        report = await service.check(month)

        assert report.sunday_findings[0].sunday_premium == Decimal("2000.00")
        assert report.sunday_findings[0].overtime_amount == Decimal("1200.00")

    @pytest.mark.asyncio
    async def test_sunday_leave_ignored(self, repository, service, month):
        """Test Sunday leave rows are ignored."""
        employee = repository.add_employee()
        repository.add_attendance(employee, date(2024, 1, 7), 1, hours="0", status="WEEKLY_OFF")

        report = await service.check(month)

        assert report.sunday_findings == []


class TestApplyCorrections:

    @pytest.mark.asyncio
    async def test_apply_writes_every_correction(self, repository, service, month):
        """Test apply writes all suggested corrections."""
        employee = repository.add_employee(base_salary=Decimal("24000"))
        repository.add_attendance(employee, date(2024, 1, 2), 1, hours="0")
        repository.add_attendance(employee, date(2024, 1, 7), 1, hours="8", overtime="0")

        applied = await service.apply(month)

        assert applied == 2
        assert {c.status for c in repository.applied} == {"UNPAID_LEAVE", None}

    @pytest.mark.asyncio
    async def test_nothing_to_apply(self, repository, service, month):
        """Test apply with nothing to correct."""
        assert await service.apply(month) == 0
        assert repository.calls["apply_attendance_corrections"] == 0
