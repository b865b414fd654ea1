"""
Run Payroll for a Month
=======================
Calculates payroll for every active employee (optionally one unit) and
prints the batch summary and any failures. Ctrl+C stops the run before its
next batch; results calculated so far are still reported.

Usage:
    python scripts/run_payroll.py --month 2024-01 [--unit UUID] [--batch-size 10]
    python scripts/run_payroll.py --month 2024-01 --check-attendance

Options:
    --month YYYY-MM       Payroll month (required)
    --unit UUID           Only employees of this unit
    --batch-size N        Employees calculated concurrently per batch
    --check-attendance    Print the attendance consistency report instead
"""

import argparse
import asyncio
import signal
import sys
import uuid

# Add project root to path
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.database import async_session_maker, close_db
from app.services.payroll_engine.batch import (
    BatchProgress,
    BatchResult,
    CancellationToken,
    PayrollBatchProcessor,
)
from app.services.payroll_engine.hygiene import AttendanceHygieneReport, AttendanceHygieneService
from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.repository import SQLAlchemyPayrollRepository
from app.utils.error_handling import AppException


def print_progress(progress: BatchProgress) -> None:
    print(
        f"\r  [{progress.processed}/{progress.total}] {progress.current_employee_name or ''}".ljust(60),
        end="",
        flush=True,
    )


def print_batch(result: BatchResult) -> None:
    summary = result.summary
    print()
    print("=" * 60)
    print(f"PAYROLL {result.month}{' (CANCELLED)' if result.cancelled else ''}")
    print("=" * 60)
    print(f"  Employees:        {summary.total_employees}")
    print(f"  Successful:       {summary.successful}")
    print(f"  Failed:           {summary.failed}")
    print(f"  Skipped:          {summary.skipped}")
    print(f"  Gross total:      {summary.total_gross_salary:,.2f}")
    print(f"  Deductions total: {summary.total_deductions:,.2f}")
    print(f"  Net total:        {summary.total_net_salary:,.2f}")
    print(f"  Avg transparency: {summary.average_transparency_score}")
    print("  Overtime rate sources:")
    for source, count in summary.rate_source_counts.items():
        print(f"    {source:<18} {count}")

    if result.failures:
        print("\nFailures:")
        for failure in result.failures:
            print(f"  {failure.employee_name} ({failure.employee_id}): {failure.error}")


def print_attendance(report: AttendanceHygieneReport) -> None:
    print(f"\nATTENDANCE CHECK {report.month}")
    print("-" * 60)
    for issue in report.consistency_issues:
        print(
            f"  {issue.attendance_date} {issue.employee_name}: {issue.reason} "
            f"-> {issue.suggested_status.value}"
        )
    for finding in report.sunday_findings:
        if finding.needs_correction:
            print(
                f"  {finding.attendance_date} {finding.employee_name}: Sunday overtime "
                f"{finding.overtime_hours}h -> {finding.hours_worked}h "
                f"(premium {finding.sunday_premium})"
            )
    print(
        f"\n  {len(report.consistency_issues)} consistency issues, "
        f"{report.sunday_corrections_needed} Sunday overtime corrections"
    )


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run payroll for a month")
    parser.add_argument("--month", required=True, help="Payroll month, YYYY-MM")
    parser.add_argument("--unit", type=uuid.UUID, help="Only employees of this unit")
    parser.add_argument("--batch-size", type=int, help="Employees per concurrent batch")
    parser.add_argument("--check-attendance", action="store_true", help="Print attendance issues instead")
    args = parser.parse_args()

    try:
        month = PayrollMonth.parse(args.month)
    except AppException as e:
        print(e.message, file=sys.stderr)
        return 2

    repository = SQLAlchemyPayrollRepository(async_session_maker)
    try:
        if args.check_attendance:
            print_attendance(await AttendanceHygieneService(repository).check(month))
            return 0

        token = CancellationToken()
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel)

        processor = PayrollBatchProcessor(repository, batch_size=args.batch_size)
        result = await processor.calculate_for_unit(
            month,
            unit_id=args.unit,
            cancellation_token=token,
            progress_callback=print_progress,
        )
        print_batch(result)
        return 1 if result.failures else 0
    except AppException as e:
        print(f"\nError: {e.message}", file=sys.stderr)
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
