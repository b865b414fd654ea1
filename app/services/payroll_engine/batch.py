"""
Payroll Engine - Batch Orchestrator

Runs the single-employee calculator across a roster:

- the roster is split into fixed-size batches processed strictly in order;
  members of one batch are calculated concurrently
- a short fixed delay between batches bounds load on the data store
- every employee failure is caught and recorded, never aborting the run
- cancellation is cooperative: the token is checked before each batch and
  before each employee starts; work already in flight finishes

Settings, the variable catalog and the overtime formula are read once per
run and shared by every calculation in it.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from app.config import settings
from app.services.payroll_engine.calculator import CalculationResult, PayrollCalculator
from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.records import (
    ZERO,
    EmployeeRecord,
    FormulaRecord,
    FormulaVariableRecord,
    RateSource,
    SettingsRecord,
    money,
)
from app.services.payroll_engine.repository import PayrollRepository
from app.utils.error_handling import AppException, PayrollCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Shared stop flag, safe to set from another thread or a signal handler."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PayrollCancelledError()


@dataclass
class BatchProgress:
    """Live progress of a batch run."""
    total: int
    current_index: int = 0
    current_employee_name: Optional[str] = None
    completed: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.completed) + len(self.failed)


ProgressCallback = Callable[[BatchProgress], None]


@dataclass(frozen=True)
class BatchFailure:
    """Enough detail to retry one employee on its own."""
    employee_id: uuid.UUID
    employee_name: str
    error: str
    error_code: Optional[str] = None


@dataclass(frozen=True)
class BatchSummary:
    total_employees: int
    successful: int
    failed: int
    skipped: int
    rate_source_counts: Dict[str, int]
    average_transparency_score: Decimal
    total_gross_salary: Decimal
    total_deductions: Decimal
    total_net_salary: Decimal


@dataclass(frozen=True)
class BatchResult:
    month: str
    results: List[CalculationResult]
    failures: List[BatchFailure]
    summary: BatchSummary
    cancelled: bool = False


def summarize(
    total: int,
    results: Sequence[CalculationResult],
    failures: Sequence[BatchFailure],
) -> BatchSummary:
    counts = {source.value: 0 for source in RateSource}
    for result in results:
        counts[result.overtime_rate_source.value] += 1

    if results:
        average = Decimal(sum(result.transparency_score for result in results)) / len(results)
    else:
        average = ZERO

    return BatchSummary(
        total_employees=total,
        successful=len(results),
        failed=len(failures),
        skipped=total - len(results) - len(failures),
        rate_source_counts=counts,
        average_transparency_score=money(average),
        total_gross_salary=sum((result.gross_salary for result in results), money(ZERO)),
        total_deductions=sum((result.total_deductions for result in results), money(ZERO)),
        total_net_salary=sum((result.net_salary for result in results), money(ZERO)),
    )


class SnapshotRepository(PayrollRepository):
    """
    Delegating repository that remembers catalog reads for one run.

    Only successful reads are kept, so a failed read still degrades the one
    calculation that made it and is retried by the next.
    """

    def __init__(self, inner: PayrollRepository):
        self.inner = inner
        self._settings: Optional[List[SettingsRecord]] = None
        self._variables: Optional[List[FormulaVariableRecord]] = None
        self._formulas: Dict[str, Optional[FormulaRecord]] = {}
        # Concurrent calculations in one batch wait for the first read
        self._lock = asyncio.Lock()

    async def get_employee(self, employee_id):
        return await self.inner.get_employee(employee_id)

    async def list_active_employees(self, unit_id=None):
        return await self.inner.list_active_employees(unit_id)

    async def get_attendance(self, start, end, employee_id=None):
        return await self.inner.get_attendance(start, end, employee_id=employee_id)

    async def get_advances(self, employee_id, start, end):
        return await self.inner.get_advances(employee_id, start, end)

    async def get_leave_balance(self, employee_id, year):
        return await self.inner.get_leave_balance(employee_id, year)

    async def list_leave_balances(self, year):
        return await self.inner.list_leave_balances(year)

    async def get_variable_overrides(self, employee_id, on):
        return await self.inner.get_variable_overrides(employee_id, on)

    async def apply_attendance_corrections(self, corrections):
        return await self.inner.apply_attendance_corrections(corrections)

    async def get_settings_rows(self):
        async with self._lock:
            if self._settings is None:
                self._settings = await self.inner.get_settings_rows()
        return self._settings

    async def get_formula_variables(self):
        async with self._lock:
            if self._variables is None:
                self._variables = await self.inner.get_formula_variables()
        return self._variables

    async def get_active_formula(self, formula_type):
        async with self._lock:
            if formula_type not in self._formulas:
                self._formulas[formula_type] = await self.inner.get_active_formula(formula_type)
        return self._formulas[formula_type]


class PayrollBatchProcessor:
    """Bounded-concurrency fan-out of ``PayrollCalculator.calculate``."""

    def __init__(
        self,
        repository: PayrollRepository,
        calculator_factory: Callable[[PayrollRepository], PayrollCalculator] = PayrollCalculator,
        batch_size: Optional[int] = None,
        batch_delay_ms: Optional[int] = None,
    ):
        self.repository = repository
        self.calculator_factory = calculator_factory
        self.batch_size = batch_size if batch_size is not None else settings.payroll_batch_size
        self.batch_delay_ms = (
            batch_delay_ms if batch_delay_ms is not None else settings.payroll_batch_delay_ms
        )

    async def calculate_for_unit(
        self,
        month: PayrollMonth,
        unit_id: Optional[uuid.UUID] = None,
        cancellation_token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """Calculate every active employee, optionally limited to one unit."""
        employees = await self.repository.list_active_employees(unit_id)
        logger.info(f"Loaded {len(employees)} active employees for {month} (unit={unit_id})")
        return await self.calculate_batch(
            employees,
            month,
            cancellation_token=cancellation_token,
            progress_callback=progress_callback,
        )

    async def calculate_batch(
        self,
        employees: Sequence[EmployeeRecord],
        month: PayrollMonth,
        batch_size: Optional[int] = None,
        cancellation_token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        if batch_size is None:
            batch_size = self.batch_size
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        token = cancellation_token or CancellationToken()
        calculator = self.calculator_factory(SnapshotRepository(self.repository))

        roster = list(employees)
        progress = BatchProgress(total=len(roster))
        results: List[CalculationResult] = []
        failures: List[BatchFailure] = []

        def report() -> None:
            if progress_callback is not None:
                progress_callback(progress)

        async def run_one(index: int, employee: EmployeeRecord) -> None:
            token.raise_if_cancelled()
            progress.current_index = index
            progress.current_employee_name = employee.name
            report()
            try:
                result = await calculator.calculate(employee.id, month)
            except PayrollCancelledError:
                raise
            except AppException as e:
                self._record_failure(failures, progress, employee, e.message, e.code.value)
            except Exception as e:
                self._record_failure(failures, progress, employee, str(e) or e.__class__.__name__)
            else:
                results.append(result)
                progress.completed.append(employee.name)
            report()

        cancelled = False
        batches = [roster[i:i + batch_size] for i in range(0, len(roster), batch_size)]
        for number, batch in enumerate(batches, start=1):
            if token.is_cancelled:
                cancelled = True
                break

            logger.info(f"Starting batch {number}/{len(batches)} ({len(batch)} employees) for {month}")
            offset = (number - 1) * batch_size
            outcomes = await asyncio.gather(
                *(run_one(offset + i, employee) for i, employee in enumerate(batch)),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException) and not isinstance(outcome, PayrollCancelledError):
                    raise outcome
            if any(isinstance(outcome, PayrollCancelledError) for outcome in outcomes):
                cancelled = True
                break

            if number < len(batches) and self.batch_delay_ms > 0:
                await asyncio.sleep(self.batch_delay_ms / 1000)

        if cancelled:
            logger.warning(
                f"Payroll batch for {month} cancelled after {progress.processed} of {len(roster)} employees"
            )

        summary = summarize(len(roster), results, failures)
        logger.info(
            f"Payroll batch for {month} finished: {summary.successful} succeeded, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return BatchResult(
            month=str(month),
            results=results,
            failures=failures,
            summary=summary,
            cancelled=cancelled,
        )

    @staticmethod
    def _record_failure(
        failures: List[BatchFailure],
        progress: BatchProgress,
        employee: EmployeeRecord,
        message: str,
        code: Optional[str] = None,
    ) -> None:
        logger.error(f"Payroll calculation failed for {employee.name} ({employee.id}): {message}")
        failures.append(
            BatchFailure(
                employee_id=employee.id,
                employee_name=employee.name,
                error=message,
                error_code=code,
            )
        )
        progress.failed.append({"employee_id": str(employee.id), "employee_name": employee.name})
