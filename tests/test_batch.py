"""
Payroll Engine - Batch Orchestrator Tests

Concurrency bounds, failure isolation, cooperative cancellation and the
in-process run registry.
"""

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.services.payroll_engine.batch import CancellationToken, PayrollBatchProcessor
from app.services.payroll_engine.records import (
    OVERTIME_FORMULA_TYPE,
    EmployeeRecord,
    FormulaRecord,
    FormulaVariableRecord,
    RateSource,
    VariableOverrideRecord,
)
from app.services.payroll_engine.runs import BatchRunRegistry, BatchRunStatus
from app.utils.error_handling import BatchRunNotFoundException, PayrollCancelledError


def seed(repository, count, **fields):
    fields.setdefault("base_salary", Decimal("10000"))
    return [repository.add_employee(name=f"Worker {i + 1}", **fields) for i in range(count)]


@pytest.fixture
def processor(repository):
    return PayrollBatchProcessor(repository, batch_size=2, batch_delay_ms=0)


class TestCancellationToken:

    def test_starts_clear(self):
        """Test a new token is not cancelled."""
        token = CancellationToken()

        assert not token.is_cancelled
        token.raise_if_cancelled()

    def test_cancel(self):
        """Test a cancelled token raises on check."""
        token = CancellationToken()
        token.cancel()

        assert token.is_cancelled
        with pytest.raises(PayrollCancelledError):
            token.raise_if_cancelled()


class TestCalculateBatch:

    @pytest.mark.asyncio
    async def test_all_succeed(self, repository, processor, month):
        """Test a clean roster produces one result per employee."""
        employees = seed(repository, 5)

        result = await processor.calculate_batch(employees, month)

        assert not result.cancelled
        assert result.summary.total_employees == 5
        assert result.summary.successful == 5
        assert result.summary.failed == 0
        assert result.summary.skipped == 0
        assert result.summary.rate_source_counts["none"] == 5
        assert result.summary.total_gross_salary == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, repository, processor, month):
        """Test one failing employee does not stop the others."""
        healthy, flaky = seed(repository, 2)
        missing = EmployeeRecord(id=uuid.uuid4(), name="Ghost")
        repository.failing_employees.add(flaky.id)

        result = await processor.calculate_batch([healthy, missing, flaky], month)

        assert [r.employee_id for r in result.results] == [healthy.id]
        assert result.summary.failed == 2
        codes = {failure.employee_name: failure.error_code for failure in result.failures}
        assert codes == {"Ghost": "EMPLOYEE_NOT_FOUND", "Worker 2": "BACKEND_UNAVAILABLE"}

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded(self, repository, month):
        """Test unexpected errors are recorded without a code."""
        class Exploding:
            def __init__(self, repo):
                pass

            async def calculate(self, employee_id, month):
                raise RuntimeError("boom")

        employees = seed(repository, 2)
        processor = PayrollBatchProcessor(repository, calculator_factory=Exploding, batch_size=2, batch_delay_ms=0)

        result = await processor.calculate_batch(employees, month)

        assert result.summary.failed == 2
        assert result.failures[0].error == "boom"
        assert result.failures[0].error_code is None

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_batch_size(self, repository, processor, month):
        """Test no more than batch_size calculations run at once."""
        employees = seed(repository, 5)
        repository.delays["get_employee"] = 0.01

        await processor.calculate_batch(employees, month)

        assert repository.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_catalog_read_once_per_run(self, repository, processor, month):
        """Test settings and variables are read once per run."""
        employees = seed(repository, 4)

        await processor.calculate_batch(employees, month)

        assert repository.calls["get_settings_rows"] == 1
        assert repository.calls["get_formula_variables"] == 1
        assert repository.calls["get_employee"] == 4

    @pytest.mark.asyncio
    async def test_progress_reported(self, repository, processor, month):
        """Test the progress callback sees every employee."""
        employees = seed(repository, 3)
        seen = []

        await processor.calculate_batch(
            employees, month, progress_callback=lambda progress: seen.append(progress.processed)
        )

        assert seen[-1] == 3
        assert max(seen) == 3

    @pytest.mark.asyncio
    async def test_mixed_rate_sources_summarised(self, repository, processor, month):
        """Summary counts every rate source and averages the transparency scores."""
        specific = repository.add_employee(
            name="Specific", base_salary=Decimal("24000"), overtime_rate_per_hour=Decimal("50")
        )
        by_formula = repository.add_employee(name="By formula", base_salary=Decimal("24000"))
        by_default = repository.add_employee(name="By default", base_salary=Decimal("24000"))
        for employee in (specific, by_formula, by_default):
            repository.add_attendance(employee, date(2024, 1, 1), 1, overtime="2")

        # shift_factor has no catalog default, so only the overridden employee can evaluate the formula
        shift_factor = FormulaVariableRecord(id=uuid.uuid4(), name="shift_factor")
        repository.variables.append(shift_factor)
        repository.overrides.append(
            VariableOverrideRecord(
                employee_id=by_formula.id,
                variable_id=shift_factor.id,
                override_value=Decimal("2"),
                effective_from=date(2023, 1, 1),
            )
        )
        repository.formulas.append(
            FormulaRecord(
                id=uuid.uuid4(),
                name="Shift overtime",
                formula_type=OVERTIME_FORMULA_TYPE,
                expression="overtime_hours * base_salary / 30 / 8 * shift_factor",
                effective_from=date(2023, 1, 1),
            )
        )

        result = await processor.calculate_batch([specific, by_formula, by_default], month)

        sources = {r.employee_name: r.overtime_rate_source for r in result.results}
        assert sources == {
            "Specific": RateSource.EMPLOYEE_SPECIFIC,
            "By formula": RateSource.FORMULA_BASED,
            "By default": RateSource.SYSTEM_DEFAULT,
        }
        assert result.summary.rate_source_counts == {
            "employee_specific": 1,
            "formula_based": 1,
            "system_default": 1,
            "none": 0,
        }
        scores = sorted(r.transparency_score for r in result.results)
        assert scores == [50, 80, 90]
        assert result.summary.average_transparency_score == Decimal("73.33")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_size", [0, -1])
    async def test_invalid_batch_size(self, repository, processor, month, batch_size):
        """Batch sizes below one are rejected rather than replaced by the default."""
        with pytest.raises(ValueError):
            await processor.calculate_batch(seed(repository, 1), month, batch_size=batch_size)

    @pytest.mark.asyncio
    async def test_zero_batch_size_from_constructor(self, repository, month):
        """A processor built with batch_size=0 refuses to run."""
        processor = PayrollBatchProcessor(repository, batch_size=0, batch_delay_ms=0)

        with pytest.raises(ValueError):
            await processor.calculate_batch(seed(repository, 1), month)

    @pytest.mark.asyncio
    async def test_calculate_for_unit_filters_roster(self, repository, processor, month):
        """Test the roster is limited to active employees of one unit."""
        unit = uuid.uuid4()
        seed(repository, 2, unit_id=unit)
        seed(repository, 3)
        repository.add_employee(name="Retired", active=False, unit_id=unit)

        result = await processor.calculate_for_unit(month, unit)

        assert result.summary.total_employees == 2


class TestThrottle:
    """Fixed delay between batches."""

    @staticmethod
    def record_sleeps(monkeypatch):
        real_sleep = asyncio.sleep
        delays = []

        async def recording_sleep(delay, *args, **kwargs):
            if delay:
                delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(asyncio, "sleep", recording_sleep)
        return delays

    @pytest.mark.asyncio
    async def test_delay_between_batches_only(self, repository, month, monkeypatch):
        """Three batches sleep twice; nothing follows the last batch."""
        employees = seed(repository, 5)
        processor = PayrollBatchProcessor(repository, batch_size=2, batch_delay_ms=250)
        delays = self.record_sleeps(monkeypatch)

        result = await processor.calculate_batch(employees, month)

        assert result.summary.successful == 5
        assert delays == [0.25, 0.25]

    @pytest.mark.asyncio
    async def test_single_batch_never_waits(self, repository, month, monkeypatch):
        """A roster that fits in one batch is not throttled."""
        employees = seed(repository, 2)
        processor = PayrollBatchProcessor(repository, batch_size=2, batch_delay_ms=250)
        delays = self.record_sleeps(monkeypatch)

        await processor.calculate_batch(employees, month)

        assert delays == []

    @pytest.mark.asyncio
    async def test_zero_delay_disables_throttle(self, repository, processor, month, monkeypatch):
        """With no configured delay batches run back to back."""
        employees = seed(repository, 5)
        delays = self.record_sleeps(monkeypatch)

        await processor.calculate_batch(employees, month)

        assert delays == []


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_between_batches(self, repository, processor, month):
        """Test cancelling after the first batch skips the rest."""
        employees = seed(repository, 6)
        token = CancellationToken()

        def cancel_after_first_batch(progress):
            if progress.processed == 2:
                token.cancel()

        result = await processor.calculate_batch(
            employees, month, cancellation_token=token, progress_callback=cancel_after_first_batch
        )

        assert result.cancelled
        assert result.summary.successful == 2
        assert result.summary.skipped == 4
        assert result.summary.failed == 0

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, repository, processor, month):
        """Test a pre-cancelled token does no work."""
        employees = seed(repository, 3)
        token = CancellationToken()
        token.cancel()

        result = await processor.calculate_batch(employees, month, cancellation_token=token)

        assert result.cancelled
        assert result.results == []
        assert result.summary.skipped == 3
        assert repository.calls["get_employee"] == 0

    @pytest.mark.asyncio
    async def test_in_flight_work_finishes(self, repository, processor, month):
        """Test a started calculation finishes after cancellation."""
        employees = seed(repository, 2)
        token = CancellationToken()

        def cancel_on_first_start(progress):
            if progress.processed == 0:
                token.cancel()

        result = await processor.calculate_batch(
            employees, month, cancellation_token=token, progress_callback=cancel_on_first_start
        )

        assert result.cancelled
        assert [r.employee_name for r in result.results] == ["Worker 1"]
        assert result.summary.skipped == 1


class TestBatchRunRegistry:

    @pytest.mark.asyncio
    async def test_run_completes(self, repository, processor, month):
        """Test a background run completes with its result."""
        seed(repository, 3)
        registry = BatchRunRegistry()

        run = registry.start(processor, month)
        await run.task

        assert registry.get(run.run_id).status == BatchRunStatus.COMPLETED
        assert run.result.summary.successful == 3
        assert run.progress.processed == 3
        assert run.finished_at is not None

    @pytest.mark.asyncio
    async def test_run_limited_to_employee_ids(self, repository, processor, month):
        """Test a run can target selected employees."""
        first, _, third = seed(repository, 3)
        registry = BatchRunRegistry()

        run = registry.start(processor, month, employee_ids=[first.id, third.id])
        await run.task

        assert {r.employee_id for r in run.result.results} == {first.id, third.id}

    @pytest.mark.asyncio
    async def test_cancel_run(self, repository, month):
        """Test cancelling a background run."""
        seed(repository, 6)
        repository.delays["get_employee"] = 0.05
        processor = PayrollBatchProcessor(repository, batch_size=2, batch_delay_ms=0)
        registry = BatchRunRegistry()

        run = registry.start(processor, month)
        await asyncio.sleep(0.01)
        registry.cancel(run.run_id)
        await run.task

        assert run.status == BatchRunStatus.CANCELLED
        assert run.result.summary.successful == 2
        assert run.result.summary.skipped == 4

    @pytest.mark.asyncio
    async def test_roster_failure_marks_run_failed(self, repository, processor, month):
        """Test a failed roster read fails the whole run."""
        repository.failing_operations.add("list_active_employees")
        registry = BatchRunRegistry()

        run = registry.start(processor, month)
        await run.task

        assert run.status == BatchRunStatus.FAILED
        assert "connection reset" in run.error

    def test_unknown_run(self):
        """Test looking up an unknown run raises."""
        with pytest.raises(BatchRunNotFoundException):
            BatchRunRegistry().get(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_expired_runs_evicted_on_next_start(self, repository, processor, month):
        """Finished runs older than the retention window are dropped."""
        seed(repository, 1)
        registry = BatchRunRegistry(retention=timedelta(minutes=5))
        old = registry.start(processor, month)
        await old.task
        old.finished_at = datetime.now(timezone.utc) - timedelta(minutes=10)

        recent = registry.start(processor, month)
        await recent.task

        with pytest.raises(BatchRunNotFoundException):
            registry.get(old.run_id)
        assert registry.get(recent.run_id) is recent

    @pytest.mark.asyncio
    async def test_running_runs_never_evicted(self, repository, month):
        """Retention only applies to finished runs."""
        seed(repository, 2)
        repository.delays["get_employee"] = 0.05
        processor = PayrollBatchProcessor(repository, batch_size=1, batch_delay_ms=0)
        registry = BatchRunRegistry(retention=timedelta(0))

        run = registry.start(processor, month)

        assert registry.evict_expired() == 0
        assert registry.get(run.run_id) is run
        await run.task

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_runs(self, repository, month):
        """Shutdown cancels unfinished runs and returns once they have stopped."""
        seed(repository, 6)
        repository.delays["get_employee"] = 0.05
        processor = PayrollBatchProcessor(repository, batch_size=2, batch_delay_ms=0)
        registry = BatchRunRegistry()

        run = registry.start(processor, month)
        await asyncio.sleep(0.01)
        await registry.shutdown()

        assert run.task.done()
        assert run.status == BatchRunStatus.CANCELLED
        assert repository.in_flight == 0
