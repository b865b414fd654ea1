"""
In-process registry of background batch runs.

Runs live only as long as the process; nothing here is durable. Each run
owns its cancellation token and a live progress record that the HTTP layer
reads while the run is in flight.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Sequence

from app.config import settings
from app.services.payroll_engine.batch import (
    BatchProgress,
    BatchResult,
    CancellationToken,
    PayrollBatchProcessor,
)
from app.services.payroll_engine.periods import PayrollMonth
from app.utils.error_handling import BatchRunNotFoundException

logger = logging.getLogger(__name__)


class BatchRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class BatchRun:
    run_id: uuid.UUID
    month: str
    token: CancellationToken
    progress: BatchProgress
    status: BatchRunStatus = BatchRunStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    result: Optional[BatchResult] = None
    error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.status != BatchRunStatus.RUNNING


class BatchRunRegistry:
    """
    Tracks batch runs started from the HTTP layer.

    Finished runs are kept for the retention window so clients can read
    their results, then dropped when the next run starts.
    """

    def __init__(self, retention: Optional[timedelta] = None):
        self._runs: Dict[uuid.UUID, BatchRun] = {}
        self.retention = (
            retention if retention is not None
            else timedelta(minutes=settings.payroll_batch_run_retention_minutes)
        )

    def get(self, run_id: uuid.UUID) -> BatchRun:
        run = self._runs.get(run_id)
        if run is None:
            raise BatchRunNotFoundException(run_id)
        return run

    def start(
        self,
        processor: PayrollBatchProcessor,
        month: PayrollMonth,
        unit_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> BatchRun:
        """Schedule a batch run on the running event loop and return at once."""
        run = BatchRun(
            run_id=uuid.uuid4(),
            month=str(month),
            token=CancellationToken(),
            progress=BatchProgress(total=0),
        )
        self.evict_expired()
        self._runs[run.run_id] = run
        run.task = asyncio.create_task(self._execute(run, processor, month, unit_id, employee_ids))
        logger.info(f"Started batch run {run.run_id} for {month}")
        return run

    def cancel(self, run_id: uuid.UUID) -> BatchRun:
        run = self.get(run_id)
        if not run.is_finished:
            run.token.cancel()
            logger.info(f"Cancellation requested for batch run {run_id}")
        return run

    def evict_expired(self) -> int:
        cutoff = datetime.now(timezone.utc) - self.retention
        expired = [
            run_id for run_id, run in self._runs.items()
            if run.is_finished and run.finished_at is not None and run.finished_at < cutoff
        ]
        for run_id in expired:
            del self._runs[run_id]
        if expired:
            logger.info(f"Evicted {len(expired)} finished batch runs")
        return len(expired)

    async def shutdown(self) -> None:
        """Cancel unfinished runs and wait for their in-flight work to settle."""
        pending = [run for run in self._runs.values() if not run.is_finished]
        for run in pending:
            run.token.cancel()
        tasks = [run.task for run in pending if run.task is not None]
        if tasks:
            logger.info(f"Waiting for {len(tasks)} batch runs to stop")
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _execute(
        self,
        run: BatchRun,
        processor: PayrollBatchProcessor,
        month: PayrollMonth,
        unit_id: Optional[uuid.UUID],
        employee_ids: Optional[Sequence[uuid.UUID]],
    ) -> None:
        def track(progress: BatchProgress) -> None:
            run.progress = progress

        try:
            if employee_ids:
                wanted = set(employee_ids)
                roster = [
                    employee
                    for employee in await processor.repository.list_active_employees(unit_id)
                    if employee.id in wanted
                ]
                result = await processor.calculate_batch(
                    roster, month, cancellation_token=run.token, progress_callback=track
                )
            else:
                result = await processor.calculate_for_unit(
                    month, unit_id, cancellation_token=run.token, progress_callback=track
                )
        except Exception as e:
            logger.exception(f"Batch run {run.run_id} failed")
            run.status = BatchRunStatus.FAILED
            run.error = str(e)
        else:
            run.result = result
            run.status = BatchRunStatus.CANCELLED if result.cancelled else BatchRunStatus.COMPLETED
        finally:
            run.finished_at = datetime.now(timezone.utc)
