"""
Payroll Engine - Payroll Router

API endpoints for payroll calculation, batch runs, formula validation
and attendance data hygiene.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from app.dependencies import (
    get_batch_processor,
    get_batch_registry,
    get_payroll_calculator,
    get_payroll_repository,
)
from app.schemas.payroll import (
    AttendanceCorrectionsApplied,
    AttendanceHygieneResponse,
    BatchFailureResponse,
    BatchProgressResponse,
    BatchRunCreate,
    BatchRunResponse,
    BatchSummaryResponse,
    CalculationResultResponse,
    FormulaValidationRequest,
    FormulaValidationResponse,
    LeaveUtilizationResponse,
    MONTH_PATTERN,
    PayrollCalculationRequest,
)
from app.services.payroll_engine.batch import PayrollBatchProcessor
from app.services.payroll_engine.calculator import PayrollCalculator
from app.services.payroll_engine.formula import validate_formula
from app.services.payroll_engine.hygiene import AttendanceHygieneService
from app.services.payroll_engine.leave import leave_utilization_report
from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.repository import PayrollRepository
from app.services.payroll_engine.runs import BatchRun, BatchRunRegistry


router = APIRouter()


def _run_response(run: BatchRun) -> BatchRunResponse:
    progress = run.progress
    response = BatchRunResponse(
        run_id=run.run_id,
        month=run.month,
        status=run.status,
        started_at=run.started_at,
        finished_at=run.finished_at,
        progress=BatchProgressResponse(
            total=progress.total,
            processed=progress.processed,
            current_index=progress.current_index,
            current_employee_name=progress.current_employee_name,
            completed=list(progress.completed),
            failed=list(progress.failed),
        ),
        error=run.error,
    )
    if run.result is not None:
        response.cancelled = run.result.cancelled
        response.summary = BatchSummaryResponse.model_validate(run.result.summary)
        response.results = [
            CalculationResultResponse.model_validate(result) for result in run.result.results
        ]
        response.failures = [
            BatchFailureResponse.model_validate(failure) for failure in run.result.failures
        ]
    return response


# ===========================================
# CALCULATION ENDPOINTS
# ===========================================

@router.post(
    "/calculate",
    response_model=CalculationResultResponse,
    summary="Calculate one employee's payroll",
    description="Pro-rated pay, overtime, statutory deductions, advances and leave reconciliation "
                "for one employee and month, with the calculation breakdown.",
)
async def calculate_payroll(
    data: PayrollCalculationRequest,
    calculator: PayrollCalculator = Depends(get_payroll_calculator),
):
    """Calculate payroll for a single employee."""
    result = await calculator.calculate(
        data.employee_id,
        PayrollMonth.parse(data.month),
        days_present=data.days_present,
        overtime_hours=data.overtime_hours,
        custom_variables=data.custom_variables,
    )
    return CalculationResultResponse.model_validate(result)


@router.post(
    "/batches",
    response_model=BatchRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a batch payroll run",
    description="Calculates every active employee (optionally one unit, or listed employees) "
                "in the background. Poll the run for progress.",
)
async def start_batch_run(
    data: BatchRunCreate,
    processor: PayrollBatchProcessor = Depends(get_batch_processor),
    registry: BatchRunRegistry = Depends(get_batch_registry),
):
    """Start a background batch run."""
    run = registry.start(
        processor,
        PayrollMonth.parse(data.month),
        unit_id=data.unit_id,
        employee_ids=data.employee_ids,
    )
    return _run_response(run)


@router.get(
    "/batches/{run_id}",
    response_model=BatchRunResponse,
    summary="Get batch run",
    description="Live progress; once finished, the summary, results and failures.",
)
async def get_batch_run(
    run_id: uuid.UUID = Path(..., description="Batch run ID"),
    registry: BatchRunRegistry = Depends(get_batch_registry),
):
    return _run_response(registry.get(run_id))


@router.post(
    "/batches/{run_id}/cancel",
    response_model=BatchRunResponse,
    summary="Cancel batch run",
    description="Stops the run before its next batch or employee; work in flight finishes.",
)
async def cancel_batch_run(
    run_id: uuid.UUID = Path(..., description="Batch run ID"),
    registry: BatchRunRegistry = Depends(get_batch_registry),
):
    return _run_response(registry.cancel(run_id))


# ===========================================
# FORMULA ENDPOINTS
# ===========================================

@router.post(
    "/formulas/validate",
    response_model=FormulaValidationResponse,
    summary="Validate a payroll formula",
    description="Dry-runs the expression against test values and checks the result range.",
)
async def validate_payroll_formula(data: FormulaValidationRequest):
    result = validate_formula(data.expression, data.formula_type, data.test_variables)
    return FormulaValidationResponse.model_validate(result)


# ===========================================
# ATTENDANCE & LEAVE ENDPOINTS
# ===========================================

@router.get(
    "/attendance/consistency",
    response_model=AttendanceHygieneResponse,
    summary="Check attendance consistency",
    description="Rows whose status contradicts hours worked, and Sunday rows whose overtime "
                "hours differ from hours worked.",
)
async def check_attendance(
    month: str = Query(..., pattern=MONTH_PATTERN, description="Payroll month, YYYY-MM"),
    repository: PayrollRepository = Depends(get_payroll_repository),
):
    report = await AttendanceHygieneService(repository).check(PayrollMonth.parse(month))
    return AttendanceHygieneResponse.from_report(report)


@router.post(
    "/attendance/consistency/apply",
    response_model=AttendanceCorrectionsApplied,
    summary="Apply attendance corrections",
    description="Writes every suggested status and Sunday overtime correction for the month.",
)
async def apply_attendance_corrections(
    month: str = Query(..., pattern=MONTH_PATTERN, description="Payroll month, YYYY-MM"),
    repository: PayrollRepository = Depends(get_payroll_repository),
):
    payroll_month = PayrollMonth.parse(month)
    updated = await AttendanceHygieneService(repository).apply(payroll_month)
    return AttendanceCorrectionsApplied(month=str(payroll_month), updated=updated)


@router.get(
    "/leave/utilization",
    response_model=LeaveUtilizationResponse,
    summary="Leave utilisation report",
    description="Casual and earned leave used against balance for each active employee.",
)
async def leave_utilization(
    year: Optional[int] = Query(None, ge=2000, le=2100, description="Defaults to the current year"),
    repository: PayrollRepository = Depends(get_payroll_repository),
):
    report = await leave_utilization_report(repository, year or date.today().year)
    return LeaveUtilizationResponse.model_validate(report)
