"""
Payroll Engine - Computation & Reconciliation Package

Per-employee salary calculation and batched roster runs.

Modules:
- variables: layered formula variable resolution
- formula: restricted arithmetic formula evaluator and validation
- overtime: overtime rate cascade (employee-specific / formula / default)
- attendance: monthly attendance aggregation
- leave: leave reconciliation and utilisation report
- calculator: single-employee calculation and breakdown
- batch: bounded-concurrency roster runs with cancellation
- hygiene: explicit attendance data corrections
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from app.services.payroll_engine.attendance import AttendanceAggregator, AttendanceSummary
from app.services.payroll_engine.batch import (
    BatchFailure,
    BatchProgress,
    BatchResult,
    BatchSummary,
    CancellationToken,
    PayrollBatchProcessor,
)
from app.services.payroll_engine.calculator import (
    CalculationBreakdown,
    CalculationResult,
    PayrollCalculator,
)
from app.services.payroll_engine.formula import (
    FormulaEvaluation,
    FormulaEvaluator,
    FormulaValidationResult,
    validate_formula,
)
from app.services.payroll_engine.hygiene import AttendanceHygieneReport, AttendanceHygieneService
from app.services.payroll_engine.leave import (
    LeaveReconciler,
    LeaveUtilizationReport,
    ReconciledLeaveData,
    leave_utilization_report,
)
from app.services.payroll_engine.overtime import OvertimeQuote, OvertimeRateResolver
from app.services.payroll_engine.periods import PayrollMonth
from app.services.payroll_engine.records import RateSource
from app.services.payroll_engine.repository import PayrollRepository, SQLAlchemyPayrollRepository
from app.services.payroll_engine.runs import BatchRun, BatchRunRegistry, BatchRunStatus
from app.services.payroll_engine.settings import PayrollSettings, settings_as_of
from app.services.payroll_engine.variables import ResolvedVariables, VariableResolver


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

_evaluator = FormulaEvaluator()


def evaluate(expression: str, variables: Optional[Mapping[str, Any]] = None) -> Decimal:
    """
    Evaluate a payroll formula.

    Args:
        expression: Arithmetic expression over variable names
        variables: Name -> numeric value

    Returns:
        Result rounded to 2 places, or 0 when the formula is rejected
    """
    return _evaluator.evaluate(expression, variables)


__all__ = [
    "AttendanceAggregator",
    "AttendanceHygieneReport",
    "AttendanceHygieneService",
    "AttendanceSummary",
    "BatchFailure",
    "BatchProgress",
    "BatchResult",
    "BatchRun",
    "BatchRunRegistry",
    "BatchRunStatus",
    "BatchSummary",
    "CalculationBreakdown",
    "CalculationResult",
    "CancellationToken",
    "FormulaEvaluation",
    "FormulaEvaluator",
    "FormulaValidationResult",
    "LeaveReconciler",
    "LeaveUtilizationReport",
    "OvertimeQuote",
    "OvertimeRateResolver",
    "PayrollBatchProcessor",
    "PayrollCalculator",
    "PayrollMonth",
    "PayrollRepository",
    "PayrollSettings",
    "RateSource",
    "ReconciledLeaveData",
    "ResolvedVariables",
    "SQLAlchemyPayrollRepository",
    "VariableResolver",
    "evaluate",
    "leave_utilization_report",
    "settings_as_of",
    "validate_formula",
]
