"""
Payroll Engine - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.payroll import (
    PayrollCalculationRequest,
    CalculationResultResponse,
    BatchRunCreate,
    BatchRunResponse,
    FormulaValidationRequest,
    FormulaValidationResponse,
    AttendanceHygieneResponse,
    LeaveUtilizationResponse,
)

__all__ = [
    "PayrollCalculationRequest",
    "CalculationResultResponse",
    "BatchRunCreate",
    "BatchRunResponse",
    "FormulaValidationRequest",
    "FormulaValidationResponse",
    "AttendanceHygieneResponse",
    "LeaveUtilizationResponse",
]
