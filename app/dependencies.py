"""
Payroll Engine - FastAPI Dependencies

Shared dependencies for the payroll routes:
1. Data store access for the engine (repository)
2. The in-process batch run registry
"""

from fastapi import Depends, Request

from app.database import async_session_maker
from app.services.payroll_engine.batch import PayrollBatchProcessor
from app.services.payroll_engine.calculator import PayrollCalculator
from app.services.payroll_engine.repository import (
    PayrollRepository,
    SQLAlchemyPayrollRepository,
)
from app.services.payroll_engine.runs import BatchRunRegistry


def get_payroll_repository() -> PayrollRepository:
    """Repository over the application database, one session per call."""
    return SQLAlchemyPayrollRepository(async_session_maker)


def get_payroll_calculator(
    repository: PayrollRepository = Depends(get_payroll_repository),
) -> PayrollCalculator:
    return PayrollCalculator(repository)


def get_batch_processor(
    repository: PayrollRepository = Depends(get_payroll_repository),
) -> PayrollBatchProcessor:
    return PayrollBatchProcessor(repository)


def get_batch_registry(request: Request) -> BatchRunRegistry:
    """Registry created at startup and kept on the application state."""
    registry = getattr(request.app.state, "batch_registry", None)
    if registry is None:
        registry = BatchRunRegistry()
        request.app.state.batch_registry = registry
    return registry
