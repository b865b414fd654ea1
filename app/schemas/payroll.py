"""
Payroll Engine - Payroll Schemas

Pydantic schemas for payroll calculation requests and responses.
Engine results are plain dataclasses; responses read them by attribute.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.services.payroll_engine.hygiene import AttendanceHygieneReport
from app.services.payroll_engine.leave import RiskLevel
from app.services.payroll_engine.records import AttendanceStatus, RateSource
from app.services.payroll_engine.runs import BatchRunStatus


MONTH_PATTERN = r"^\d{4}-\d{2}$"


# ===========================================
# SINGLE EMPLOYEE CALCULATION
# ===========================================

class PayrollCalculationRequest(BaseModel):
    """Calculate one employee's pay for a month."""
    employee_id: UUID
    month: str = Field(..., pattern=MONTH_PATTERN, description="Payroll month, YYYY-MM")
    days_present: Optional[Decimal] = Field(None, ge=0, description="Overrides days worked from attendance")
    overtime_hours: Optional[Decimal] = Field(
        None, ge=0, description="Used only when the month has no attendance rows"
    )
    custom_variables: Dict[str, Decimal] = Field(default_factory=dict)


class AttendanceSummaryResponse(BaseModel):
    records_count: int
    actual_days_worked: int
    total_hours_worked: Decimal
    total_overtime_hours: Decimal
    casual_leave_days: int
    earned_leave_days: int
    unpaid_leave_days: int
    weekly_off_days: int
    working_days_in_month: int

    class Config:
        from_attributes = True


class ReconciledLeaveDataResponse(BaseModel):
    casual_leave_taken: int
    earned_leave_taken: int
    casual_leave_balance: Decimal
    earned_leave_balance: Decimal
    total_leave_taken: int
    total_leave_available: Decimal
    excess_leave_days: Decimal
    raw_unpaid_leave_days: int
    unpaid_leave_days: Decimal
    leave_adjustment_applied: bool

    class Config:
        from_attributes = True


class CalculationBreakdownResponse(BaseModel):
    base_calculation: str
    overtime_calculation: str
    deductions_calculation: str
    formulas_used: List[str] = []
    variables_used: Dict[str, Decimal] = {}
    formula_result: Optional[Decimal] = None

    class Config:
        from_attributes = True


class CalculationResultResponse(BaseModel):
    """Full calculation with its audit breakdown."""
    employee_id: UUID
    employee_name: str
    month: str
    working_days_in_month: int
    days_present: Decimal
    actual_days_worked: int

    base_salary: Decimal
    hra_amount: Decimal
    other_conv_amount: Decimal

    overtime_hours: Decimal
    overtime_amount: Decimal
    overtime_rate_source: RateSource

    gross_salary: Decimal
    pf_deduction: Decimal
    esi_deduction: Decimal
    esi_exempt: bool
    advances: Decimal
    total_deductions: Decimal
    net_salary: Decimal

    calculation_breakdown: CalculationBreakdownResponse
    attendance_summary: AttendanceSummaryResponse
    reconciled_leave_data: Optional[ReconciledLeaveDataResponse] = None
    leave_impact_amount: Decimal
    reconciliation_warning: Optional[str] = None
    transparency_score: int
    warnings: List[str] = []

    class Config:
        from_attributes = True


# ===========================================
# BATCH RUNS
# ===========================================

class BatchRunCreate(BaseModel):
    """Start a background batch run."""
    month: str = Field(..., pattern=MONTH_PATTERN)
    unit_id: Optional[UUID] = None
    employee_ids: Optional[List[UUID]] = Field(
        None, description="Limit the run to these active employees"
    )


class BatchProgressResponse(BaseModel):
    total: int
    processed: int
    current_index: int
    current_employee_name: Optional[str] = None
    completed: List[str] = []
    failed: List[Dict[str, str]] = []

    class Config:
        from_attributes = True


class BatchFailureResponse(BaseModel):
    employee_id: UUID
    employee_name: str
    error: str
    error_code: Optional[str] = None

    class Config:
        from_attributes = True


class BatchSummaryResponse(BaseModel):
    total_employees: int
    successful: int
    failed: int
    skipped: int
    rate_source_counts: Dict[str, int]
    average_transparency_score: Decimal
    total_gross_salary: Decimal
    total_deductions: Decimal
    total_net_salary: Decimal

    class Config:
        from_attributes = True


class BatchRunResponse(BaseModel):
    run_id: UUID
    month: str
    status: BatchRunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    progress: BatchProgressResponse
    cancelled: bool = False
    summary: Optional[BatchSummaryResponse] = None
    results: List[CalculationResultResponse] = []
    failures: List[BatchFailureResponse] = []
    error: Optional[str] = None


# ===========================================
# FORMULA VALIDATION
# ===========================================

class FormulaValidationRequest(BaseModel):
    expression: str = Field(..., min_length=1, max_length=2000)
    formula_type: str = Field(..., min_length=1, max_length=50)
    test_variables: Optional[Dict[str, Decimal]] = None


class FormulaValidationResponse(BaseModel):
    valid: bool
    test_result: Decimal
    test_variables: Dict[str, Decimal]
    warnings: List[str] = []
    suggestions: List[str] = []
    error: Optional[str] = None

    class Config:
        from_attributes = True


# ===========================================
# ATTENDANCE HYGIENE
# ===========================================

class ConsistencyIssueResponse(BaseModel):
    attendance_id: Optional[UUID] = None
    employee_id: UUID
    employee_name: str
    attendance_date: date
    status: str
    hours_worked: Decimal
    suggested_status: AttendanceStatus
    reason: str

    class Config:
        from_attributes = True


class SundayOvertimeFindingResponse(BaseModel):
    attendance_id: Optional[UUID] = None
    employee_id: UUID
    employee_name: str
    attendance_date: date
    hours_worked: Decimal
    overtime_hours: Decimal
    needs_correction: bool
    overtime_amount: Decimal
    sunday_premium: Decimal

    class Config:
        from_attributes = True


class AttendanceHygieneResponse(BaseModel):
    month: str
    consistency_issues: List[ConsistencyIssueResponse] = []
    sunday_findings: List[SundayOvertimeFindingResponse] = []
    corrections_needed: int = 0

    @classmethod
    def from_report(cls, report: AttendanceHygieneReport) -> "AttendanceHygieneResponse":
        return cls(
            month=report.month,
            consistency_issues=[
                ConsistencyIssueResponse.model_validate(issue) for issue in report.consistency_issues
            ],
            sunday_findings=[
                SundayOvertimeFindingResponse.model_validate(finding) for finding in report.sunday_findings
            ],
            corrections_needed=len(report.corrections()),
        )


class AttendanceCorrectionsApplied(BaseModel):
    month: str
    updated: int


# ===========================================
# LEAVE UTILISATION
# ===========================================

class LeaveUtilizationEntry(BaseModel):
    employee_id: UUID
    employee_name: str
    year: int
    casual_leave_balance: Decimal
    earned_leave_balance: Decimal
    casual_leave_used: int
    earned_leave_used: int
    over_utilized_casual: Decimal
    over_utilized_earned: Decimal
    total_over_utilization: Decimal
    has_negative_balance: bool
    risk_level: RiskLevel

    class Config:
        from_attributes = True


class LeaveUtilizationResponse(BaseModel):
    year: int
    total_employees: int
    employees_with_negative_balance: int
    total_over_utilization: Decimal
    critical_cases: int
    entries: List[LeaveUtilizationEntry] = []

    class Config:
        from_attributes = True
