"""
Pydantic schemas for API request/response validation.
These define the structure of data sent to and from the API.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict
from datetime import date, datetime, time
from decimal import Decimal

from utils.periods import PERIOD_PATTERN


# ============================================
# Auth Schemas
# ============================================

class UserResponse(BaseModel):
    """Current user with their teaching profile id, if any"""
    id: int = Field(..., gt=0)
    email: str = Field(..., max_length=255)
    name: str = Field(..., max_length=255)
    role: str = Field(..., max_length=50)
    teacher_id: Optional[int] = Field(None, gt=0)


class TokenRefreshResponse(BaseModel):
    success: bool
    expires_in: int  # Seconds until the new token expires
    message: str


# ============================================
# Teacher Schemas
# ============================================

class TeacherResponse(BaseModel):
    """Teaching profile with the linked user's email"""
    id: int = Field(..., gt=0)
    user_id: int = Field(..., gt=0)
    display_name: str = Field(..., max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


# ============================================
# Timetable Schemas
# ============================================

class TimetableBase(BaseModel):
    """Weekly schedule: lower-case day name -> list of "HH:MM" start times"""
    weekly_schedule: Dict[str, List[str]]
    recurrence_pattern: str = Field('weekly', max_length=20)
    start_date: date
    end_date: Optional[date] = None


class TimetableCreate(TimetableBase):
    pass


class TimetableUpdate(BaseModel):
    """Partial timetable update. Only the future window is re-expanded."""
    weekly_schedule: Optional[Dict[str, List[str]]] = None
    recurrence_pattern: Optional[str] = Field(None, max_length=20)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    clear_end_date: bool = False


class TimetableResponse(TimetableBase):
    id: int = Field(..., gt=0)
    class_id: int = Field(..., gt=0)
    is_active: bool
    generated_through: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RegenerateRequest(BaseModel):
    through_date: Optional[date] = None


class ExpansionResponse(BaseModel):
    """Outcome of materialising sessions from a timetable"""
    created: int = Field(..., ge=0)
    skipped: int = Field(0, ge=0)
    removed: int = Field(0, ge=0)
    cancelled: int = Field(0, ge=0)
    through: Optional[date] = None

    model_config = ConfigDict(from_attributes=True)


class TimetableCreateResponse(BaseModel):
    timetable: TimetableResponse
    expansion: ExpansionResponse


# ============================================
# Class Schemas
# ============================================

class ClassBase(BaseModel):
    """Base class schema"""
    course_id: int = Field(..., gt=0)
    teacher_id: int = Field(..., gt=0)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    duration_minutes: int = Field(60, gt=0, le=24 * 60)
    class_type: str = Field('group', max_length=20)
    max_capacity: int = Field(1, ge=1)
    is_recurring: bool = False
    teacher_rate: Decimal = Field(Decimal("0"), ge=0)
    rate_type: str = Field('per_class', max_length=20)
    commission_type: Optional[str] = Field('percentage', max_length=20)
    commission_value: Decimal = Field(Decimal("0"), ge=0)


class ClassCreate(ClassBase):
    """Non-recurring classes must give the date and time of their single session"""
    session_date: Optional[date] = None
    session_time: Optional[time] = None

    @field_validator('class_type', 'rate_type', 'commission_type')
    @classmethod
    def normalize_choice(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class ClassResponse(ClassBase):
    id: int = Field(..., gt=0)
    status: str = Field(..., max_length=20)
    course_name: Optional[str] = Field(None, max_length=255)
    teacher_name: Optional[str] = Field(None, max_length=255)
    session_count: int = Field(0, ge=0)
    timetable: Optional[TimetableResponse] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================
# Session Schemas
# ============================================

class SessionResponse(BaseModel):
    """Session with derived duration/KPI fields and the effective teacher"""
    id: int = Field(..., gt=0)
    class_id: int = Field(..., gt=0)
    class_title: Optional[str] = Field(None, max_length=255)
    session_date: date
    session_time: time
    duration_minutes: int = Field(..., gt=0)
    status: str = Field(..., max_length=20)

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    started_by: Optional[int] = None
    teacher_notes: Optional[str] = None
    rescheduled_to_id: Optional[int] = Field(None, gt=0)

    assigned_teacher_id: Optional[int] = Field(None, gt=0)
    effective_teacher_id: Optional[int] = Field(None, gt=0)
    teacher_name: Optional[str] = Field(None, max_length=255)
    is_substitute: bool = False

    allowance_amount: Optional[Decimal] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    verifier_role: Optional[str] = Field(None, max_length=50)
    payslip_id: Optional[int] = None

    # Derived
    actual_duration_minutes: Optional[int] = None
    duration_variance_minutes: Optional[int] = None
    meets_kpi: Optional[bool] = None
    kpi_status: str = 'pending'
    elapsed_minutes: int = 0

    model_config = ConfigDict(from_attributes=True)


class SessionActionRequest(BaseModel):
    """Optional notes recorded with end / no-show"""
    notes: Optional[str] = Field(None, max_length=2000)


class RescheduleRequest(BaseModel):
    new_date: date
    new_time: time
    reason: Optional[str] = Field(None, max_length=2000)


class AssignmentRequest(BaseModel):
    """teacher_id = null reverts the session to the class teacher"""
    teacher_id: Optional[int] = Field(None, gt=0)


class VerifyBatchRequest(BaseModel):
    session_ids: List[int] = Field(..., min_length=1)


class VerificationFailure(BaseModel):
    session_id: int
    reason: str


class VerifyBatchResponse(BaseModel):
    verified: List[int] = []
    failed: List[VerificationFailure] = []


class RescheduleResponse(BaseModel):
    original: SessionResponse
    replacement: SessionResponse


# ============================================
# Payslip Schemas
# ============================================

class PayslipLineItem(BaseModel):
    """One paid session"""
    session_id: int = Field(..., gt=0)
    session_date: date
    session_time: time
    class_id: int = Field(..., gt=0)
    class_title: Optional[str] = None
    course_name: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    present_count: int = Field(0, ge=0)
    verified_at: Optional[datetime] = None


class PayslipResponse(BaseModel):
    id: int = Field(..., gt=0)
    teacher_id: int = Field(..., gt=0)
    teacher_name: Optional[str] = Field(None, max_length=255)
    year: int
    month: int = Field(..., ge=1, le=12)
    period: str = Field(..., pattern=PERIOD_PATTERN)
    total_sessions: int = Field(..., ge=0)
    total_amount: Decimal = Field(..., ge=0)
    status: str = Field(..., max_length=20)
    notes: Optional[str] = None
    generated_by: Optional[int] = None
    generated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PayslipDetailResponse(PayslipResponse):
    line_items: List[PayslipLineItem] = []


class EligibilityResponse(BaseModel):
    teacher_id: int
    eligible: bool
    reason: Optional[str] = None
    existing_payslip_id: Optional[int] = None
    eligible_session_count: int = Field(0, ge=0)
    total_amount: Decimal = Field(Decimal("0.00"), ge=0)

    model_config = ConfigDict(from_attributes=True)


class PayslipPeriodRequest(BaseModel):
    """teacher_ids = null means every teacher with payable sessions in the period"""
    period: str = Field(..., pattern=PERIOD_PATTERN)
    teacher_ids: Optional[List[int]] = None


class PayslipPreviewItem(BaseModel):
    teacher_id: int
    teacher_name: Optional[str] = None
    eligibility: EligibilityResponse
    total_sessions: int = Field(0, ge=0)
    total_amount: Decimal = Field(Decimal("0.00"), ge=0)
    sessions: List[PayslipLineItem] = []


class GeneratedPayslipInfo(BaseModel):
    teacher_id: int
    payslip_id: int
    total_sessions: int
    total_amount: Decimal


class GenerationFailure(BaseModel):
    teacher_id: int
    reason: str
    existing_payslip_id: Optional[int] = None


class GeneratePayslipsResponse(BaseModel):
    period: str
    successful: List[GeneratedPayslipInfo] = []
    failed: List[GenerationFailure] = []


class PayslipStatistics(BaseModel):
    """Payroll progress for one month"""
    period: str
    total_eligible_sessions: int = Field(..., ge=0)
    sessions_in_payslips: int = Field(..., ge=0)
    paid_sessions: int = Field(..., ge=0)
    remaining_sessions: int = Field(..., ge=0)
    total_amount: Decimal
    amount_in_payslips: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payslips_count: int = Field(..., ge=0)
    draft_payslips: int = Field(..., ge=0)
    finalized_payslips: int = Field(..., ge=0)
    paid_payslips: int = Field(..., ge=0)


class AvailablePeriod(BaseModel):
    value: str = Field(..., pattern=PERIOD_PATTERN)
    label: str
    year: int
    month: int = Field(..., ge=1, le=12)
