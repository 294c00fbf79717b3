"""
Shared response builder functions.

Centralizes the common patterns for building API response objects
from SQLAlchemy models with loaded relationships.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from models import ClassModel, ClassSession, Payslip, Teacher
from schemas import (
    ClassResponse,
    PayslipDetailResponse,
    PayslipLineItem,
    PayslipResponse,
    SessionResponse,
    TeacherResponse,
    TimetableResponse,
)
from services import session_lifecycle


def build_session_response(session: ClassSession, now: Optional[datetime] = None) -> SessionResponse:
    """
    Build a SessionResponse with the effective teacher and KPI fields.

    Args:
        session: ClassSession with class_model and assigned_teacher loaded
        now: Reference time for elapsed_minutes on ongoing sessions

    Returns:
        SessionResponse with derived fields populated
    """
    data = SessionResponse.model_validate(session)
    class_model = session.class_model
    data.class_title = class_model.title if class_model else None

    assignment = session_lifecycle.teacher_assignment(session)
    data.effective_teacher_id = assignment.teacher_id
    data.is_substitute = isinstance(assignment, session_lifecycle.Override)
    if data.is_substitute:
        teacher = session.assigned_teacher
    else:
        teacher = class_model.teacher if class_model else None
    data.teacher_name = teacher.display_name if teacher else None

    data.actual_duration_minutes = session_lifecycle.actual_duration_minutes(session)
    data.duration_variance_minutes = session_lifecycle.duration_variance_minutes(session)
    data.meets_kpi = session_lifecycle.meets_kpi(session)
    data.kpi_status = session_lifecycle.kpi_status(session)
    data.elapsed_minutes = session_lifecycle.elapsed_minutes(session, now)
    return data


def build_class_response(class_model: ClassModel, db: Session) -> ClassResponse:
    data = ClassResponse.model_validate(class_model)
    data.course_name = class_model.course.name if class_model.course else None
    data.teacher_name = class_model.teacher.display_name if class_model.teacher else None
    data.session_count = db.query(ClassSession).filter(ClassSession.class_id == class_model.id).count()
    data.timetable = TimetableResponse.model_validate(class_model.timetable) if class_model.timetable else None
    return data


def build_teacher_response(teacher: Teacher) -> TeacherResponse:
    data = TeacherResponse.model_validate(teacher)
    data.email = teacher.user.email if teacher.user else None
    return data


def build_payslip_response(payslip: Payslip) -> PayslipResponse:
    return PayslipResponse(
        id=payslip.id,
        teacher_id=payslip.teacher_id,
        teacher_name=payslip.teacher.display_name if payslip.teacher else None,
        year=payslip.year,
        month=payslip.month,
        period=f"{payslip.year:04d}-{payslip.month:02d}",
        total_sessions=payslip.total_sessions,
        total_amount=payslip.total_amount,
        status=payslip.status,
        notes=payslip.notes,
        generated_by=payslip.generated_by,
        generated_at=payslip.generated_at,
        finalized_at=payslip.finalized_at,
        paid_at=payslip.paid_at,
    )


def build_payslip_detail(payslip: Payslip, items: List[dict]) -> PayslipDetailResponse:
    base = build_payslip_response(payslip)
    return PayslipDetailResponse(
        **base.model_dump(),
        line_items=[PayslipLineItem(**item) for item in items],
    )
