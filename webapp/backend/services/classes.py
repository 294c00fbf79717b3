"""
Class creation and lookup.
"""
import logging
from datetime import date, time
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from constants import ClassStatus, ClassType, CommissionType, RateType, SessionStatus
from exceptions import NotFound, ValidationError
from models import ClassModel, ClassSession, Course, Teacher
from services.attendance import seed_attendance
from utils.query_helpers import class_with_relations

logger = logging.getLogger(__name__)


def _check_choice(value: Optional[str], choices, field_name: str) -> None:
    allowed = [c.value for c in choices]
    if value not in allowed:
        raise ValidationError(f"Invalid {field_name} '{value}'. Must be one of: {', '.join(allowed)}")


def create_class(
    db: Session,
    course_id: int,
    teacher_id: int,
    title: str,
    duration_minutes: int = 60,
    class_type: str = ClassType.GROUP.value,
    max_capacity: int = 1,
    is_recurring: bool = False,
    teacher_rate: Decimal = Decimal("0"),
    rate_type: str = RateType.PER_CLASS.value,
    commission_type: Optional[str] = CommissionType.PERCENTAGE.value,
    commission_value: Decimal = Decimal("0"),
    description: Optional[str] = None,
    session_date: Optional[date] = None,
    session_time: Optional[time] = None,
) -> ClassModel:
    """
    Create a class. A non-recurring class gets its single session right away,
    with attendance seeded for every active enrollment of the course, and
    becomes active. Recurring classes stay draft until a timetable produces
    their first session.
    """
    _check_choice(class_type, ClassType, "class_type")
    _check_choice(rate_type, RateType, "rate_type")
    if commission_type is not None:
        _check_choice(commission_type, CommissionType, "commission_type")

    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError("duration_minutes must be positive")
    if max_capacity is None or max_capacity < 1:
        raise ValidationError("max_capacity must be at least 1")
    if class_type == ClassType.INDIVIDUAL.value and max_capacity != 1:
        raise ValidationError("Individual classes must have a capacity of 1")
    if teacher_rate is not None and Decimal(str(teacher_rate)) < 0:
        raise ValidationError("teacher_rate cannot be negative")
    if commission_value is not None and Decimal(str(commission_value)) < 0:
        raise ValidationError("commission_value cannot be negative")
    if not is_recurring and (session_date is None or session_time is None):
        raise ValidationError("A non-recurring class needs session_date and session_time")

    if not db.query(Course).filter(Course.id == course_id).first():
        raise NotFound(f"Course with ID {course_id} not found")
    if not db.query(Teacher).filter(Teacher.id == teacher_id).first():
        raise NotFound(f"Teacher with ID {teacher_id} not found")

    class_model = ClassModel(
        course_id=course_id,
        teacher_id=teacher_id,
        title=title,
        description=description,
        duration_minutes=duration_minutes,
        class_type=class_type,
        max_capacity=max_capacity,
        is_recurring=is_recurring,
        teacher_rate=teacher_rate,
        rate_type=rate_type,
        commission_type=commission_type,
        commission_value=commission_value,
        status=ClassStatus.DRAFT.value,
    )
    db.add(class_model)
    db.flush()

    if not is_recurring:
        session = ClassSession(
            class_id=class_model.id,
            session_date=session_date,
            session_time=session_time.replace(second=0, microsecond=0),
            duration_minutes=duration_minutes,
            status=SessionStatus.SCHEDULED.value,
        )
        db.add(session)
        db.flush()
        seeded = seed_attendance(db, session, course_id)
        class_model.status = ClassStatus.ACTIVE.value
        logger.info(
            "Class %d created with single session on %s (%d attendance rows)",
            class_model.id, session_date, seeded,
        )
    else:
        logger.info("Recurring class %d created; awaiting timetable", class_model.id)

    db.commit()
    db.refresh(class_model)
    return class_model


def get_class(db: Session, class_id: int) -> ClassModel:
    class_model = db.query(ClassModel).options(*class_with_relations()).filter(ClassModel.id == class_id).first()
    if not class_model:
        raise NotFound(f"Class with ID {class_id} not found")
    return class_model
