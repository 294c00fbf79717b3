"""
Read-only interfaces onto collaborating subsystems.

Enrollment and course billing are owned elsewhere; the scheduling core only
consumes them through these two functions.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from constants import ACTIVE_ENROLLMENT_STATUS
from models import CourseBillingSettings, Enrollment


@dataclass(frozen=True)
class EnrollmentRef:
    student_id: int
    enrollment_id: int


@dataclass(frozen=True)
class BillingSettings:
    billing_type: Optional[str]
    price_per_session: Optional[Decimal] = None
    price_per_month: Optional[Decimal] = None
    sessions_per_month: Optional[int] = None
    price_per_minute: Optional[Decimal] = None


def active_enrollments_for_course(db: Session, course_id: int) -> List[EnrollmentRef]:
    """Active enrollments for a course, oldest first."""
    rows = (
        db.query(Enrollment.student_id, Enrollment.id)
        .filter(
            Enrollment.course_id == course_id,
            Enrollment.status == ACTIVE_ENROLLMENT_STATUS,
        )
        .order_by(Enrollment.id)
        .all()
    )
    return [EnrollmentRef(student_id=student_id, enrollment_id=enrollment_id) for student_id, enrollment_id in rows]


def billing_settings_for_course(db: Session, course_id: Optional[int]) -> Optional[BillingSettings]:
    """Billing settings for a course, or None when the course has none configured."""
    if course_id is None:
        return None
    settings = db.query(CourseBillingSettings).filter(
        CourseBillingSettings.course_id == course_id
    ).first()
    if not settings:
        return None
    return BillingSettings(
        billing_type=settings.billing_type,
        price_per_session=settings.price_per_session,
        price_per_month=settings.price_per_month,
        sessions_per_month=settings.sessions_per_month,
        price_per_minute=settings.price_per_minute,
    )
