"""
Teacher allowance calculation.

The allowance is the amount owed to the teacher for one session. Three rate
types are supported:

- per_class: the flat teacher_rate
- per_student: teacher_rate times the class capacity (seats, not headcount)
- per_session: a commission on the course's session fee

Missing configuration never raises: it yields zero so that listings can still
render. That leniency hides data-entry mistakes, so it is logged at DEBUG.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from constants import BillingType, CommissionType, RateType, SessionStatus
from models import ClassSession
from services.collaborators import BillingSettings, billing_settings_for_course

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    if value < 0:
        return ZERO
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def session_fee(billing: Optional[BillingSettings], duration_minutes: Optional[int]) -> Decimal:
    """Course price of one session, derived from the course billing type."""
    if billing is None:
        return Decimal("0")

    if billing.billing_type == BillingType.PER_SESSION.value:
        return _to_decimal(billing.price_per_session)
    if billing.billing_type == BillingType.PER_MONTH.value:
        # 0 or missing sessions_per_month is treated as 1
        sessions = billing.sessions_per_month or 1
        return _to_decimal(billing.price_per_month) / Decimal(sessions)
    if billing.billing_type == BillingType.PER_MINUTE.value:
        return _to_decimal(billing.price_per_minute) * Decimal(duration_minutes or 0)
    return Decimal("0")


def calculate_allowance(
    rate_type: Optional[str],
    teacher_rate,
    capacity: Optional[int],
    commission_type: Optional[str],
    commission_value,
    billing: Optional[BillingSettings],
    duration_minutes: Optional[int],
) -> Decimal:
    """
    Compute the teacher allowance for one session.

    Returns a non-negative Decimal rounded to cents.
    """
    if rate_type == RateType.PER_CLASS.value:
        return _money(_to_decimal(teacher_rate))

    if rate_type == RateType.PER_STUDENT.value:
        seats = max(capacity or 0, 1)
        return _money(_to_decimal(teacher_rate) * seats)

    if rate_type == RateType.PER_SESSION.value:
        if billing is None:
            logger.debug("No billing settings; per_session allowance falls back to 0")
            return ZERO
        if commission_type == CommissionType.FIXED.value:
            return _money(_to_decimal(commission_value))
        fee = session_fee(billing, duration_minutes)
        if commission_type == CommissionType.PERCENTAGE.value:
            return _money(fee * _to_decimal(commission_value) / Decimal(100))
        return ZERO

    logger.debug("Unknown rate type %r; allowance falls back to 0", rate_type)
    return ZERO


def allowance_for_session(db: Session, session: ClassSession) -> Decimal:
    """Gather the class and course billing inputs and compute the allowance."""
    class_model = session.class_model
    if class_model is None:
        return ZERO

    billing = None
    if class_model.rate_type == RateType.PER_SESSION.value:
        billing = billing_settings_for_course(db, class_model.course_id)

    return calculate_allowance(
        rate_type=class_model.rate_type,
        teacher_rate=class_model.teacher_rate,
        capacity=class_model.max_capacity,
        commission_type=class_model.commission_type,
        commission_value=class_model.commission_value,
        billing=billing,
        duration_minutes=session.duration_minutes,
    )


def allowance_amount_for(db: Session, session: ClassSession) -> Decimal:
    """Stored amount for completed sessions, otherwise a live estimate."""
    if session.status == SessionStatus.COMPLETED.value and session.allowance_amount is not None:
        return _to_decimal(session.allowance_amount).quantize(CENT)
    return allowance_for_session(db, session)
