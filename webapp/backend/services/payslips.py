"""
Monthly payslip aggregation.

A payslip totals a teacher's verified, completed sessions for one calendar
month. There is at most one payslip per (teacher, year, month); the database
unique constraint is the final arbiter when two admins generate at once.

Payslip lifecycle: draft -> finalized -> paid, with finalized -> draft as the
only way back. Only drafts can be synced or deleted.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from constants import AttendanceStatus, PayslipStatus, SessionStatus
from exceptions import DuplicateResource, InvalidTransition, NotFound, SchedulingError, ValidationError
from models import Attendance, ClassModel, ClassSession, Payslip, Teacher, User
from services.session_lifecycle import effective_teacher_clause
from utils.periods import Period
from utils.query_helpers import payslip_with_teacher

logger = logging.getLogger(__name__)

REASON_ALREADY_EXISTS = "Payslip already exists for this teacher and month"
REASON_NO_PROFILE = "Teacher has no teaching profile"
REASON_NO_SESSIONS = "No eligible sessions found for this teacher and month"

ZERO = Decimal("0.00")


@dataclass
class EligibilityReport:
    teacher_id: int
    eligible: bool
    reason: Optional[str] = None
    existing_payslip_id: Optional[int] = None
    eligible_session_count: int = 0
    total_amount: Decimal = ZERO


@dataclass
class BatchResult:
    successful: List[dict] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)


# ============================================================================
# Queries
# ============================================================================

def _in_period(query, period: Period):
    return query.filter(
        ClassSession.session_date >= period.first_day,
        ClassSession.session_date <= period.last_day,
    )


def _payable_sessions_query(db: Session):
    """Completed, verified sessions with an allowance."""
    return db.query(ClassSession).join(ClassModel, ClassSession.class_id == ClassModel.id).filter(
        ClassSession.status == SessionStatus.COMPLETED.value,
        ClassSession.verified_at.isnot(None),
        ClassSession.allowance_amount.isnot(None),
    )


def eligible_sessions(db: Session, teacher_id: int, period: Period) -> List[ClassSession]:
    """Sessions the teacher can be paid for in the period, ordered by date and time."""
    query = _in_period(_payable_sessions_query(db), period).options(
        joinedload(ClassSession.class_model).joinedload(ClassModel.course)
    ).filter(effective_teacher_clause(teacher_id))
    return query.order_by(ClassSession.session_date, ClassSession.session_time).all()


def total_allowance(sessions: Iterable[ClassSession]) -> Decimal:
    total = sum((Decimal(str(s.allowance_amount)) for s in sessions), ZERO)
    return total.quantize(Decimal("0.01"))


def teachers_with_eligible_sessions(db: Session, period: Period) -> List[int]:
    """Teacher ids that have at least one payable session in the period."""
    teacher_ids = set()
    for assigned, class_teacher in _in_period(
        db.query(ClassSession.assigned_teacher_id, ClassModel.teacher_id)
        .join(ClassModel, ClassSession.class_id == ClassModel.id)
        .filter(
            ClassSession.status == SessionStatus.COMPLETED.value,
            ClassSession.verified_at.isnot(None),
            ClassSession.allowance_amount.isnot(None),
        ),
        period,
    ).distinct():
        teacher_ids.add(assigned if assigned is not None else class_teacher)
    return sorted(teacher_ids)


def find_payslip(db: Session, teacher_id: int, period: Period) -> Optional[Payslip]:
    return db.query(Payslip).filter(
        Payslip.teacher_id == teacher_id,
        Payslip.year == period.year,
        Payslip.month == period.month,
    ).first()


def get_payslip(db: Session, payslip_id: int) -> Payslip:
    payslip = db.query(Payslip).options(*payslip_with_teacher()).filter(Payslip.id == payslip_id).first()
    if not payslip:
        raise NotFound(f"Payslip with ID {payslip_id} not found")
    return payslip


def list_payslips(
    db: Session,
    teacher_id: Optional[int] = None,
    period: Optional[Period] = None,
    status: Optional[str] = None,
) -> List[Payslip]:
    query = db.query(Payslip).options(*payslip_with_teacher())
    if teacher_id is not None:
        query = query.filter(Payslip.teacher_id == teacher_id)
    if period is not None:
        query = query.filter(Payslip.year == period.year, Payslip.month == period.month)
    if status:
        query = query.filter(Payslip.status == status)
    return query.order_by(Payslip.year.desc(), Payslip.month.desc(), Payslip.teacher_id).all()


# ============================================================================
# Eligibility and generation
# ============================================================================

def can_generate(db: Session, teacher_id: int, period: Period) -> EligibilityReport:
    teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
    if not teacher:
        return EligibilityReport(teacher_id=teacher_id, eligible=False, reason=REASON_NO_PROFILE)

    existing = find_payslip(db, teacher_id, period)
    if existing:
        return EligibilityReport(
            teacher_id=teacher_id,
            eligible=False,
            reason=REASON_ALREADY_EXISTS,
            existing_payslip_id=existing.id,
        )

    sessions = eligible_sessions(db, teacher_id, period)
    if not sessions:
        return EligibilityReport(teacher_id=teacher_id, eligible=False, reason=REASON_NO_SESSIONS)

    return EligibilityReport(
        teacher_id=teacher_id,
        eligible=True,
        eligible_session_count=len(sessions),
        total_amount=total_allowance(sessions),
    )


def _raise_for(report: EligibilityReport) -> None:
    if report.reason == REASON_ALREADY_EXISTS:
        raise DuplicateResource(report.reason, existing_id=report.existing_payslip_id)
    if report.reason == REASON_NO_PROFILE:
        raise NotFound(f"Teacher with ID {report.teacher_id} not found")
    raise ValidationError(report.reason)


def generate(
    db: Session,
    teacher_id: int,
    period: Period,
    generated_by: Optional[User] = None,
    now: Optional[datetime] = None,
) -> Payslip:
    """
    Create a draft payslip from the teacher's eligible sessions.

    Eligibility is re-checked here rather than trusted from an earlier
    preview, and the sessions are linked to the new payslip in the same
    transaction.
    """
    report = can_generate(db, teacher_id, period)
    if not report.eligible:
        _raise_for(report)

    sessions = eligible_sessions(db, teacher_id, period)
    payslip = Payslip(
        teacher_id=teacher_id,
        year=period.year,
        month=period.month,
        total_sessions=len(sessions),
        total_amount=total_allowance(sessions),
        status=PayslipStatus.DRAFT.value,
        generated_by=generated_by.id if generated_by else None,
        generated_at=now or datetime.now(),
    )
    db.add(payslip)
    try:
        db.flush()
        for session in sessions:
            session.payslip_id = payslip.id
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_payslip(db, teacher_id, period)
        logger.warning("Concurrent payslip generation for teacher %d, %s", teacher_id, period)
        raise DuplicateResource(REASON_ALREADY_EXISTS, existing_id=existing.id if existing else None)

    db.refresh(payslip)
    logger.info(
        "Payslip %d generated for teacher %d, %s: %d sessions, %s",
        payslip.id, teacher_id, period, payslip.total_sessions, payslip.total_amount,
    )
    return payslip


def generate_batch(
    db: Session,
    teacher_ids: Optional[Iterable[int]],
    period: Period,
    generated_by: Optional[User] = None,
) -> BatchResult:
    """
    Generate payslips for several teachers, each in its own transaction.

    With no teacher ids, every teacher with payable sessions in the period is
    included. Failures are collected rather than raised.
    """
    if teacher_ids is None:
        teacher_ids = teachers_with_eligible_sessions(db, period)

    result = BatchResult()
    for teacher_id in teacher_ids:
        try:
            payslip = generate(db, teacher_id, period, generated_by)
            result.successful.append({
                "teacher_id": teacher_id,
                "payslip_id": payslip.id,
                "total_sessions": payslip.total_sessions,
                "total_amount": payslip.total_amount,
            })
        except SchedulingError as e:
            logger.warning("Payslip generation failed for teacher %s, %s: %s", teacher_id, period, e.message)
            failed = {"teacher_id": teacher_id, "reason": e.message}
            if isinstance(e, DuplicateResource) and e.existing_id is not None:
                failed["existing_payslip_id"] = e.existing_id
            result.failed.append(failed)

    logger.info(
        "Payslip batch for %s: %d generated, %d failed",
        period, len(result.successful), len(result.failed),
    )
    return result


# ============================================================================
# Line items and previews
# ============================================================================

def _present_counts(db: Session, session_ids: List[int]) -> dict:
    if not session_ids:
        return {}
    rows = db.query(Attendance.session_id, func.count(Attendance.id)).filter(
        Attendance.session_id.in_(session_ids),
        Attendance.status.in_([AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value]),
    ).group_by(Attendance.session_id).all()
    return dict(rows)


def _line_items_for(db: Session, sessions: List[ClassSession]) -> List[dict]:
    present = _present_counts(db, [s.id for s in sessions])
    items = []
    for session in sessions:
        class_model = session.class_model
        items.append({
            "session_id": session.id,
            "session_date": session.session_date,
            "session_time": session.session_time,
            "class_id": session.class_id,
            "class_title": class_model.title if class_model else None,
            "course_name": class_model.course.name if class_model and class_model.course else None,
            "amount": Decimal(str(session.allowance_amount)).quantize(Decimal("0.01")),
            "present_count": present.get(session.id, 0),
            "verified_at": session.verified_at,
        })
    return items


def line_items(db: Session, payslip: Payslip) -> List[dict]:
    """One entry per session included in the payslip."""
    sessions = db.query(ClassSession).options(
        joinedload(ClassSession.class_model).joinedload(ClassModel.course)
    ).filter(ClassSession.payslip_id == payslip.id).order_by(
        ClassSession.session_date, ClassSession.session_time
    ).all()
    return _line_items_for(db, sessions)


def preview(db: Session, teacher_ids: Iterable[int], period: Period) -> List[dict]:
    """What generation would produce for each teacher, without writing anything."""
    previews = []
    for teacher_id in teacher_ids:
        report = can_generate(db, teacher_id, period)
        teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
        sessions = eligible_sessions(db, teacher_id, period) if teacher else []
        previews.append({
            "teacher_id": teacher_id,
            "teacher_name": teacher.display_name if teacher else None,
            "eligibility": report,
            "total_sessions": len(sessions),
            "total_amount": total_allowance(sessions),
            "sessions": _line_items_for(db, sessions),
        })
    return previews


# ============================================================================
# Payslip lifecycle
# ============================================================================

def recalculate_totals(db: Session, payslip: Payslip) -> None:
    """Recompute totals from the linked sessions. Does not commit."""
    db.flush()
    count, amount = db.query(
        func.count(ClassSession.id), func.coalesce(func.sum(ClassSession.allowance_amount), 0)
    ).filter(ClassSession.payslip_id == payslip.id).one()
    payslip.total_sessions = count
    payslip.total_amount = Decimal(str(amount)).quantize(Decimal("0.01"))


def _require_status(payslip: Payslip, expected: str, action: str) -> None:
    if payslip.status != expected:
        raise InvalidTransition(
            f"Cannot {action} payslip {payslip.id}: status is '{payslip.status}'",
            current_status=payslip.status,
        )


def _compare_and_set(db: Session, payslip: Payslip, expected: str, action: str, **values) -> Payslip:
    result = db.execute(
        update(Payslip)
        .where(Payslip.id == payslip.id, Payslip.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(payslip)
        raise InvalidTransition(
            f"Cannot {action} payslip {payslip.id}: status changed to '{payslip.status}'",
            current_status=payslip.status,
        )
    db.commit()
    db.refresh(payslip)
    return payslip


def sync(db: Session, payslip: Payslip) -> Payslip:
    """
    Bring a draft up to date with the current eligible sessions.

    Newly verified sessions are added, sessions that are no longer payable
    are released, and totals are recomputed.
    """
    _require_status(payslip, PayslipStatus.DRAFT.value, "sync")
    period = Period(payslip.year, payslip.month)
    current = {s.id: s for s in eligible_sessions(db, payslip.teacher_id, period)}

    linked = db.query(ClassSession).filter(ClassSession.payslip_id == payslip.id).all()
    released = 0
    for session in linked:
        if session.id not in current:
            session.payslip_id = None
            released += 1
    added = 0
    for session in current.values():
        if session.payslip_id != payslip.id:
            session.payslip_id = payslip.id
            added += 1

    recalculate_totals(db, payslip)
    db.commit()
    db.refresh(payslip)
    logger.info(
        "Payslip %d synced: %d added, %d released, total %s",
        payslip.id, added, released, payslip.total_amount,
    )
    return payslip


def finalize(db: Session, payslip: Payslip, now: Optional[datetime] = None) -> Payslip:
    """Freeze a draft. A draft with no sessions cannot be finalized."""
    _require_status(payslip, PayslipStatus.DRAFT.value, "finalize")
    if not payslip.total_sessions:
        raise InvalidTransition(
            f"Cannot finalize payslip {payslip.id}: it has no sessions",
            current_status=payslip.status,
        )
    _compare_and_set(
        db, payslip, PayslipStatus.DRAFT.value, "finalize",
        status=PayslipStatus.FINALIZED.value,
        finalized_at=now or datetime.now(),
    )
    logger.info("Payslip %d finalized", payslip.id)
    return payslip


def mark_paid(db: Session, payslip: Payslip, now: Optional[datetime] = None) -> Payslip:
    _require_status(payslip, PayslipStatus.FINALIZED.value, "mark as paid")
    _compare_and_set(
        db, payslip, PayslipStatus.FINALIZED.value, "mark as paid",
        status=PayslipStatus.PAID.value,
        paid_at=now or datetime.now(),
    )
    logger.info("Payslip %d marked as paid", payslip.id)
    return payslip


def revert_to_draft(db: Session, payslip: Payslip) -> Payslip:
    _require_status(payslip, PayslipStatus.FINALIZED.value, "revert")
    _compare_and_set(
        db, payslip, PayslipStatus.FINALIZED.value, "revert",
        status=PayslipStatus.DRAFT.value,
        finalized_at=None,
    )
    logger.info("Payslip %d reverted to draft", payslip.id)
    return payslip


def delete_draft(db: Session, payslip: Payslip) -> None:
    """Delete a draft and release its sessions for a future payslip."""
    _require_status(payslip, PayslipStatus.DRAFT.value, "delete")
    payslip_id = payslip.id
    db.query(ClassSession).filter(ClassSession.payslip_id == payslip_id).update(
        {ClassSession.payslip_id: None}, synchronize_session=False
    )
    db.delete(payslip)
    db.commit()
    logger.info("Draft payslip %d deleted", payslip_id)


# ============================================================================
# Reporting
# ============================================================================

def month_statistics(db: Session, period: Period) -> dict:
    """Payroll progress for one month."""
    payable = _in_period(_payable_sessions_query(db), period).all()
    total_sessions = len(payable)
    total_amount = total_allowance(payable)

    in_payslips = [s for s in payable if s.payslip_id is not None]
    payslips = list_payslips(db, period=period)
    paid_ids = {p.id for p in payslips if p.status == PayslipStatus.PAID.value}
    paid_sessions = [s for s in in_payslips if s.payslip_id in paid_ids]

    amount_in_payslips = total_allowance(in_payslips)
    by_status = {status.value: 0 for status in PayslipStatus}
    for payslip in payslips:
        by_status[payslip.status] = by_status.get(payslip.status, 0) + 1

    return {
        "period": str(period),
        "total_eligible_sessions": total_sessions,
        "sessions_in_payslips": len(in_payslips),
        "paid_sessions": len(paid_sessions),
        "remaining_sessions": total_sessions - len(in_payslips),
        "total_amount": total_amount,
        "amount_in_payslips": amount_in_payslips,
        "paid_amount": total_allowance(paid_sessions),
        "remaining_amount": total_amount - amount_in_payslips,
        "payslips_count": len(payslips),
        "draft_payslips": by_status[PayslipStatus.DRAFT.value],
        "finalized_payslips": by_status[PayslipStatus.FINALIZED.value],
        "paid_payslips": by_status[PayslipStatus.PAID.value],
    }


def available_periods(db: Session) -> List[dict]:
    """Months that have verified completed sessions, newest first."""
    dates = db.query(ClassSession.session_date).filter(
        ClassSession.status == SessionStatus.COMPLETED.value,
        ClassSession.verified_at.isnot(None),
    ).distinct().all()
    periods = sorted({Period(d.year, d.month) for (d,) in dates}, key=lambda p: (p.year, p.month), reverse=True)
    return [
        {"value": str(p), "label": p.label, "year": p.year, "month": p.month}
        for p in periods
    ]
