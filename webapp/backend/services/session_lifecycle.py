"""
Session lifecycle state machine.

A session moves scheduled -> ongoing -> completed, or from scheduled to
cancelled / no_show / rescheduled. Every transition is a compare-and-set on
the status column, so when two operators race on the same session exactly
one UPDATE matches and the other gets InvalidTransition with nothing changed.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional, Union

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from constants import (
    FINISHED_SESSION_STATUSES,
    SESSION_TRANSITIONS,
    ClassStatus,
    SessionStatus,
)
from exceptions import DuplicateResource, InvalidTransition, NotFound, ValidationError
from models import ClassModel, ClassSession, Teacher, User
from services.allowance import allowance_for_session
from services.attendance import seed_attendance

logger = logging.getLogger(__name__)

TRANSITION_ACTIONS = ("start", "end", "cancel", "no_show")


# ============================================================================
# Teacher assignment (inherit the class teacher or override per session)
# ============================================================================

@dataclass(frozen=True)
class Inherited:
    teacher_id: int


@dataclass(frozen=True)
class Override:
    teacher_id: int


TeacherAssignment = Union[Inherited, Override]


def teacher_assignment(session: ClassSession) -> TeacherAssignment:
    if session.assigned_teacher_id is not None:
        return Override(session.assigned_teacher_id)
    return Inherited(session.class_model.teacher_id)


def effective_teacher_id(session: ClassSession) -> int:
    return teacher_assignment(session).teacher_id


def effective_teacher_clause(teacher_id: int):
    """SQL filter matching sessions taught by teacher_id. Query must join ClassModel."""
    return or_(
        ClassSession.assigned_teacher_id == teacher_id,
        and_(ClassSession.assigned_teacher_id.is_(None), ClassModel.teacher_id == teacher_id),
    )


# ============================================================================
# Derived reads
# ============================================================================

def actual_duration_minutes(session: ClassSession) -> Optional[int]:
    """Whole minutes between start and completion; None until completed."""
    if session.status != SessionStatus.COMPLETED.value:
        return None
    if not session.started_at or not session.completed_at:
        return None
    return int((session.completed_at - session.started_at).total_seconds() // 60)


def duration_variance_minutes(session: ClassSession) -> Optional[int]:
    actual = actual_duration_minutes(session)
    if actual is None:
        return None
    return actual - session.duration_minutes


def meets_kpi(session: ClassSession) -> Optional[bool]:
    """True when the actual duration reached the target; None while undetermined."""
    actual = actual_duration_minutes(session)
    if actual is None:
        return None
    return actual >= session.duration_minutes


def kpi_status(session: ClassSession) -> str:
    met = meets_kpi(session)
    if met is None:
        return "pending"
    return "met" if met else "missed"


def elapsed_minutes(session: ClassSession, now: Optional[datetime] = None) -> int:
    if session.status != SessionStatus.ONGOING.value or not session.started_at:
        return 0
    now = now or datetime.now()
    return max(int((now - session.started_at).total_seconds() // 60), 0)


# ============================================================================
# Loading and guards
# ============================================================================

def get_session(db: Session, session_id: int) -> ClassSession:
    session = db.query(ClassSession).options(
        joinedload(ClassSession.class_model)
    ).filter(ClassSession.id == session_id).first()
    if not session:
        raise NotFound(f"Session with ID {session_id} not found")
    return session


def can_transition(current: str, target: str) -> bool:
    return target in SESSION_TRANSITIONS.get(current, set())


def _sources_for(target: str) -> list:
    return [source for source, targets in SESSION_TRANSITIONS.items() if target in targets]


def _guard(session: ClassSession, target: str, action: str) -> None:
    if not can_transition(session.status, target):
        raise InvalidTransition(
            f"Cannot {action} session {session.id}: status is '{session.status}'",
            current_status=session.status,
        )


def _compare_and_set(
    db: Session,
    session: ClassSession,
    expected: Iterable[str],
    action: str,
    **values,
) -> ClassSession:
    """UPDATE the row only if its status is still one of `expected`."""
    expected = list(expected)
    result = db.execute(
        update(ClassSession)
        .where(ClassSession.id == session.id, ClassSession.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(session)
        raise InvalidTransition(
            f"Cannot {action} session {session.id}: status changed to '{session.status}'",
            current_status=session.status,
        )
    db.commit()
    db.refresh(session)
    return session


def refresh_class_status(db: Session, class_model: ClassModel) -> None:
    """An active class whose sessions have all finished becomes completed."""
    if class_model is None or class_model.status != ClassStatus.ACTIVE.value:
        return
    timetable = class_model.timetable
    if timetable is not None and timetable.is_active:
        # More sessions are still to be generated
        if timetable.end_date is None or (timetable.generated_through or timetable.start_date) < timetable.end_date:
            return
    total = db.query(ClassSession).filter(ClassSession.class_id == class_model.id).count()
    finished = db.query(ClassSession).filter(
        ClassSession.class_id == class_model.id,
        ClassSession.status.in_(FINISHED_SESSION_STATUSES),
    ).count()
    if total > 0 and finished == total:
        class_model.status = ClassStatus.COMPLETED.value
        db.commit()
        logger.info("Class %d completed: all %d sessions finished", class_model.id, total)


# ============================================================================
# Transitions
# ============================================================================

def start(db: Session, session: ClassSession, by_user: User, now: Optional[datetime] = None) -> ClassSession:
    """
    Mark a session as ongoing.

    Anyone may start a session; a start by someone other than the effective
    teacher is logged for visibility but not blocked.
    """
    target = SessionStatus.ONGOING.value
    _guard(session, target, "start")
    now = now or datetime.now()

    _compare_and_set(
        db, session, _sources_for(target), "start",
        status=target,
        started_at=now,
        started_by=by_user.id if by_user else None,
    )
    if is_substitute_start(db, session):
        logger.info(
            "Session %d started by user %s who is not its teacher",
            session.id, session.started_by,
        )
    else:
        logger.info("Session %d started", session.id)
    return session


def is_substitute_start(db: Session, session: ClassSession) -> bool:
    """True when the user who started the session is not its effective teacher."""
    if session.started_by is None:
        return False
    profile = db.query(Teacher).filter(Teacher.user_id == session.started_by).first()
    return profile is None or profile.id != effective_teacher_id(session)


def end(
    db: Session,
    session: ClassSession,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> ClassSession:
    """Complete an ongoing session and record its allowance."""
    target = SessionStatus.COMPLETED.value
    _guard(session, target, "end")
    now = now or datetime.now()
    # completed_at never precedes started_at
    completed_at = max(now, session.started_at) if session.started_at else now
    allowance = allowance_for_session(db, session)

    values = {
        "status": target,
        "completed_at": completed_at,
        "allowance_amount": allowance,
    }
    if notes:
        values["teacher_notes"] = notes
    _compare_and_set(db, session, _sources_for(target), "end", **values)
    logger.info(
        "Session %d completed (%s min actual, allowance %s)",
        session.id, actual_duration_minutes(session), allowance,
    )
    refresh_class_status(db, session.class_model)
    return session


def cancel(db: Session, session: ClassSession) -> ClassSession:
    """Cancel a session that has not started. No allowance is computed."""
    target = SessionStatus.CANCELLED.value
    _guard(session, target, "cancel")
    _compare_and_set(db, session, _sources_for(target), "cancel", status=target)
    logger.info("Session %d cancelled", session.id)
    refresh_class_status(db, session.class_model)
    return session


def mark_no_show(db: Session, session: ClassSession, notes: Optional[str] = None) -> ClassSession:
    target = SessionStatus.NO_SHOW.value
    _guard(session, target, "mark as no-show")
    values = {"status": target}
    if notes:
        values["teacher_notes"] = notes
    _compare_and_set(db, session, _sources_for(target), "mark as no-show", **values)
    logger.info("Session %d marked as no-show", session.id)
    refresh_class_status(db, session.class_model)
    return session


def reschedule(
    db: Session,
    session: ClassSession,
    new_date: date,
    new_time: time,
    reason: Optional[str] = None,
) -> ClassSession:
    """
    Move a scheduled session to a new slot.

    The original row keeps its date and becomes 'rescheduled', linked through
    rescheduled_to_id to a new scheduled session at the target slot. The
    replacement keeps the substitute teacher and gets fresh attendance rows.
    Returns the replacement.
    """
    target = SessionStatus.RESCHEDULED.value
    _guard(session, target, "reschedule")
    slot_label = f"{new_date} at {new_time.strftime('%H:%M')}"

    clash = db.query(ClassSession).filter(
        ClassSession.class_id == session.class_id,
        ClassSession.session_date == new_date,
        ClassSession.session_time == new_time,
    ).first()
    if clash:
        raise DuplicateResource(
            f"Class {session.class_id} already has a session on {slot_label}",
            existing_id=clash.id,
        )

    replacement = ClassSession(
        class_id=session.class_id,
        session_date=new_date,
        session_time=new_time,
        duration_minutes=session.duration_minutes,
        status=SessionStatus.SCHEDULED.value,
        assigned_teacher_id=session.assigned_teacher_id,
    )
    db.add(replacement)
    try:
        db.flush()
        seed_attendance(db, replacement, session.class_model.course_id)
        values = {"status": target, "rescheduled_to_id": replacement.id}
        if reason:
            values["teacher_notes"] = reason
        _compare_and_set(db, session, _sources_for(target), "reschedule", **values)
    except IntegrityError:
        db.rollback()
        logger.warning("Reschedule of session %d hit the slot uniqueness constraint", session.id)
        raise DuplicateResource(f"Class {session.class_id} already has a session on {slot_label}")

    db.refresh(replacement)
    logger.info("Session %d rescheduled to %s as session %d", session.id, slot_label, replacement.id)
    return replacement


def assign_teacher(db: Session, session: ClassSession, teacher_id: Optional[int]) -> ClassSession:
    """
    Set or clear the substitute teacher for one session.

    Only scheduled sessions can be reassigned. The class's own teacher is
    never touched.
    """
    if session.status != SessionStatus.SCHEDULED.value:
        raise InvalidTransition(
            f"Cannot reassign session {session.id}: status is '{session.status}'",
            current_status=session.status,
        )
    if teacher_id is not None:
        teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
        if not teacher:
            raise NotFound(f"Teacher with ID {teacher_id} not found")

    _compare_and_set(
        db, session, [SessionStatus.SCHEDULED.value], "reassign",
        assigned_teacher_id=teacher_id,
    )
    if teacher_id is None:
        logger.info("Session %d reverted to class teacher", session.id)
    else:
        logger.info("Session %d assigned to substitute teacher %d", session.id, teacher_id)
    return session


def transition_session(
    db: Session,
    session_id: int,
    action: str,
    actor: Optional[User] = None,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> ClassSession:
    """Apply one of start / end / cancel / no_show to a session by id."""
    if action not in TRANSITION_ACTIONS:
        raise ValidationError(f"Unknown session action '{action}'")
    session = get_session(db, session_id)

    if action == "start":
        return start(db, session, actor, now=now)
    if action == "end":
        return end(db, session, now=now, notes=notes)
    if action == "cancel":
        return cancel(db, session)
    return mark_no_show(db, session, notes=notes)
