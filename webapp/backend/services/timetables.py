"""
Timetable management and session materialisation.

Expansion itself lives in services/recurrence.py. This module persists its
output: sessions are upserted on (class, date, time), so re-running any
expansion is harmless. Sessions before today are never created, moved or
removed once a range has been materialised.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app_config.settings import SESSION_GENERATION_HORIZON_MONTHS
from constants import ClassStatus, RecurrencePattern, SessionStatus
from exceptions import DuplicateResource, NotFound, ValidationError
from models import Attendance, ClassModel, ClassSession, Timetable
from services.attendance import seed_attendance
from services.recurrence import Slot, WeeklySchedule, expand, horizon_end

logger = logging.getLogger(__name__)


@dataclass
class ExpansionResult:
    created: int = 0
    skipped: int = 0
    removed: int = 0
    cancelled: int = 0
    through: Optional[date] = None


def _validate_pattern(pattern: str) -> str:
    if pattern not in (RecurrencePattern.WEEKLY.value, RecurrencePattern.BI_WEEKLY.value):
        raise ValidationError(f"Invalid recurrence pattern '{pattern}'")
    return pattern


def _validate_schedule(weekly_schedule: Dict[str, Iterable]) -> WeeklySchedule:
    schedule = WeeklySchedule.from_mapping(weekly_schedule)
    if schedule.is_empty:
        raise ValidationError("weekly_schedule must contain at least one start time")
    return schedule


def _validate_range(start_date: date, end_date: Optional[date]) -> None:
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")


def get_timetable(db: Session, timetable_id: int) -> Timetable:
    timetable = db.query(Timetable).filter(Timetable.id == timetable_id).first()
    if not timetable:
        raise NotFound(f"Timetable with ID {timetable_id} not found")
    return timetable


def resolve_through(
    timetable: Timetable,
    today: date,
    through_date: Optional[date] = None,
    horizon_months: Optional[int] = None,
) -> date:
    """Last date to materialise: the requested date, capped by end_date."""
    if horizon_months is None:
        horizon_months = SESSION_GENERATION_HORIZON_MONTHS
    through = through_date or timetable.end_date or horizon_end(today, horizon_months)
    if timetable.end_date is not None:
        through = min(through, timetable.end_date)
    return through


def _existing_slots(db: Session, class_id: int, first: date, last: date) -> set:
    rows = db.query(ClassSession.session_date, ClassSession.session_time).filter(
        ClassSession.class_id == class_id,
        ClassSession.session_date >= first,
        ClassSession.session_date <= last,
    ).all()
    return {(row_date, row_time) for row_date, row_time in rows}


def _materialise(db: Session, class_model: ClassModel, slots: List[Slot], result: ExpansionResult) -> None:
    """Create sessions for slots that do not exist yet. Does not commit."""
    if not slots:
        return
    existing = _existing_slots(db, class_model.id, slots[0][0], slots[-1][0])
    for session_date, session_time in slots:
        if (session_date, session_time) in existing:
            result.skipped += 1
            continue
        session = ClassSession(
            class_id=class_model.id,
            session_date=session_date,
            session_time=session_time,
            duration_minutes=class_model.duration_minutes,
            status=SessionStatus.SCHEDULED.value,
        )
        db.add(session)
        db.flush()
        seed_attendance(db, session, class_model.course_id)
        existing.add((session_date, session_time))
        result.created += 1

    if result.created and class_model.status == ClassStatus.DRAFT.value:
        class_model.status = ClassStatus.ACTIVE.value


@contextmanager
def _expansion_transaction(db: Session, timetable: Timetable):
    """Commit the block, or translate a slot clash from a concurrent run into DuplicateResource."""
    timetable_id = timetable.id
    try:
        yield
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Concurrent session generation detected for timetable %s", timetable_id)
        raise DuplicateResource(
            "Sessions for this timetable were generated concurrently; retry the request",
            existing_id=timetable_id,
        )


def create_timetable(
    db: Session,
    class_id: int,
    weekly_schedule: Dict[str, Iterable],
    recurrence_pattern: str,
    start_date: date,
    end_date: Optional[date] = None,
    today: Optional[date] = None,
    horizon_months: Optional[int] = None,
):
    """
    Attach a recurring timetable to a class and materialise its sessions.

    Returns (timetable, ExpansionResult).
    """
    today = today or date.today()
    class_model = db.query(ClassModel).filter(ClassModel.id == class_id).first()
    if not class_model:
        raise NotFound(f"Class with ID {class_id} not found")

    existing = db.query(Timetable).filter(Timetable.class_id == class_id).first()
    if existing:
        raise DuplicateResource(f"Class {class_id} already has a timetable", existing_id=existing.id)

    _validate_pattern(recurrence_pattern)
    schedule = _validate_schedule(weekly_schedule)
    _validate_range(start_date, end_date)

    timetable = Timetable(
        class_id=class_id,
        weekly_schedule=schedule.to_mapping(),
        recurrence_pattern=recurrence_pattern,
        start_date=start_date,
        end_date=end_date,
        is_active=True,
    )
    class_model.is_recurring = True
    db.add(timetable)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateResource(f"Class {class_id} already has a timetable")

    result = ExpansionResult(through=resolve_through(timetable, today, horizon_months=horizon_months))
    slots = expand(
        schedule, recurrence_pattern, start_date, end_date, today,
        window_end=result.through,
    )
    with _expansion_transaction(db, timetable):
        _materialise(db, class_model, slots, result)
        timetable.generated_through = result.through
    db.refresh(timetable)

    logger.info(
        "Timetable %d created for class %d: %d sessions through %s",
        timetable.id, class_id, result.created, result.through,
    )
    return timetable, result


def regenerate_sessions(
    db: Session,
    timetable_id: int,
    through_date: Optional[date] = None,
    today: Optional[date] = None,
    horizon_months: Optional[int] = None,
) -> ExpansionResult:
    """
    Materialise sessions up to through_date (or the horizon).

    Dates already materialised and now in the past are left alone; every
    other slot is upserted, so repeated calls create nothing new.
    """
    today = today or date.today()
    timetable = get_timetable(db, timetable_id)
    if not timetable.is_active:
        raise ValidationError(f"Timetable {timetable_id} is inactive; activate it before generating sessions")

    class_model = timetable.class_model
    schedule = WeeklySchedule.from_mapping(timetable.weekly_schedule)
    result = ExpansionResult(through=resolve_through(timetable, today, through_date, horizon_months))

    window_start = timetable.start_date
    if timetable.generated_through is not None:
        window_start = max(window_start, min(today, timetable.generated_through + timedelta(days=1)))

    slots = expand(
        schedule, timetable.recurrence_pattern, timetable.start_date, timetable.end_date, today,
        window_start=window_start, window_end=result.through,
    )
    with _expansion_transaction(db, timetable):
        _materialise(db, class_model, slots, result)
        if timetable.generated_through is None or result.through > timetable.generated_through:
            timetable.generated_through = result.through

    logger.info(
        "Timetable %d regenerated through %s: %d created, %d already present",
        timetable.id, result.through, result.created, result.skipped,
    )
    return result


def _replacement_ids(db: Session, class_id: int) -> set:
    """Sessions created by a reschedule rather than by the timetable."""
    rows = db.query(ClassSession.rescheduled_to_id).filter(
        ClassSession.class_id == class_id,
        ClassSession.rescheduled_to_id.isnot(None),
    ).all()
    return {row_id for (row_id,) in rows}


def update_timetable(
    db: Session,
    timetable_id: int,
    weekly_schedule: Optional[Dict[str, Iterable]] = None,
    recurrence_pattern: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    clear_end_date: bool = False,
    today: Optional[date] = None,
    horizon_months: Optional[int] = None,
) -> ExpansionResult:
    """
    Change a timetable and re-expand the future window (today onwards).

    Future scheduled sessions that no longer fit the new definition are
    deleted when they have no attendance rows and cancelled otherwise.
    Past sessions and sessions in any other status are never touched. An
    inactive timetable only loses the sessions the new definition rules out.
    """
    today = today or date.today()
    timetable = get_timetable(db, timetable_id)
    class_model = timetable.class_model

    schedule = (
        _validate_schedule(weekly_schedule)
        if weekly_schedule is not None
        else WeeklySchedule.from_mapping(timetable.weekly_schedule)
    )
    pattern = _validate_pattern(recurrence_pattern) if recurrence_pattern is not None else timetable.recurrence_pattern
    new_start = start_date or timetable.start_date
    new_end = None if clear_end_date else (end_date if end_date is not None else timetable.end_date)
    _validate_range(new_start, new_end)

    timetable.weekly_schedule = schedule.to_mapping()
    timetable.recurrence_pattern = pattern
    timetable.start_date = new_start
    timetable.end_date = new_end

    result = ExpansionResult()
    through = resolve_through(timetable, today, horizon_months=horizon_months)
    if timetable.generated_through is not None and new_end is None:
        through = max(through, timetable.generated_through)
    result.through = through

    desired = expand(schedule, pattern, new_start, new_end, today, window_start=today, window_end=through)
    desired_set = set(desired)

    replacements = _replacement_ids(db, class_model.id)
    future_sessions = db.query(ClassSession).filter(
        ClassSession.class_id == class_model.id,
        ClassSession.session_date >= today,
        ClassSession.status == SessionStatus.SCHEDULED.value,
    ).all()
    for session in future_sessions:
        if session.id in replacements or (session.session_date, session.session_time) in desired_set:
            continue
        has_attendance = db.query(Attendance.id).filter(Attendance.session_id == session.id).first() is not None
        if has_attendance:
            session.status = SessionStatus.CANCELLED.value
            result.cancelled += 1
        else:
            db.delete(session)
            result.removed += 1
    db.flush()

    # Paused timetables keep their definition but generate nothing new.
    with _expansion_transaction(db, timetable):
        if timetable.is_active:
            _materialise(db, class_model, desired, result)
            timetable.generated_through = through

    logger.info(
        "Timetable %d updated: %d created, %d removed, %d cancelled (window %s..%s)",
        timetable.id, result.created, result.removed, result.cancelled, today, through,
    )
    return result


def deactivate_timetable(db: Session, timetable_id: int) -> Timetable:
    """Stop future generation. Existing sessions are kept."""
    timetable = get_timetable(db, timetable_id)
    timetable.is_active = False
    db.commit()
    db.refresh(timetable)
    logger.info("Timetable %d deactivated", timetable.id)
    return timetable


def activate_timetable(db: Session, timetable_id: int) -> Timetable:
    timetable = get_timetable(db, timetable_id)
    timetable.is_active = True
    db.commit()
    db.refresh(timetable)
    logger.info("Timetable %d activated", timetable.id)
    return timetable


def delete_timetable(db: Session, timetable_id: int) -> int:
    """Remove the timetable definition; its sessions stay. Returns the class id."""
    timetable = get_timetable(db, timetable_id)
    class_id = timetable.class_id
    class_model = timetable.class_model
    class_model.is_recurring = False
    db.delete(timetable)
    db.commit()
    logger.info("Timetable %d deleted; sessions of class %d kept", timetable_id, class_id)
    return class_id
