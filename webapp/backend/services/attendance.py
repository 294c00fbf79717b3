"""
Attendance placeholder seeding.

Every new session gets one 'absent' row per active enrollment in its course.
Marking attendance is done by another subsystem.
"""
import logging

from sqlalchemy.orm import Session

from constants import AttendanceStatus
from models import Attendance, ClassSession
from services.collaborators import active_enrollments_for_course

logger = logging.getLogger(__name__)


def seed_attendance(db: Session, session: ClassSession, course_id: int) -> int:
    """
    Add missing attendance rows for a session. Does not commit.

    Students that already have a row for the session are skipped, so calling
    this twice never creates duplicates.
    """
    if session.id is None:
        db.flush()

    existing = {
        student_id
        for (student_id,) in db.query(Attendance.student_id).filter(Attendance.session_id == session.id)
    }
    created = 0
    for enrollment in active_enrollments_for_course(db, course_id):
        if enrollment.student_id in existing:
            continue
        db.add(Attendance(
            session_id=session.id,
            student_id=enrollment.student_id,
            enrollment_id=enrollment.enrollment_id,
            status=AttendanceStatus.ABSENT.value,
        ))
        existing.add(enrollment.student_id)
        created += 1

    if created:
        logger.debug("Seeded %d attendance rows for session %d", created, session.id)
    return created
