"""
Shared query helper functions.

Centralizes common SQLAlchemy query patterns like joinedload options
to reduce duplication across routers.
"""
from sqlalchemy.orm import joinedload
from models import ClassModel, ClassSession, Payslip, Teacher


def session_with_relations():
    """
    Standard joinedload options for session queries.

    Loads the class (with its teacher) and the substitute teacher, which is
    everything build_session_response reads.

    Usage:
        query.options(*session_with_relations())
    """
    return [
        joinedload(ClassSession.class_model).joinedload(ClassModel.teacher),
        joinedload(ClassSession.assigned_teacher),
    ]


def class_with_relations():
    """
    Joinedload options for class queries.

    Usage:
        query.options(*class_with_relations())
    """
    return [
        joinedload(ClassModel.course),
        joinedload(ClassModel.teacher),
        joinedload(ClassModel.timetable),
    ]


def payslip_with_teacher():
    return [
        joinedload(Payslip.teacher).joinedload(Teacher.user),
    ]
