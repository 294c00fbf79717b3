"""
Shared constants for the backend.

Centralizes status enums, the session transition table and weekday names
used across services and routers.
"""
from enum import Enum


class SessionStatus(str, Enum):
    """
    All valid session statuses.

    Using str + Enum allows direct comparison with string values and JSON serialization.
    """
    SCHEDULED = 'scheduled'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'
    RESCHEDULED = 'rescheduled'


class ClassStatus(str, Enum):
    DRAFT = 'draft'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    SUSPENDED = 'suspended'


class ClassType(str, Enum):
    INDIVIDUAL = 'individual'
    GROUP = 'group'


class RateType(str, Enum):
    PER_CLASS = 'per_class'
    PER_STUDENT = 'per_student'
    PER_SESSION = 'per_session'


class CommissionType(str, Enum):
    FIXED = 'fixed'
    PERCENTAGE = 'percentage'


class BillingType(str, Enum):
    """Course billing type, owned by the billing settings collaborator."""
    PER_SESSION = 'per_session'
    PER_MONTH = 'per_month'
    PER_MINUTE = 'per_minute'


class RecurrencePattern(str, Enum):
    WEEKLY = 'weekly'
    BI_WEEKLY = 'bi_weekly'


class PayslipStatus(str, Enum):
    DRAFT = 'draft'
    FINALIZED = 'finalized'
    PAID = 'paid'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'
    EXCUSED = 'excused'


# Legal session transitions: source status -> allowed target statuses.
# A rescheduled session hands over to its replacement and goes no further.
SESSION_TRANSITIONS = {
    SessionStatus.SCHEDULED.value: {
        SessionStatus.ONGOING.value,
        SessionStatus.CANCELLED.value,
        SessionStatus.NO_SHOW.value,
        SessionStatus.RESCHEDULED.value,
    },
    SessionStatus.ONGOING.value: {
        SessionStatus.COMPLETED.value,
    },
    SessionStatus.RESCHEDULED.value: set(),
    SessionStatus.COMPLETED.value: set(),
    SessionStatus.CANCELLED.value: set(),
    SessionStatus.NO_SHOW.value: set(),
}

# Session statuses that end a session's lifecycle
TERMINAL_SESSION_STATUSES = [
    SessionStatus.COMPLETED.value,
    SessionStatus.CANCELLED.value,
    SessionStatus.NO_SHOW.value,
]

# Statuses that count as finished when deciding whether a class is completed
FINISHED_SESSION_STATUSES = TERMINAL_SESSION_STATUSES + [SessionStatus.RESCHEDULED.value]

# Enrollment statuses that receive attendance placeholders
ACTIVE_ENROLLMENT_STATUS = 'active'

# Index matches date.weekday(): Monday = 0
WEEKDAY_NAMES = [
    'monday',
    'tuesday',
    'wednesday',
    'thursday',
    'friday',
    'saturday',
    'sunday',
]

# All valid values (for validation)
ALL_SESSION_STATUSES = [status.value for status in SessionStatus]
ALL_PAYSLIP_STATUSES = [status.value for status in PayslipStatus]
