"""
SQLAlchemy models for the class scheduling and teacher compensation backend.
Users, students, courses, enrollments and billing settings are owned by
collaborating subsystems; this backend reads them.
"""
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Time, Text, ForeignKey, DECIMAL, Boolean, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class User(Base):
    """
    Application user (identity collaborator).
    The role string is snapshotted onto verification records.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default='Teacher')

    # Relationships
    teacher_profile = relationship("Teacher", back_populates="user", uselist=False)


class Teacher(Base):
    """
    Teaching profile for a user.
    A user without a profile cannot teach classes or receive payslips.
    """
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)

    # Relationships
    user = relationship("User", back_populates="teacher_profile")
    classes = relationship("ClassModel", back_populates="teacher")
    payslips = relationship("Payslip", back_populates="teacher")


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    student_name = Column(String(255), nullable=False)
    phone = Column(String(100))

    # Relationships
    enrollments = relationship("Enrollment", back_populates="student")


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)

    # Relationships
    billing_settings = relationship("CourseBillingSettings", back_populates="course", uselist=False)
    enrollments = relationship("Enrollment", back_populates="course")
    classes = relationship("ClassModel", back_populates="course")


class CourseBillingSettings(Base):
    """
    Per-course pricing (billing collaborator).
    Used to derive the session fee for per_session teacher rates.
    """
    __tablename__ = "course_billing_settings"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, unique=True)
    billing_type = Column(String(20), nullable=False, comment='per_session, per_month or per_minute')
    price_per_session = Column(DECIMAL(10, 2))
    price_per_month = Column(DECIMAL(10, 2))
    sessions_per_month = Column(Integer)
    price_per_minute = Column(DECIMAL(10, 4))

    # Relationships
    course = relationship("Course", back_populates="billing_settings")


class Enrollment(Base):
    """
    Course enrollment (enrollment collaborator).
    Active enrollments receive attendance placeholders on new sessions.
    """
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    status = Column(String(20), nullable=False, default='active', comment='active, completed or withdrawn')
    enrolled_at = Column(DateTime, default=func.now())

    # Relationships
    course = relationship("Course", back_populates="enrollments")
    student = relationship("Student", back_populates="enrollments")


class ClassModel(Base):
    """
    A teachable offering of a course with its teacher and billing parameters.
    Owns zero or one timetable and all of its sessions.
    """
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    duration_minutes = Column(Integer, nullable=False, default=60)
    class_type = Column(String(20), nullable=False, default='group')
    max_capacity = Column(Integer, nullable=False, default=1)
    is_recurring = Column(Boolean, nullable=False, default=False)

    # Billing
    teacher_rate = Column(DECIMAL(10, 2), default=0.00)
    rate_type = Column(String(20), nullable=False, default='per_class', comment='per_class, per_student or per_session')
    commission_type = Column(String(20), default='percentage', comment='fixed or percentage')
    commission_value = Column(DECIMAL(10, 2), default=0.00)

    status = Column(String(20), nullable=False, default='draft')

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    course = relationship("Course", back_populates="classes")
    teacher = relationship("Teacher", back_populates="classes")
    timetable = relationship("Timetable", back_populates="class_model", uselist=False)
    sessions = relationship("ClassSession", back_populates="class_model", order_by="ClassSession.session_date")


class Timetable(Base):
    """
    Recurring weekly schedule for a class.
    weekly_schedule maps lower-case day names to lists of "HH:MM" start times.
    """
    __tablename__ = "timetables"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, unique=True)
    weekly_schedule = Column(JSON, nullable=False)
    recurrence_pattern = Column(String(20), nullable=False, default='weekly')
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True, comment='NULL = open-ended')
    is_active = Column(Boolean, nullable=False, default=True)
    generated_through = Column(Date, nullable=True, comment='Last date sessions were materialised for')

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    class_model = relationship("ClassModel", back_populates="timetable")


class ClassSession(Base):
    """
    One dated occurrence of a class.
    Tracks lifecycle status, actual timings, allowance and verification.
    """
    __tablename__ = "class_sessions"
    __table_args__ = (
        UniqueConstraint("class_id", "session_date", "session_time", name="uq_class_session_slot"),
        Index("ix_class_sessions_status_date", "status", "session_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)

    # Session details
    session_date = Column(Date, nullable=False, index=True)
    session_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, comment='Target duration copied from the class')

    # Status tracking
    status = Column(String(20), nullable=False, default='scheduled')
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    started_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    teacher_notes = Column(Text)

    # Reschedule tracking
    rescheduled_to_id = Column(Integer, ForeignKey("class_sessions.id"), nullable=True)

    # Substitute teacher for this instance only (NULL = class teacher)
    assigned_teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=True, index=True)

    # Compensation
    allowance_amount = Column(DECIMAL(10, 2), nullable=True)

    # Verification
    verified_at = Column(DateTime)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verifier_role = Column(String(50), comment='Role of the verifier at verification time')

    # Payslip this session was paid through (NULL = not yet included)
    payslip_id = Column(Integer, ForeignKey("payslips.id"), nullable=True, index=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    class_model = relationship("ClassModel", back_populates="sessions")
    assigned_teacher = relationship("Teacher", foreign_keys=[assigned_teacher_id])
    rescheduled_to = relationship("ClassSession", remote_side=[id], foreign_keys=[rescheduled_to_id])
    attendances = relationship("Attendance", back_populates="session")
    payslip = relationship("Payslip", back_populates="sessions")


class Attendance(Base):
    """
    One row per (session, enrolled student), seeded as absent.
    Attendance taking itself belongs to another subsystem.
    """
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("class_sessions.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    enrollment_id = Column(Integer, ForeignKey("enrollments.id"), nullable=True)
    status = Column(String(20), nullable=False, default='absent')
    checked_in_at = Column(DateTime)

    # Relationships
    session = relationship("ClassSession", back_populates="attendances")
    student = relationship("Student")


class Payslip(Base):
    """
    Monthly aggregation of a teacher's verified session allowances.
    Its line items are the sessions linked through class_sessions.payslip_id.
    """
    __tablename__ = "payslips"
    __table_args__ = (
        UniqueConstraint("teacher_id", "year", "month", name="uq_payslip_teacher_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    total_sessions = Column(Integer, nullable=False, default=0)
    total_amount = Column(DECIMAL(12, 2), nullable=False, default=0.00)
    status = Column(String(20), nullable=False, default='draft')
    notes = Column(Text)

    generated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    generated_at = Column(DateTime)
    finalized_at = Column(DateTime)
    paid_at = Column(DateTime)

    # Relationships
    teacher = relationship("Teacher", back_populates="payslips")
    sessions = relationship("ClassSession", back_populates="payslip", order_by="ClassSession.session_date")
