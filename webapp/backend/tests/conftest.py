"""
Pytest fixtures for backend tests.

Usage:
    pytest tests/ --cov=. --cov-report=html
"""
import os
import pytest
from datetime import date, datetime, time
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-testing-only")

from database import Base, get_db
from main import app
from auth.jwt_handler import create_user_token
from models import (
    ClassModel, ClassSession, Course, CourseBillingSettings, Enrollment, Student, Teacher, User,
)
from utils.rate_limiter import clear_rate_limits


# In-memory SQLite for fast tests (no external DB dependency)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Create a fresh database session for each test.
    Tables are created before and dropped after each test.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """
    FastAPI test client with overridden database dependency.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    clear_rate_limits()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def login_as(client: TestClient):
    """Returns a function that puts a valid access_token cookie for a user on the client."""
    def _login(user: User) -> TestClient:
        client.cookies.set("access_token", create_user_token(user))
        return client
    return _login


# ============================================================================
# People
# ============================================================================

@pytest.fixture
def admin_user(db_session: Session) -> User:
    user = User(email="admin@example.com", name="Office Admin", role="Admin")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def teacher_user(db_session: Session) -> User:
    user = User(email="teacher@example.com", name="Ms Lee", role="Teacher")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def teacher(db_session: Session, teacher_user: User) -> Teacher:
    """Teaching profile for teacher_user."""
    profile = Teacher(user_id=teacher_user.id, display_name="Ms Lee", is_active=True)
    db_session.add(profile)
    db_session.commit()
    db_session.refresh(profile)
    return profile


@pytest.fixture
def substitute(db_session: Session) -> Teacher:
    """A second teacher with their own user account."""
    user = User(email="sub@example.com", name="Mr Chan", role="Teacher")
    db_session.add(user)
    db_session.flush()
    profile = Teacher(user_id=user.id, display_name="Mr Chan", is_active=True)
    db_session.add(profile)
    db_session.commit()
    db_session.refresh(profile)
    return profile


# ============================================================================
# Course, billing and enrollments
# ============================================================================

@pytest.fixture
def course(db_session: Session) -> Course:
    course = Course(name="IELTS Speaking", is_active=True)
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture
def per_month_billing(db_session: Session, course: Course) -> CourseBillingSettings:
    """400 per month over 4 sessions = 100 per session."""
    billing = CourseBillingSettings(
        course_id=course.id,
        billing_type="per_month",
        price_per_month=Decimal("400.00"),
        sessions_per_month=4,
    )
    db_session.add(billing)
    db_session.commit()
    return billing


@pytest.fixture
def enrolled_students(db_session: Session, course: Course) -> list:
    """Three active enrollments and one withdrawn one."""
    students = []
    for name, status in [("Amy", "active"), ("Ben", "active"), ("Cat", "active"), ("Dan", "withdrawn")]:
        student = Student(student_name=name)
        db_session.add(student)
        db_session.flush()
        db_session.add(Enrollment(course_id=course.id, student_id=student.id, status=status))
        students.append(student)
    db_session.commit()
    return students


# ============================================================================
# Classes and sessions
# ============================================================================

@pytest.fixture
def make_class(db_session: Session, course: Course, teacher: Teacher):
    """Factory for classes; defaults to an active group class paying 50 per class."""
    def _make(**overrides) -> ClassModel:
        values = dict(
            course_id=course.id,
            teacher_id=teacher.id,
            title="Speaking Group A",
            duration_minutes=60,
            class_type="group",
            max_capacity=4,
            is_recurring=True,
            teacher_rate=Decimal("50.00"),
            rate_type="per_class",
            commission_type="percentage",
            commission_value=Decimal("0"),
            status="active",
        )
        values.update(overrides)
        class_model = ClassModel(**values)
        db_session.add(class_model)
        db_session.commit()
        db_session.refresh(class_model)
        return class_model
    return _make


@pytest.fixture
def make_session(db_session: Session):
    """Factory for sessions of a class at a given date/time and status."""
    def _make(class_model: ClassModel, session_date: date = date(2024, 3, 4),
              session_time: time = time(9, 0), **overrides) -> ClassSession:
        values = dict(
            class_id=class_model.id,
            session_date=session_date,
            session_time=session_time,
            duration_minutes=class_model.duration_minutes,
            status="scheduled",
        )
        values.update(overrides)
        session = ClassSession(**values)
        db_session.add(session)
        db_session.commit()
        db_session.refresh(session)
        return session
    return _make


@pytest.fixture
def make_payable_session(make_session):
    """Factory for completed, verified sessions with an allowance."""
    def _make(class_model: ClassModel, session_date: date, amount: Decimal = Decimal("50.00"),
              session_time: time = time(9, 0), **overrides) -> ClassSession:
        started = datetime.combine(session_date, session_time)
        values = dict(
            status="completed",
            started_at=started,
            completed_at=started.replace(hour=started.hour + 1),
            allowance_amount=amount,
            verified_at=started.replace(hour=started.hour + 2),
            verifier_role="Admin",
        )
        values.update(overrides)
        return make_session(class_model, session_date, session_time, **values)
    return _make
