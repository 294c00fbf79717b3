"""
Tests for monthly payslip aggregation.

Covers:
- Eligibility checks and their reasons
- Generation, duplicate protection and substitute attribution
- Batch generation partitioning successes and failures
- Draft sync and the draft -> finalized -> paid lifecycle
- Monthly statistics and available periods
"""
import pytest
from datetime import date
from decimal import Decimal

from exceptions import DuplicateResource, InvalidTransition, NotFound, ValidationError
from models import Attendance, ClassSession, Payslip
from services import payslips as payslip_service
from services.payslips import REASON_ALREADY_EXISTS, REASON_NO_PROFILE, REASON_NO_SESSIONS
from utils.periods import Period


MARCH = Period(2024, 3)


@pytest.fixture
def march_sessions(make_class, make_payable_session):
    """Three payable March sessions worth 50, 50 and 30."""
    class_model = make_class()
    return [
        make_payable_session(class_model, date(2024, 3, 4)),
        make_payable_session(class_model, date(2024, 3, 6)),
        make_payable_session(class_model, date(2024, 3, 11), amount=Decimal("30.00")),
    ]


# ============================================================================
# Eligibility
# ============================================================================

class TestEligibleSessions:
    """Tests for which sessions count toward a payslip."""

    def test_completed_verified_in_month(self, db_session, march_sessions, teacher):
        result = payslip_service.eligible_sessions(db_session, teacher.id, MARCH)
        assert [s.id for s in result] == [s.id for s in march_sessions]

    def test_excludes_unverified_and_other_months(
        self, db_session, make_class, make_payable_session, teacher,
    ):
        class_model = make_class()
        make_payable_session(class_model, date(2024, 3, 4), verified_at=None)
        make_payable_session(class_model, date(2024, 4, 1))
        make_payable_session(class_model, date(2024, 2, 29))
        kept = make_payable_session(class_model, date(2024, 3, 31))

        result = payslip_service.eligible_sessions(db_session, teacher.id, MARCH)
        assert [s.id for s in result] == [kept.id]

    def test_substitute_session_counts_for_substitute(
        self, db_session, make_class, make_payable_session, teacher, substitute,
    ):
        class_model = make_class()
        own = make_payable_session(class_model, date(2024, 3, 4))
        covered = make_payable_session(class_model, date(2024, 3, 6), assigned_teacher_id=substitute.id)

        assert [s.id for s in payslip_service.eligible_sessions(db_session, teacher.id, MARCH)] == [own.id]
        assert [s.id for s in payslip_service.eligible_sessions(db_session, substitute.id, MARCH)] == [covered.id]
        assert payslip_service.teachers_with_eligible_sessions(db_session, MARCH) == sorted([teacher.id, substitute.id])


class TestCanGenerate:
    """Tests for can_generate()."""

    def test_eligible_with_totals(self, db_session, march_sessions, teacher):
        report = payslip_service.can_generate(db_session, teacher.id, MARCH)
        assert report.eligible
        assert report.eligible_session_count == 3
        assert report.total_amount == Decimal("130.00")

    def test_no_profile(self, db_session):
        report = payslip_service.can_generate(db_session, 9999, MARCH)
        assert not report.eligible
        assert report.reason == REASON_NO_PROFILE

    def test_no_sessions(self, db_session, teacher):
        report = payslip_service.can_generate(db_session, teacher.id, MARCH)
        assert report.reason == REASON_NO_SESSIONS

    def test_already_exists(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        report = payslip_service.can_generate(db_session, teacher.id, MARCH)
        assert report.reason == REASON_ALREADY_EXISTS
        assert report.existing_payslip_id == payslip.id


# ============================================================================
# Generation
# ============================================================================

class TestGenerate:
    """Tests for generate()."""

    def test_creates_draft_with_totals(self, db_session, march_sessions, teacher, admin_user):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH, generated_by=admin_user)

        assert payslip.status == "draft"
        assert (payslip.year, payslip.month) == (2024, 3)
        assert payslip.total_sessions == 3
        assert payslip.total_amount == Decimal("130.00")
        assert payslip.generated_by == admin_user.id
        linked = db_session.query(ClassSession).filter(ClassSession.payslip_id == payslip.id).count()
        assert linked == 3

    def test_second_generation_is_duplicate(self, db_session, march_sessions, teacher):
        """Generating the same month twice fails and leaves the first payslip untouched."""
        first = payslip_service.generate(db_session, teacher.id, MARCH)

        with pytest.raises(DuplicateResource) as exc_info:
            payslip_service.generate(db_session, teacher.id, MARCH)

        assert exc_info.value.existing_id == first.id
        assert db_session.query(Payslip).count() == 1
        db_session.refresh(first)
        assert first.total_amount == Decimal("130.00")

    def test_concurrent_generation_is_duplicate(self, db_session, march_sessions, teacher, monkeypatch):
        """If the existence check misses a payslip created meanwhile, the unique period still wins."""
        first = payslip_service.generate(db_session, teacher.id, MARCH)

        real_find = payslip_service.find_payslip
        calls = []

        def stale_find(db, teacher_id, period):
            calls.append(teacher_id)
            return None if len(calls) == 1 else real_find(db, teacher_id, period)

        monkeypatch.setattr(payslip_service, "find_payslip", stale_find)

        with pytest.raises(DuplicateResource) as exc_info:
            payslip_service.generate(db_session, teacher.id, MARCH)

        assert exc_info.value.existing_id == first.id
        assert db_session.query(Payslip).count() == 1
        db_session.refresh(first)
        assert first.total_amount == Decimal("130.00")
        assert first.total_sessions == 3
        linked = db_session.query(ClassSession).filter(ClassSession.payslip_id == first.id).count()
        assert linked == 3

    def test_no_sessions_rejected(self, db_session, teacher):
        with pytest.raises(ValidationError):
            payslip_service.generate(db_session, teacher.id, MARCH)
        assert db_session.query(Payslip).count() == 0

    def test_unknown_teacher(self, db_session):
        with pytest.raises(NotFound):
            payslip_service.generate(db_session, 9999, MARCH)

    def test_zero_allowance_sessions_are_included(
        self, db_session, make_class, make_payable_session, teacher,
    ):
        class_model = make_class()
        make_payable_session(class_model, date(2024, 3, 4), amount=Decimal("0.00"))
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        assert payslip.total_sessions == 1
        assert payslip.total_amount == Decimal("0.00")


class TestGenerateBatch:
    """Tests for generate_batch()."""

    def test_partitions_success_and_failure(
        self, db_session, make_class, make_payable_session, teacher, substitute,
    ):
        make_payable_session(make_class(), date(2024, 3, 4))

        result = payslip_service.generate_batch(db_session, [teacher.id, substitute.id, 9999], MARCH)

        assert [s["teacher_id"] for s in result.successful] == [teacher.id]
        assert result.successful[0]["total_amount"] == Decimal("50.00")
        reasons = {f["teacher_id"]: f["reason"] for f in result.failed}
        assert reasons[substitute.id] == REASON_NO_SESSIONS
        assert 9999 in reasons

    def test_defaults_to_teachers_with_sessions(
        self, db_session, make_class, make_payable_session, teacher, substitute,
    ):
        class_model = make_class()
        make_payable_session(class_model, date(2024, 3, 4))
        make_payable_session(class_model, date(2024, 3, 6), assigned_teacher_id=substitute.id)

        result = payslip_service.generate_batch(db_session, None, MARCH)

        assert sorted(s["teacher_id"] for s in result.successful) == sorted([teacher.id, substitute.id])
        assert result.failed == []

    def test_existing_payslip_reported(self, db_session, march_sessions, teacher):
        first = payslip_service.generate(db_session, teacher.id, MARCH)
        result = payslip_service.generate_batch(db_session, [teacher.id], MARCH)

        assert result.successful == []
        assert result.failed[0]["existing_payslip_id"] == first.id


# ============================================================================
# Line items and previews
# ============================================================================

class TestLineItemsAndPreview:
    """Tests for payslip detail and dry-run previews."""

    def test_line_items_count_present_students(
        self, db_session, march_sessions, teacher, enrolled_students,
    ):
        first = march_sessions[0]
        db_session.add_all([
            Attendance(session_id=first.id, student_id=enrolled_students[0].id, status="present"),
            Attendance(session_id=first.id, student_id=enrolled_students[1].id, status="late"),
            Attendance(session_id=first.id, student_id=enrolled_students[2].id, status="absent"),
        ])
        db_session.commit()
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)

        items = payslip_service.line_items(db_session, payslip)

        assert [item["session_id"] for item in items] == [s.id for s in march_sessions]
        assert items[0]["present_count"] == 2
        assert items[1]["present_count"] == 0
        assert items[0]["course_name"] == "IELTS Speaking"

    def test_preview_writes_nothing(self, db_session, march_sessions, teacher):
        previews = payslip_service.preview(db_session, [teacher.id], MARCH)

        assert previews[0]["teacher_name"] == "Ms Lee"
        assert previews[0]["eligibility"].eligible
        assert previews[0]["total_amount"] == Decimal("130.00")
        assert len(previews[0]["sessions"]) == 3
        assert db_session.query(Payslip).count() == 0


# ============================================================================
# Lifecycle
# ============================================================================

class TestSync:
    """Tests for refreshing a draft."""

    def test_adds_newly_verified_sessions(
        self, db_session, march_sessions, make_payable_session, teacher,
    ):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        make_payable_session(march_sessions[0].class_model, date(2024, 3, 13), amount=Decimal("20.00"))

        payslip_service.sync(db_session, payslip)

        assert payslip.total_sessions == 4
        assert payslip.total_amount == Decimal("150.00")

    def test_releases_sessions_no_longer_payable(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        dropped = march_sessions[2]
        dropped.verified_at = None
        db_session.commit()

        payslip_service.sync(db_session, payslip)

        db_session.refresh(dropped)
        assert dropped.payslip_id is None
        assert payslip.total_amount == Decimal("100.00")

    def test_finalized_cannot_sync(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        payslip_service.finalize(db_session, payslip)
        with pytest.raises(InvalidTransition):
            payslip_service.sync(db_session, payslip)


class TestPayslipLifecycle:
    """Tests for draft -> finalized -> paid and reverting."""

    def test_finalize_then_pay(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)

        payslip_service.finalize(db_session, payslip)
        assert payslip.status == "finalized"
        assert payslip.finalized_at is not None

        payslip_service.mark_paid(db_session, payslip)
        assert payslip.status == "paid"
        assert payslip.paid_at is not None

    def test_cannot_pay_draft(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        with pytest.raises(InvalidTransition) as exc_info:
            payslip_service.mark_paid(db_session, payslip)
        assert exc_info.value.current_status == "draft"

    def test_empty_draft_cannot_finalize(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        for session in march_sessions:
            session.verified_at = None
        db_session.commit()
        payslip_service.sync(db_session, payslip)

        with pytest.raises(InvalidTransition):
            payslip_service.finalize(db_session, payslip)

    def test_revert_to_draft(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        payslip_service.finalize(db_session, payslip)

        payslip_service.revert_to_draft(db_session, payslip)

        assert payslip.status == "draft"
        assert payslip.finalized_at is None

    def test_paid_cannot_revert(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        payslip_service.finalize(db_session, payslip)
        payslip_service.mark_paid(db_session, payslip)
        with pytest.raises(InvalidTransition):
            payslip_service.revert_to_draft(db_session, payslip)

    def test_delete_draft_releases_sessions(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        payslip_service.delete_draft(db_session, payslip)

        assert db_session.query(Payslip).count() == 0
        assert db_session.query(ClassSession).filter(ClassSession.payslip_id.isnot(None)).count() == 0
        # The month can be generated again
        assert payslip_service.generate(db_session, teacher.id, MARCH).total_sessions == 3

    def test_finalized_cannot_be_deleted(self, db_session, march_sessions, teacher):
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        payslip_service.finalize(db_session, payslip)
        with pytest.raises(InvalidTransition):
            payslip_service.delete_draft(db_session, payslip)


# ============================================================================
# Reporting
# ============================================================================

class TestReporting:
    """Tests for month statistics and available periods."""

    def test_month_statistics(
        self, db_session, make_class, make_payable_session, teacher, substitute,
    ):
        class_model = make_class()
        make_payable_session(class_model, date(2024, 3, 4))
        make_payable_session(class_model, date(2024, 3, 6), amount=Decimal("30.00"), assigned_teacher_id=substitute.id)
        payslip = payslip_service.generate(db_session, teacher.id, MARCH)
        payslip_service.finalize(db_session, payslip)
        payslip_service.mark_paid(db_session, payslip)

        stats = payslip_service.month_statistics(db_session, MARCH)

        assert stats["period"] == "2024-03"
        assert stats["total_eligible_sessions"] == 2
        assert stats["sessions_in_payslips"] == 1
        assert stats["paid_sessions"] == 1
        assert stats["remaining_sessions"] == 1
        assert stats["total_amount"] == Decimal("80.00")
        assert stats["paid_amount"] == Decimal("50.00")
        assert stats["remaining_amount"] == Decimal("30.00")
        assert stats["paid_payslips"] == 1
        assert stats["draft_payslips"] == 0

    def test_available_periods_newest_first(self, db_session, make_class, make_payable_session):
        class_model = make_class()
        make_payable_session(class_model, date(2024, 2, 5))
        make_payable_session(class_model, date(2024, 3, 4))
        make_payable_session(class_model, date(2024, 3, 6))
        make_payable_session(class_model, date(2024, 4, 1), verified_at=None)

        periods = payslip_service.available_periods(db_session)

        assert [p["value"] for p in periods] == ["2024-03", "2024-02"]
        assert periods[0]["label"] == "March 2024"
