"""
Verification gate for session allowances.

Only verified sessions count toward a payslip. Verification records who
verified, when, and the verifier's role at that moment.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from constants import PayslipStatus, SessionStatus
from exceptions import InvalidTransition, SchedulingError
from models import ClassModel, ClassSession, Payslip, User
from services.payslips import recalculate_totals
from services.session_lifecycle import effective_teacher_clause, get_session
from utils.periods import Period

logger = logging.getLogger(__name__)


def _check_verifiable(session: ClassSession) -> None:
    if session.status != SessionStatus.COMPLETED.value:
        raise InvalidTransition(
            f"Session {session.id} cannot be verified: status is '{session.status}'",
            current_status=session.status,
        )
    if session.allowance_amount is None:
        raise InvalidTransition(
            f"Session {session.id} cannot be verified: no allowance recorded",
            current_status=session.status,
        )
    if session.verified_at is not None:
        raise InvalidTransition(
            f"Session {session.id} is already verified",
            current_status=session.status,
        )


def verify(db: Session, session: ClassSession, verifier: User, now: Optional[datetime] = None) -> ClassSession:
    """
    Verify a completed session's allowance.

    A zero allowance is still verifiable. The UPDATE only matches while the
    session is completed and unverified, so two admins verifying at once
    yields exactly one success.
    """
    _check_verifiable(session)
    now = now or datetime.now()

    result = db.execute(
        update(ClassSession)
        .where(
            ClassSession.id == session.id,
            ClassSession.status == SessionStatus.COMPLETED.value,
            ClassSession.allowance_amount.isnot(None),
            ClassSession.verified_at.is_(None),
        )
        .values(verified_at=now, verified_by=verifier.id, verifier_role=verifier.role)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(session)
        raise InvalidTransition(
            f"Session {session.id} was changed by another operator",
            current_status=session.status,
        )
    db.commit()
    db.refresh(session)
    logger.info(
        "Session %d verified by user %d (%s), allowance %s",
        session.id, verifier.id, verifier.role, session.allowance_amount,
    )
    return session


def unverify(db: Session, session: ClassSession) -> ClassSession:
    """
    Clear verification. Fails if the session is not verified.

    A session on a finalized or paid payslip stays locked; one on a draft is
    released from it and the draft totals are recomputed.
    """
    if session.verified_at is None:
        raise InvalidTransition(
            f"Session {session.id} is not verified",
            current_status=session.status,
        )
    payslip = None
    if session.payslip_id is not None:
        payslip = db.query(Payslip).filter(Payslip.id == session.payslip_id).first()
        if payslip is not None and payslip.status != PayslipStatus.DRAFT.value:
            raise InvalidTransition(
                f"Session {session.id} is on {payslip.status} payslip {payslip.id}",
                current_status=session.status,
            )
    result = db.execute(
        update(ClassSession)
        .where(ClassSession.id == session.id, ClassSession.verified_at.isnot(None))
        .values(verified_at=None, verified_by=None, verifier_role=None, payslip_id=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(session)
        raise InvalidTransition(f"Session {session.id} is not verified", current_status=session.status)
    if payslip is not None:
        recalculate_totals(db, payslip)
    db.commit()
    db.refresh(session)
    logger.info("Session %d unverified", session.id)
    return session


def verify_session(db: Session, session_id: int, verifier: User, now: Optional[datetime] = None) -> ClassSession:
    return verify(db, get_session(db, session_id), verifier, now=now)


def unverify_session(db: Session, session_id: int) -> ClassSession:
    return unverify(db, get_session(db, session_id))


def verifiable_sessions(
    db: Session,
    teacher_id: Optional[int] = None,
    period: Optional[Period] = None,
    class_id: Optional[int] = None,
) -> List[ClassSession]:
    """Completed sessions with an allowance that still await verification."""
    query = db.query(ClassSession).join(ClassModel, ClassSession.class_id == ClassModel.id).options(
        joinedload(ClassSession.class_model)
    ).filter(
        ClassSession.status == SessionStatus.COMPLETED.value,
        ClassSession.allowance_amount.isnot(None),
        ClassSession.verified_at.is_(None),
    )
    if teacher_id is not None:
        query = query.filter(effective_teacher_clause(teacher_id))
    if period is not None:
        query = query.filter(
            ClassSession.session_date >= period.first_day,
            ClassSession.session_date <= period.last_day,
        )
    if class_id is not None:
        query = query.filter(ClassSession.class_id == class_id)
    return query.order_by(ClassSession.session_date, ClassSession.session_time).all()


def verify_many(
    db: Session,
    session_ids: Iterable[int],
    verifier: User,
    now: Optional[datetime] = None,
) -> dict:
    """
    Verify several sessions; each one commits on its own.

    Returns {"verified": [ids], "failed": [{"session_id", "reason"}]}.
    """
    verified = []
    failed = []
    for session_id in session_ids:
        try:
            verify_session(db, session_id, verifier, now=now)
            verified.append(session_id)
        except SchedulingError as e:
            logger.warning("Batch verification skipped session %s: %s", session_id, e.message)
            failed.append({"session_id": session_id, "reason": e.message})

    logger.info("Batch verification: %d verified, %d failed", len(verified), len(failed))
    return {"verified": verified, "failed": failed}
