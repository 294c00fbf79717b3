"""
Sessions API endpoints.
Listing, lifecycle transitions, substitute assignment and verification.
"""
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from auth.dependencies import get_current_user, require_admin, require_teacher_or_admin
from database import get_db
from models import ClassModel, ClassSession, User
from schemas import (
    AssignmentRequest,
    RescheduleRequest,
    RescheduleResponse,
    SessionActionRequest,
    SessionResponse,
    VerifyBatchRequest,
    VerifyBatchResponse,
)
from services import session_lifecycle, verification
from utils.periods import PERIOD_PATTERN, Period
from utils.query_helpers import session_with_relations
from utils.rate_limiter import check_user_rate_limit
from utils.response_builders import build_session_response

router = APIRouter()


def _load(db: Session, session_id: int) -> ClassSession:
    """Reload a session with the relationships the response needs."""
    return db.query(ClassSession).options(*session_with_relations()).filter(
        ClassSession.id == session_id
    ).one()


@router.get("/sessions", response_model=List[SessionResponse])
async def get_sessions(
    class_id: Optional[int] = Query(None, description="Filter by class ID"),
    teacher_id: Optional[int] = Query(None, description="Filter by effective teacher ID"),
    status: Optional[str] = Query(None, description="Filter by status (comma-separated for several)"),
    from_date: Optional[date] = Query(None, description="Filter by session_date >= this date"),
    to_date: Optional[date] = Query(None, description="Filter by session_date <= this date"),
    verified: Optional[bool] = Query(None, description="Only verified (true) or unverified (false)"),
    limit: int = Query(100, ge=1, le=2000, description="Maximum number of results"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Get list of sessions with optional filters, ordered by date and time.

    - **teacher_id**: matches the substitute when one is assigned, otherwise the class teacher
    - **status**: e.g. `scheduled,ongoing`
    """
    query = db.query(ClassSession).join(ClassModel, ClassSession.class_id == ClassModel.id).options(
        *session_with_relations()
    )
    if class_id:
        query = query.filter(ClassSession.class_id == class_id)
    if teacher_id:
        query = query.filter(session_lifecycle.effective_teacher_clause(teacher_id))
    if status:
        statuses = [s.strip() for s in status.split(",") if s.strip()]
        query = query.filter(ClassSession.status.in_(statuses))
    if from_date:
        query = query.filter(ClassSession.session_date >= from_date)
    if to_date:
        query = query.filter(ClassSession.session_date <= to_date)
    if verified is not None:
        if verified:
            query = query.filter(ClassSession.verified_at.isnot(None))
        else:
            query = query.filter(ClassSession.verified_at.is_(None))

    sessions = query.order_by(
        ClassSession.session_date, ClassSession.session_time
    ).offset(offset).limit(limit).all()
    return [build_session_response(s) for s in sessions]


@router.get("/sessions/verifiable", response_model=List[SessionResponse])
async def get_verifiable_sessions(
    teacher_id: Optional[int] = Query(None, description="Filter by effective teacher ID"),
    period: Optional[str] = Query(None, pattern=PERIOD_PATTERN, description="YYYY-MM"),
    class_id: Optional[int] = Query(None, description="Filter by class ID"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Completed sessions with an allowance that are waiting for verification."""
    sessions = verification.verifiable_sessions(
        db,
        teacher_id=teacher_id,
        period=Period.parse(period) if period else None,
        class_id=class_id,
    )
    return [build_session_response(_load(db, s.id)) for s in sessions]


@router.post("/sessions/verify-batch", response_model=VerifyBatchResponse)
async def verify_batch(
    payload: VerifyBatchRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Verify several sessions. Each is verified independently; failures are
    listed with their reason instead of aborting the batch.
    """
    check_user_rate_limit(admin.id, "verify_batch")
    return verification.verify_many(db, payload.session_ids, admin)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    session_lifecycle.get_session(db, session_id)
    return build_session_response(_load(db, session_id))


# ============================================================================
# Lifecycle transitions
# ============================================================================

@router.post("/sessions/{session_id}/start", response_model=SessionResponse)
async def start_session(
    session_id: int,
    current_user: User = Depends(require_teacher_or_admin),
    db: Session = Depends(get_db)
):
    """
    Start a scheduled session.

    Any teacher may start a session; starts by someone other than the
    session's teacher are logged. Returns 409 if the session is not scheduled.
    """
    session_lifecycle.transition_session(db, session_id, "start", actor=current_user)
    return build_session_response(_load(db, session_id))


@router.post("/sessions/{session_id}/end", response_model=SessionResponse)
async def end_session(
    session_id: int,
    payload: Optional[SessionActionRequest] = None,
    current_user: User = Depends(require_teacher_or_admin),
    db: Session = Depends(get_db)
):
    """End an ongoing session. The teacher allowance is computed and stored."""
    session_lifecycle.transition_session(
        db, session_id, "end", actor=current_user,
        notes=payload.notes if payload else None,
    )
    return build_session_response(_load(db, session_id))


@router.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Cancel a session that has not started. No allowance is recorded."""
    session_lifecycle.transition_session(db, session_id, "cancel", actor=admin)
    return build_session_response(_load(db, session_id))


@router.post("/sessions/{session_id}/no-show", response_model=SessionResponse)
async def mark_no_show(
    session_id: int,
    payload: Optional[SessionActionRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    session_lifecycle.transition_session(
        db, session_id, "no_show", actor=admin,
        notes=payload.notes if payload else None,
    )
    return build_session_response(_load(db, session_id))


@router.post("/sessions/{session_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_session(
    session_id: int,
    payload: RescheduleRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Move a scheduled session to a new date and time.

    The original is marked `rescheduled` and linked to a new scheduled
    session at the target slot. Returns 409 with `existing_id` if the class
    already has a session in that slot.
    """
    session = session_lifecycle.get_session(db, session_id)
    replacement = session_lifecycle.reschedule(
        db, session, payload.new_date, payload.new_time, reason=payload.reason
    )
    return RescheduleResponse(
        original=build_session_response(_load(db, session_id)),
        replacement=build_session_response(_load(db, replacement.id)),
    )


@router.put("/sessions/{session_id}/assignment", response_model=SessionResponse)
async def assign_substitute(
    session_id: int,
    payload: AssignmentRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Assign a substitute teacher to one scheduled session.

    - **teacher_id**: the substitute, or null to revert to the class teacher
    """
    session = session_lifecycle.get_session(db, session_id)
    session_lifecycle.assign_teacher(db, session, payload.teacher_id)
    return build_session_response(_load(db, session_id))


# ============================================================================
# Verification
# ============================================================================

@router.post("/sessions/{session_id}/verification", response_model=SessionResponse)
async def verify_session(
    session_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Verify a completed session's allowance so it can be paid.

    Returns 409 if the session is not completed, has no allowance, or is
    already verified.
    """
    verification.verify_session(db, session_id, admin)
    return build_session_response(_load(db, session_id))


@router.delete("/sessions/{session_id}/verification", response_model=SessionResponse)
async def unverify_session(
    session_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Remove verification. Not allowed once the session is on a finalized payslip."""
    verification.unverify_session(db, session_id)
    return build_session_response(_load(db, session_id))
