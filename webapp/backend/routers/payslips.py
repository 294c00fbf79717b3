"""
Payslips API endpoints.
Monthly payroll: eligibility, preview, generation and the payslip lifecycle.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from auth.dependencies import get_current_user, is_admin, require_admin
from database import get_db
from models import Payslip, Teacher, User
from schemas import (
    AvailablePeriod,
    EligibilityResponse,
    GeneratePayslipsResponse,
    PayslipDetailResponse,
    PayslipPeriodRequest,
    PayslipPreviewItem,
    PayslipResponse,
    PayslipStatistics,
)
from services import payslips as payslip_service
from utils.periods import PERIOD_PATTERN, Period
from utils.rate_limiter import check_user_rate_limit
from utils.response_builders import build_payslip_detail, build_payslip_response

router = APIRouter()


def _own_teacher_id(db: Session, user: User) -> Optional[int]:
    profile = db.query(Teacher).filter(Teacher.user_id == user.id).first()
    return profile.id if profile else None


def _get_visible_payslip(db: Session, payslip_id: int, user: User) -> Payslip:
    """Admins see every payslip; teachers only their own."""
    payslip = payslip_service.get_payslip(db, payslip_id)
    if not is_admin(user) and payslip.teacher_id != _own_teacher_id(db, user):
        raise HTTPException(status_code=403, detail="You can only view your own payslips")
    return payslip


@router.get("/payslips/eligibility", response_model=EligibilityResponse)
async def check_eligibility(
    teacher_id: int = Query(..., description="Teacher ID"),
    period: str = Query(..., pattern=PERIOD_PATTERN, description="YYYY-MM"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Check whether a payslip can be generated for a teacher and month.

    When not eligible, **reason** explains why and **existing_payslip_id**
    points at the payslip that already exists, if any.
    """
    return payslip_service.can_generate(db, teacher_id, Period.parse(period))


@router.post("/payslips/preview", response_model=List[PayslipPreviewItem])
async def preview_payslips(
    payload: PayslipPeriodRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Show what generation would produce, per teacher, without writing anything."""
    check_user_rate_limit(admin.id, "payslip_preview")
    period = Period.parse(payload.period)
    teacher_ids = payload.teacher_ids
    if teacher_ids is None:
        teacher_ids = payslip_service.teachers_with_eligible_sessions(db, period)
    previews = payslip_service.preview(db, teacher_ids, period)
    return [
        PayslipPreviewItem(
            teacher_id=p["teacher_id"],
            teacher_name=p["teacher_name"],
            eligibility=EligibilityResponse.model_validate(p["eligibility"]),
            total_sessions=p["total_sessions"],
            total_amount=p["total_amount"],
            sessions=p["sessions"],
        )
        for p in previews
    ]


@router.post("/payslips/generate", response_model=GeneratePayslipsResponse)
async def generate_payslips(
    payload: PayslipPeriodRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Generate draft payslips for a month.

    - **teacher_ids**: teachers to generate for; omit for every teacher with
      verified sessions in the month

    Each teacher is processed on its own: teachers that already have a
    payslip or have nothing to pay are listed under **failed** with a reason.
    """
    check_user_rate_limit(admin.id, "payslip_generate")
    period = Period.parse(payload.period)
    result = payslip_service.generate_batch(db, payload.teacher_ids, period, generated_by=admin)
    return GeneratePayslipsResponse(
        period=str(period),
        successful=result.successful,
        failed=result.failed,
    )


@router.get("/payslips/statistics", response_model=PayslipStatistics)
async def get_statistics(
    period: str = Query(..., pattern=PERIOD_PATTERN, description="YYYY-MM"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Payroll progress for a month: payable, included and paid sessions and amounts."""
    return payslip_service.month_statistics(db, Period.parse(period))


@router.get("/payslips/periods", response_model=List[AvailablePeriod])
async def get_available_periods(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Months that have verified sessions, newest first."""
    return payslip_service.available_periods(db)


@router.get("/payslips", response_model=List[PayslipResponse])
async def get_payslips(
    teacher_id: Optional[int] = Query(None, description="Filter by teacher ID"),
    period: Optional[str] = Query(None, pattern=PERIOD_PATTERN, description="YYYY-MM"),
    status: Optional[str] = Query(None, description="draft, finalized or paid"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    List payslips, newest period first.

    Non-admin users only see their own payslips.
    """
    if not is_admin(current_user):
        teacher_id = _own_teacher_id(db, current_user)
        if teacher_id is None:
            return []
    payslips = payslip_service.list_payslips(
        db,
        teacher_id=teacher_id,
        period=Period.parse(period) if period else None,
        status=status,
    )
    return [build_payslip_response(p) for p in payslips]


@router.get("/payslips/{payslip_id}", response_model=PayslipDetailResponse)
async def get_payslip(
    payslip_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a payslip with one line item per included session."""
    payslip = _get_visible_payslip(db, payslip_id, current_user)
    return build_payslip_detail(payslip, payslip_service.line_items(db, payslip))


# ============================================================================
# Payslip lifecycle
# ============================================================================

@router.post("/payslips/{payslip_id}/sync", response_model=PayslipDetailResponse)
async def sync_payslip(
    payslip_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Re-collect eligible sessions into a draft and recompute its totals."""
    payslip = payslip_service.sync(db, payslip_service.get_payslip(db, payslip_id))
    return build_payslip_detail(payslip, payslip_service.line_items(db, payslip))


@router.post("/payslips/{payslip_id}/finalize", response_model=PayslipResponse)
async def finalize_payslip(
    payslip_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Finalize a draft payslip. Drafts without sessions cannot be finalized."""
    return build_payslip_response(payslip_service.finalize(db, payslip_service.get_payslip(db, payslip_id)))


@router.post("/payslips/{payslip_id}/mark-paid", response_model=PayslipResponse)
async def mark_payslip_paid(
    payslip_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return build_payslip_response(payslip_service.mark_paid(db, payslip_service.get_payslip(db, payslip_id)))


@router.post("/payslips/{payslip_id}/revert", response_model=PayslipResponse)
async def revert_payslip(
    payslip_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Return a finalized payslip to draft. Paid payslips cannot be reverted."""
    return build_payslip_response(payslip_service.revert_to_draft(db, payslip_service.get_payslip(db, payslip_id)))


@router.delete("/payslips/{payslip_id}")
async def delete_payslip(
    payslip_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a draft payslip; its sessions become available for a new one."""
    payslip_service.delete_draft(db, payslip_service.get_payslip(db, payslip_id))
    return {"message": "Payslip deleted", "payslip_id": payslip_id}
