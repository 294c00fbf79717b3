"""
Timetables API endpoints.
Editing, regenerating and retiring recurring schedules.
"""
from datetime import date
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from auth.dependencies import get_current_user, require_admin
from database import get_db
from models import User
from schemas import ExpansionResponse, RegenerateRequest, TimetableResponse, TimetableUpdate
from services import timetables as timetable_service
from utils.rate_limiter import check_user_rate_limit

router = APIRouter()


@router.get("/timetables/{timetable_id}", response_model=TimetableResponse)
async def get_timetable(
    timetable_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timetable_service.get_timetable(db, timetable_id)


@router.put("/timetables/{timetable_id}", response_model=ExpansionResponse)
async def update_timetable(
    timetable_id: int,
    payload: TimetableUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Update a timetable and re-expand from today onwards.

    Future scheduled sessions that no longer match are deleted, or cancelled
    when attendance rows exist. Past sessions are never changed.
    Set **clear_end_date** to make the timetable open-ended.
    """
    return timetable_service.update_timetable(
        db,
        timetable_id,
        weekly_schedule=payload.weekly_schedule,
        recurrence_pattern=payload.recurrence_pattern,
        start_date=payload.start_date,
        end_date=payload.end_date,
        clear_end_date=payload.clear_end_date,
        today=date.today(),
    )


@router.post("/timetables/{timetable_id}/regenerate", response_model=ExpansionResponse)
async def regenerate_sessions(
    timetable_id: int,
    payload: Optional[RegenerateRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Generate any missing sessions up to **through_date** (default: the horizon).

    Safe to call repeatedly: existing (date, time) slots are skipped.
    """
    check_user_rate_limit(admin.id, "timetable_regenerate")
    return timetable_service.regenerate_sessions(
        db,
        timetable_id,
        through_date=payload.through_date if payload else None,
        today=date.today(),
    )


@router.post("/timetables/{timetable_id}/deactivate", response_model=TimetableResponse)
async def deactivate_timetable(
    timetable_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Stop generating sessions. Existing sessions are kept."""
    return timetable_service.deactivate_timetable(db, timetable_id)


@router.post("/timetables/{timetable_id}/activate", response_model=TimetableResponse)
async def activate_timetable(
    timetable_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return timetable_service.activate_timetable(db, timetable_id)


@router.delete("/timetables/{timetable_id}")
async def delete_timetable(
    timetable_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a timetable. Its sessions stay on the class."""
    class_id = timetable_service.delete_timetable(db, timetable_id)
    return {"message": "Timetable deleted", "class_id": class_id}
