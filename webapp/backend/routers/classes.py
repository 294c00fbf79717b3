"""
Classes API endpoints.
Class creation and the attachment of a recurring timetable.
"""
from datetime import date
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user, require_admin
from database import get_db
from models import User
from schemas import ClassCreate, ClassResponse, ExpansionResponse, TimetableCreate, TimetableCreateResponse, TimetableResponse
from services import classes as class_service
from services import timetables as timetable_service
from utils.response_builders import build_class_response

router = APIRouter()


@router.post("/classes", response_model=ClassResponse, status_code=201)
async def create_class(
    payload: ClassCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Create a class.

    - Non-recurring classes must include **session_date** and **session_time**;
      their single session is created immediately and the class becomes active.
    - Recurring classes stay in draft until a timetable is attached.
    - Individual classes must have **max_capacity** = 1.
    """
    class_model = class_service.create_class(db, **payload.model_dump())
    return build_class_response(class_service.get_class(db, class_model.id), db)


@router.get("/classes/{class_id}", response_model=ClassResponse)
async def get_class(
    class_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a class with its timetable and session count."""
    return build_class_response(class_service.get_class(db, class_id), db)


@router.post("/classes/{class_id}/timetable", response_model=TimetableCreateResponse, status_code=201)
async def create_timetable(
    class_id: int,
    payload: TimetableCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Attach a recurring timetable to a class and generate its sessions.

    - **weekly_schedule**: `{"monday": ["09:00"], "wednesday": ["09:00", "14:00"]}`
    - **recurrence_pattern**: `weekly` or `bi_weekly`
    - **end_date**: omit for an open-ended timetable (generated up to the horizon)

    Returns 409 with `existing_id` if the class already has a timetable.
    """
    timetable, result = timetable_service.create_timetable(
        db,
        class_id=class_id,
        weekly_schedule=payload.weekly_schedule,
        recurrence_pattern=payload.recurrence_pattern,
        start_date=payload.start_date,
        end_date=payload.end_date,
        today=date.today(),
    )
    return TimetableCreateResponse(
        timetable=TimetableResponse.model_validate(timetable),
        expansion=ExpansionResponse.model_validate(result),
    )
