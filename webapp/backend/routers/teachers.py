"""
Teachers API endpoints.
Read-only access to teaching profiles.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from auth.dependencies import get_current_user
from database import get_db
from models import Teacher, User
from schemas import TeacherResponse
from utils.response_builders import build_teacher_response

router = APIRouter()


@router.get("/teachers", response_model=List[TeacherResponse])
async def get_teachers(
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Get all teaching profiles, ordered by display name.

    - **is_active**: Only active (true) or inactive (false) teachers
    """
    query = db.query(Teacher).options(joinedload(Teacher.user))
    if is_active is not None:
        query = query.filter(Teacher.is_active == is_active)
    return [build_teacher_response(t) for t in query.order_by(Teacher.display_name).all()]


@router.get("/teachers/{teacher_id}", response_model=TeacherResponse)
async def get_teacher(
    teacher_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    teacher = db.query(Teacher).options(joinedload(Teacher.user)).filter(Teacher.id == teacher_id).first()
    if not teacher:
        raise HTTPException(status_code=404, detail=f"Teacher with ID {teacher_id} not found")
    return build_teacher_response(teacher)
