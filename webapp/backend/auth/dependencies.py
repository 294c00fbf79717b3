"""
FastAPI dependencies for authentication and authorization.
"""
import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app_config.settings import ADMIN_ROLES
from database import get_db
from models import Teacher, User
from .jwt_handler import verify_token

logger = logging.getLogger(__name__)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    Get the currently authenticated user from the access_token cookie.

    Raises HTTPException 401 if not authenticated.

    Usage:
        @router.get("/protected")
        def protected_route(current_user: User = Depends(get_current_user)):
            ...
    """
    token = request.cookies.get("access_token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = verify_token(token)
    if not payload:
        logger.debug("Rejected invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = db.query(User).filter(User.id == int(user_id_str)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


def is_admin(user: User) -> bool:
    return user is not None and user.role in ADMIN_ROLES


def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Require the current user to be an Admin or Super Admin.

    Raises HTTPException 403 if not an admin.

    Usage:
        @router.post("/admin-only")
        def admin_route(admin: User = Depends(require_admin)):
            ...
    """
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def require_teacher_or_admin(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    """
    Require an admin or a user with a teaching profile.

    Used for starting and ending sessions, which any teacher may do
    (including as a stand-in for a colleague).
    """
    if is_admin(current_user):
        return current_user
    profile = db.query(Teacher).filter(Teacher.user_id == current_user.id).first()
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="A teaching profile is required",
        )
    return current_user
