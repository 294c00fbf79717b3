"""
Authentication endpoints.

Login happens in the identity service, which sets the access_token cookie.
These endpoints expose the current user and keep the cookie fresh.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from app_config.settings import ENVIRONMENT
from auth.dependencies import get_current_user
from auth.jwt_handler import ACCESS_TOKEN_EXPIRE_HOURS, create_refreshed_token
from database import get_db
from models import Teacher, User
from schemas import TokenRefreshResponse, UserResponse

router = APIRouter()

_SECURE_COOKIES = ENVIRONMENT == "production"


@router.get("/auth/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get the currently authenticated user's info.

    Includes the teaching profile id when the user can teach.
    """
    profile = db.query(Teacher).filter(Teacher.user_id == current_user.id).first()
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        role=current_user.role,
        teacher_id=profile.id if profile else None,
    )


@router.post("/auth/logout")
async def logout(response: Response):
    """Log out the current user by clearing the auth cookie."""
    response.delete_cookie(
        key="access_token",
        httponly=True,
        secure=_SECURE_COOKIES,
        samesite="lax",
    )
    return {"message": "Logged out successfully"}


@router.post("/auth/refresh", response_model=TokenRefreshResponse)
async def refresh_token(request: Request, response: Response):
    """
    Refresh the authentication token.

    Works while the current token is valid or expired for less than the
    grace period. Returns the new token as an HTTP-only cookie.
    """
    token = request.cookies.get("access_token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided"
        )

    new_token = create_refreshed_token(token)
    if not new_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token cannot be refreshed. Please log in again."
        )

    expires_in = ACCESS_TOKEN_EXPIRE_HOURS * 3600
    response.set_cookie(
        key="access_token",
        value=new_token,
        httponly=True,
        secure=_SECURE_COOKIES,
        samesite="lax",
        max_age=expires_in,
    )
    return TokenRefreshResponse(
        success=True,
        expires_in=expires_in,
        message="Token refreshed successfully"
    )
