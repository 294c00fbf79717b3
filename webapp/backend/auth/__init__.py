"""
Authentication module for the scheduling backend.

Provides:
- JWT token creation and validation
- FastAPI dependencies for route protection
"""

from .jwt_handler import create_access_token, create_user_token, verify_token
from .dependencies import get_current_user, require_admin, require_teacher_or_admin

__all__ = [
    "create_access_token",
    "create_user_token",
    "verify_token",
    "get_current_user",
    "require_admin",
    "require_teacher_or_admin",
]
