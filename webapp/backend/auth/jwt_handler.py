"""
JWT token creation and validation using python-jose.

Tokens are issued by the identity service; this backend only needs to read
the user id and role from them, refresh them, and mint them in tests.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError

from app_config.settings import ENVIRONMENT

# Configuration
_DEFAULT_SECRET = "dev-secret-key-change-in-production"
SECRET_KEY = os.getenv("JWT_SECRET_KEY", _DEFAULT_SECRET)
ALGORITHM = "HS256"

# Fail startup in production if using the default secret key
if ENVIRONMENT == "production" and SECRET_KEY == _DEFAULT_SECRET:
    raise RuntimeError(
        "SECURITY ERROR: JWT_SECRET_KEY environment variable must be set in production."
    )
ACCESS_TOKEN_EXPIRE_HOURS = 4
REFRESH_GRACE_PERIOD_MINUTES = 15  # Expired tokens can still be refreshed for this long


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Token payload (sub, email, name, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_user_token(user, expires_delta: Optional[timedelta] = None) -> str:
    """Token for a User row; sub is the user id as a string."""
    return create_access_token(
        {"sub": str(user.id), "email": user.email, "name": user.name, "role": user.role},
        expires_delta=expires_delta,
    )


def verify_token(token: str) -> Optional[dict]:
    """Decoded payload if the token is valid and unexpired, else None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def _decode_ignoring_expiry(token: str) -> Optional[dict]:
    try:
        return jwt.decode(
            token, SECRET_KEY, algorithms=[ALGORITHM],
            options={"verify_exp": False}
        )
    except JWTError:
        return None


def can_refresh_token(token: str) -> bool:
    """
    A token can be refreshed while it is untampered and either unexpired or
    expired for less than the grace period.
    """
    payload = _decode_ignoring_expiry(token)
    if not payload or not payload.get("exp"):
        return False
    time_remaining = payload["exp"] - datetime.now(timezone.utc).timestamp()
    return time_remaining > -REFRESH_GRACE_PERIOD_MINUTES * 60


def create_refreshed_token(old_token: str) -> Optional[str]:
    """New token with the same claims and a fresh expiry, or None if refresh is not allowed."""
    if not can_refresh_token(old_token):
        return None
    payload = _decode_ignoring_expiry(old_token)
    payload.pop("exp", None)
    payload.pop("iat", None)
    return create_access_token(payload)
