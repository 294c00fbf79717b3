"""
Per-user rate limiting for bulk scheduling and payroll operations.
Uses an in-memory sliding window.
"""
import time
from collections import defaultdict
from typing import Dict, List
from fastapi import HTTPException, status


# Storage: {"{user_id}:{operation}": [timestamp, timestamp, ...]}
_user_request_counts: Dict[str, List[float]] = defaultdict(list)

RATE_LIMITS = {
    # Payroll runs touch every teacher for a month
    "payslip_generate": {"limit": 10, "window": 60},
    "payslip_preview": {"limit": 30, "window": 60},

    # Bulk session operations
    "verify_batch": {"limit": 20, "window": 60},
    "timetable_regenerate": {"limit": 20, "window": 60},

    # Default fallback
    "default": {"limit": 100, "window": 60},
}


def check_user_rate_limit(user_id: int, operation: str) -> None:
    """
    Record one call and raise HTTPException 429 once the user exceeds the
    operation's limit inside its window.
    """
    config = RATE_LIMITS.get(operation, RATE_LIMITS["default"])
    limit = config["limit"]
    window = config["window"]

    key = f"{user_id}:{operation}"
    now = time.time()

    _user_request_counts[key] = [
        t for t in _user_request_counts[key] if now - t < window
    ]

    if len(_user_request_counts[key]) >= limit:
        retry_after = int(window - (now - _user_request_counts[key][0]))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)}
        )

    _user_request_counts[key].append(now)


def clear_rate_limits() -> None:
    """Clear all rate limit data. Useful for testing."""
    _user_request_counts.clear()
