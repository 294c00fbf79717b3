"""
Domain exceptions raised by the scheduling and payroll services.

Routers never catch these individually; main.py registers handlers that turn
them into JSON error responses.
"""
from typing import Optional


class SchedulingError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error": self.__class__.__name__, "message": self.message}


class ValidationError(SchedulingError):
    """Malformed input: bad date ranges, invalid enum values, empty schedules."""

    status_code = 400


class NotFound(SchedulingError):
    status_code = 404


class InvalidTransition(SchedulingError):
    """A lifecycle rule was violated. Nothing was mutated."""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status

    def to_detail(self) -> dict:
        detail = super().to_detail()
        if self.current_status is not None:
            detail["current_status"] = self.current_status
        return detail


class DuplicateResource(SchedulingError):
    """A uniqueness rule fired. Carries the id of the conflicting record when known."""

    status_code = 409

    def __init__(self, message: str, existing_id: Optional[int] = None):
        super().__init__(message)
        self.existing_id = existing_id

    def to_detail(self) -> dict:
        detail = super().to_detail()
        if self.existing_id is not None:
            detail["existing_id"] = self.existing_id
        return detail
