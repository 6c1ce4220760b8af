"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Job-lifecycle errors are
APIExceptions too, so a service error that escapes a route still maps to the
right status code.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: Any,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ConflictError(APIException):
    """Request conflicts with current state, e.g. an active job already exists for the owner."""

    def __init__(self, detail: str, existing_job_id: Optional[int] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )
        self.existing_job_id = existing_job_id


class InvalidTransitionError(APIException):
    """A job status change that the lifecycle does not allow."""

    def __init__(self, job_id: int, current_status: Optional[str], target_status: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} cannot move from {current_status} to {target_status}",
            error_code="INVALID_TRANSITION"
        )
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status


class WeekNotCompleteError(APIException):
    """The previous week still has scheduled or in-progress workouts."""

    def __init__(self, week_number: int, previous_week_status: Dict[str, Any]):
        previous_week = week_number - 1
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": (
                    f"Week {previous_week} must be completed (all workouts completed or skipped) "
                    f"before generating Week {week_number}"
                ),
                "previous_week_status": previous_week_status,
            },
            error_code="WEEK_NOT_COMPLETE"
        )


class GenerationFailure(Exception):
    """
    The LLM / OCR collaborator raised or returned something unusable.

    The message is stored verbatim on the failed job, so keep it operator-readable.
    """
