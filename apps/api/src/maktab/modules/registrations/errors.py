"""
Registration Pipeline Errors

Every error carries a machine-readable ``error_code``, an HTTP
``status_code`` and a ``tier`` the admin UI uses to decide what to tell
the operator:

- ``invalid_request``: nothing happened, fix the input and retry
- ``retryable``: a write failed and was fully rolled back
- ``manual_cleanup_required``: rollback itself failed, contact support
- ``external_service``: the enrollment is committed but a payment or
  email call failed; resend the link
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

TIER_INVALID_REQUEST = "invalid_request"
TIER_RETRYABLE = "retryable"
TIER_MANUAL_CLEANUP = "manual_cleanup_required"
TIER_EXTERNAL_SERVICE = "external_service"


class RegistrationPipelineError(Exception):
    """Base exception for registration pipeline errors."""

    tier = TIER_INVALID_REQUEST

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


# ============================================
# Validation (rejected before any write)
# ============================================


class ValidationError(RegistrationPipelineError):
    """Raised when a command is rejected before any state change."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", status_code: int = 400):
        super().__init__(message=message, error_code=error_code, status_code=status_code)


class ApplicationNotFoundError(ValidationError):
    """Raised when an application is not found."""

    def __init__(self, application_id: UUID | None = None):
        message = (
            f"Application {application_id} not found" if application_id else "Application not found"
        )
        super().__init__(message, error_code="APPLICATION_NOT_FOUND", status_code=404)


class StudentNotFoundError(ValidationError):
    """Raised when a student is not found."""

    def __init__(self, student_id: UUID | None = None):
        message = f"Student {student_id} not found" if student_id else "Student not found"
        super().__init__(message, error_code="STUDENT_NOT_FOUND", status_code=404)


class InvalidApplicationStateError(ValidationError):
    """Raised when an application is not in the expected state for an operation."""

    def __init__(self, application_id: UUID, current_status: str, expected_status: str):
        super().__init__(
            f"Application {application_id} is '{current_status}'. "
            f"Expected state: {expected_status}",
            error_code="INVALID_APPLICATION_STATE",
            status_code=409,
        )


class InvalidStudentStateError(ValidationError):
    """Raised when a student is not in the expected state for an operation."""

    def __init__(self, student_id: UUID, current_status: str, expected_status: str):
        super().__init__(
            f"Student {student_id} is '{current_status}'. Expected state: {expected_status}",
            error_code="INVALID_STUDENT_STATE",
            status_code=409,
        )


class RecordBusyError(ValidationError):
    """Raised when another admin action holds the record lock."""

    def __init__(self, key: str):
        super().__init__(
            f"Another action is already in progress for {key}. Please retry shortly.",
            error_code="RECORD_BUSY",
            status_code=409,
        )


class ApplicationConflictError(ValidationError):
    """
    Raised when a concurrent decision changed an application between
    the precondition check and the status write. Any students created by
    this call have already been removed.
    """

    def __init__(self, application_id: UUID):
        super().__init__(
            f"Application {application_id} was decided by another action.",
            error_code="APPLICATION_CONFLICT",
            status_code=409,
        )


# ============================================
# Persistence
# ============================================


class CompensationError(RegistrationPipelineError):
    """
    A rollback step failed. Never raised on its own; attached to the
    StoreWriteError that triggered the rollback.
    """

    tier = TIER_MANUAL_CLEANUP

    def __init__(self, step: str, record_id: Any, cause: BaseException | None = None):
        self.step = step
        self.record_id = record_id
        self.cause = cause
        super().__init__(
            f"Compensation '{step}' failed for {record_id}: {cause}",
            error_code="COMPENSATION_FAILED",
            status_code=500,
        )


class StoreWriteError(RegistrationPipelineError):
    """Raised when a persistence call fails."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="STORE_WRITE_FAILED", status_code=503)
        self.compensation_errors: list[CompensationError] = []

    @property
    def cleanup_incomplete(self) -> bool:
        return bool(self.compensation_errors)

    @property
    def tier(self) -> str:  # type: ignore[override]
        return TIER_MANUAL_CLEANUP if self.cleanup_incomplete else TIER_RETRYABLE


# ============================================
# External services
# ============================================


class ExternalServiceError(RegistrationPipelineError):
    """Raised when the payment provider or email sender fails."""

    tier = TIER_EXTERNAL_SERVICE

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(
            message=f"{service} error: {message}",
            error_code="EXTERNAL_SERVICE_ERROR",
            status_code=502,
        )


@dataclass(frozen=True)
class OperationWarning:
    """
    Advisory attached to a successful result when a post-commit side
    effect (payment link, email) failed.
    """

    service: str
    message: str
    student_ids: list[UUID] = field(default_factory=list)
    tier: str = TIER_EXTERNAL_SERVICE

    @classmethod
    def from_error(cls, error: ExternalServiceError, student_ids: list[UUID]) -> "OperationWarning":
        return cls(service=error.service, message=error.message, student_ids=list(student_ids))


def error_detail(error: RegistrationPipelineError) -> dict[str, Any]:
    """Structured HTTP error body."""
    detail: dict[str, Any] = {
        "error": error.error_code,
        "message": error.message,
        "tier": error.tier,
    }
    if isinstance(error, StoreWriteError) and error.cleanup_incomplete:
        detail["cleanup_incomplete"] = True
        detail["compensation_errors"] = [e.message for e in error.compensation_errors]
    return detail
