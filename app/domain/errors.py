"""Application errors, rendered by the API as ``{"error": {...}}`` bodies."""

from __future__ import annotations


class AppError(Exception):
    """Base class for all application exceptions."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class NotFoundError(AppError):
    """Raised when a task, machine or operator does not exist."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} not found",
            code=f"{resource_type.upper().replace(' ', '_')}_NOT_FOUND",
            status_code=404,
            details={"id": resource_id},
        )


class ValidationFailed(AppError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, code=code, status_code=400)


class SelfOverlapError(ValidationFailed):
    """Two proposed slots of the same task overlap each other."""

    MESSAGE = "Time slots within the same task cannot overlap"

    def __init__(self) -> None:
        super().__init__("TIME_SLOT_OVERLAP", self.MESSAGE)


class ResourceConflictError(AppError):
    """A proposed booking collides with another task on a machine or operator."""

    def __init__(self, code: str, message: str, payload: dict) -> None:
        super().__init__(message, code=code, status_code=409, details=payload)


class InvariantViolation(AppError):
    """A caller broke a precondition of the conflict engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVARIANT_VIOLATION", status_code=500)
