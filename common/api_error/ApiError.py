# common/api_error/ApiError.py
from typing import Any, Optional


class AppError(Exception):
    """Base error for all application-specific issues."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: str = "INTERNAL_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Error body used inside the response envelope."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Malformed input or a violated create/update precondition."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, status_code=400, code=code, details=details)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401, code="UNAUTHORIZED")


class PermissionDeniedError(AppError):
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403, code="FORBIDDEN")


class NotFoundError(AppError):
    def __init__(
        self,
        message: str,
        code: str = "NOT_FOUND",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, status_code=404, code=code, details=details)


class ConflictError(AppError):
    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, status_code=409, code=code, details=details)


class StateError(AppError):
    """Requested transition is not allowed from the entity's current state."""

    def __init__(
        self,
        message: str,
        code: str = "INVALID_STATUS",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, status_code=400, code=code, details=details)


__all__ = [
    "AppError",
    "ValidationError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "StateError",
]
