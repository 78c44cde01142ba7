# common/api_error/domain_errors.py
"""
Lifecycle errors with stable codes.

Each one narrows a generic error from ApiError.py so handlers and clients
can branch on `code` without parsing messages.
"""

from typing import Optional
from .ApiError import ConflictError, NotFoundError, StateError


class OccurrenceNotFound(NotFoundError):
    def __init__(self, series_id: str, occurrence_number: int):
        super().__init__(
            f"No pending occurrence #{occurrence_number} in series {series_id}",
            code="OCCURRENCE_NOT_FOUND",
            details={
                "series_id": series_id,
                "occurrence_number": occurrence_number,
            },
        )


class OccurrenceInPast(StateError):
    def __init__(self, occurrence_number: int):
        super().__init__(
            f"Occurrence #{occurrence_number} starts in the past",
            code="OCCURRENCE_IN_PAST",
        )


class ResourceConflict(ConflictError):
    def __init__(
        self,
        resource: str,
        resource_id: str,
        conflicting_appointment_id: str,
    ):
        super().__init__(
            f"{resource.capitalize()} {resource_id} is already booked at this time",
            code="RESOURCE_CONFLICT",
            details={
                "resource": resource,
                "resource_id": resource_id,
                "conflicting_appointment_id": conflicting_appointment_id,
            },
        )


class CannotModifyPast(StateError):
    def __init__(self, message: str = "Scheduled or past occurrences cannot be modified"):
        super().__init__(message, code="CANNOT_MODIFY_PAST")


class SeriesCancelled(StateError):
    def __init__(self, series_id: str):
        super().__init__(
            f"Recurring series {series_id} is cancelled", code="SERIES_CANCELLED"
        )


class SeriesCompleted(StateError):
    def __init__(self, series_id: str):
        super().__init__(
            f"Recurring series {series_id} is completed", code="SERIES_COMPLETED"
        )


class AcceptanceFinalized(StateError):
    def __init__(self, message: str = "Case acceptance is fully signed and locked"):
        super().__init__(message, code="ACCEPTANCE_FINALIZED")


class ClaimLocked(StateError):
    def __init__(self, claim_number: str, status: str):
        super().__init__(
            f"Claim {claim_number} is {status} and can no longer change",
            code="CLAIM_LOCKED",
            details={"status": status},
        )


class ConcurrentModification(ConflictError):
    def __init__(self, entity: Optional[str] = None):
        message = "Record was modified by another request, reload and retry"
        if entity:
            message = f"{entity} was modified by another request, reload and retry"
        super().__init__(message, code="CONCURRENT_MODIFICATION")


class ImmutableRecordError(StateError):
    def __init__(self, entity: str):
        super().__init__(
            f"{entity} records are append-only", code="IMMUTABLE_RECORD"
        )


__all__ = [
    "OccurrenceNotFound",
    "OccurrenceInPast",
    "ResourceConflict",
    "CannotModifyPast",
    "SeriesCancelled",
    "SeriesCompleted",
    "AcceptanceFinalized",
    "ClaimLocked",
    "ConcurrentModification",
    "ImmutableRecordError",
]
