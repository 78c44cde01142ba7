# app/db/schemas/common_schemas.py
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ErrorBody(BaseModel):
    code: str = Field(..., description="Stable machine-readable error code")
    message: str = Field(..., description="Human-readable explanation")
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for every successful response."""

    success: bool = True
    data: T


class PageResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int


class WarningResponse(BaseModel):
    """Advisory finding returned next to a successful result."""

    model_config = ConfigDict(from_attributes=True)

    code: str
    message: str
    clinic_id: str
    start: datetime
    end: datetime


ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"description": "Validation or state error", "model": ErrorResponse},
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
    403: {"description": "Missing permission", "model": ErrorResponse},
    404: {"description": "Not found in this clinic", "model": ErrorResponse},
    409: {"description": "Conflict", "model": ErrorResponse},
}

__all__ = [
    "ErrorBody",
    "ErrorResponse",
    "ApiResponse",
    "PageResponse",
    "WarningResponse",
    "ERROR_RESPONSES",
]
