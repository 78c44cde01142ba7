# common/logger/logger_middleware/middleware_types.py
"""
Type definitions for request logging middleware.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
from pydantic import BaseModel, Field, computed_field


class PerformanceBreakdown(BaseModel):
    """Where time went during the request."""

    total_ms: float
    app_logic_ms: float
    sql_execution_total_ms: float
    query_count: int = Field(0, description="Number of SQL statements executed")


class RequestMetadata(BaseModel):
    """
    Core request metadata, always captured.
    """

    method: str = Field(..., description="HTTP method (GET, POST, etc.)")
    path: str = Field(..., description="Request path without query params")
    status_code: int = Field(..., ge=100, le=599, description="HTTP status code")
    duration_ms: float = Field(
        ..., ge=0, description="Request duration in milliseconds"
    )

    model_config = {"frozen": True}


class RequestDetails(BaseModel):
    """
    Extended request details, configurable.
    """

    client_host: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="User-Agent header")
    query_params: Optional[Dict[str, Any]] = Field(None, description="Query parameters")
    path_params: Optional[Dict[str, Any]] = Field(None, description="Path parameters")
    request_id: Optional[str] = Field(None, description="Unique request ID")
    clinic_id: Optional[str] = Field(None, description="Tenant resolved from the token")
    content_length: Optional[int] = Field(
        None, ge=0, description="Response size in bytes"
    )

    model_config = {"frozen": True}


class RequestLogEntry(BaseModel):
    """
    Complete request log entry combining metadata and optional details.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    metadata: RequestMetadata
    details: Optional[RequestDetails] = None
    performance: Optional[PerformanceBreakdown] = None
    slow_request_ms: float = Field(1000.0, exclude=True)
    slow_sql_ms: float = Field(500.0, exclude=True)

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_slow(self) -> bool:
        return self.metadata.duration_ms > self.slow_request_ms

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_error(self) -> bool:
        return self.metadata.status_code >= 500

    @computed_field  # type: ignore[prop-decorator]
    @property
    def optimization_warnings(self) -> list[str]:
        """
        Warnings only where there is real optimisation potential.

        On fast requests a high DB share is normal, so percentages are
        only considered once the request itself is slow.
        """
        warns: list[str] = []
        if not self.performance:
            return warns

        sql_time = self.performance.sql_execution_total_ms
        query_count = self.performance.query_count
        total_time = self.metadata.duration_ms

        # Lifecycle transitions touch a handful of rows; more usually means N+1.
        if query_count > 15:
            warns.append(
                f"N+1_QUERY_SUSPECTED: {query_count} queries "
                f"(likely missing selectinload)"
            )
        elif query_count > 8:
            warns.append(f"HIGH_QUERY_COUNT: {query_count} queries")

        if sql_time > self.slow_sql_ms:
            warns.append(f"SLOW_SQL: statements took {sql_time:.0f}ms")

        if total_time > 200 and sql_time / total_time > 0.8:
            warns.append(
                f"DB_DOMINATED_REQUEST: {sql_time / total_time:.0%} "
                f"of {total_time:.0f}ms spent in SQL"
            )

        return warns


__all__ = [
    "RequestMetadata",
    "RequestDetails",
    "RequestLogEntry",
    "PerformanceBreakdown",
]
