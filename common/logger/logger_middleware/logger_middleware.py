# common/logger/logger_middleware/logger_middleware.py
"""
Request logging middleware for FastAPI.

Usage:
    app.add_middleware(
        RequestLoggingMiddleware,
        expose_performance_headers=True,
        slow_request_threshold=1000,
        log_query_params=False,  # query strings may carry patient identifiers
    )
"""

from typing import Callable, Awaitable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from .request_timer import RequestTimer
from common.context_vars import request_timer_context_var
import time
import uuid

from ..logger import get_app_logger
from .middleware_types import (
    RequestMetadata,
    RequestDetails,
    RequestLogEntry,
    PerformanceBreakdown,
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Structured logging for every HTTP request.

    A RequestTimer is placed in a context variable for the duration of the
    request; SQLAlchemy engine events add SQL time and statement counts to
    it (see DbManager), and the totals end up in the log entry and, when
    enabled, the Server-Timing header.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        expose_performance_headers: Optional[bool] = False,
        log_details: bool = True,
        slow_request_threshold: float = 1000.0,
        slow_sql_threshold: float = 500.0,
        log_query_params: bool = False,
        log_client_info: bool = True,
        logger_name: Optional[str] = None,
    ):
        super().__init__(app)
        self.log_details = log_details
        self.slow_request_threshold = slow_request_threshold
        self.slow_sql_threshold = slow_sql_threshold
        self.log_query_params = log_query_params
        self.log_client_info = log_client_info
        self.expose_performance_headers = expose_performance_headers
        self.logger = get_app_logger(name=logger_name or __name__, track_timing=True)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        timer = RequestTimer()
        token = request_timer_context_var.set(timer)
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            with timer.capture("app"):
                response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            perf_data = PerformanceBreakdown(
                total_ms=round(duration_ms, 2),
                app_logic_ms=round(timer.timings.get("app", 0), 2),
                sql_execution_total_ms=round(timer.timings.get("sql", 0), 2),
                query_count=int(timer.timings.get("query_count", 0)),
            )
            request_timer_context_var.reset(token)

        response.headers["X-Request-ID"] = request_id

        if self.expose_performance_headers:
            response.headers["Server-Timing"] = (
                f"{timer.format_server_timing()}, total;dur={duration_ms:.2f}"
            )

        log_entry = self._build_log_entry(
            request=request,
            response=response,
            duration_ms=duration_ms,
            request_id=request_id,
            perf_data=perf_data,
        )
        self._log_request(log_entry)
        return response

    def _build_log_entry(
        self,
        request: Request,
        response: Response,
        duration_ms: float,
        request_id: str,
        perf_data: Optional[PerformanceBreakdown] = None,
    ) -> RequestLogEntry:
        metadata = RequestMetadata(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        details = None
        if self.log_details:
            details = RequestDetails(
                request_id=request_id,
                clinic_id=getattr(request.state, "clinic_id", None),
                client_host=(
                    request.client.host
                    if self.log_client_info and request.client
                    else None
                ),
                user_agent=(
                    request.headers.get("user-agent") if self.log_client_info else None
                ),
                query_params=(
                    dict(request.query_params)
                    if self.log_query_params and request.query_params
                    else None
                ),
                path_params=request.path_params or None,
                content_length=int(response.headers.get("content-length", 0)) or None,
            )

        return RequestLogEntry(
            metadata=metadata,
            details=details,
            performance=perf_data,
            slow_request_ms=self.slow_request_threshold,
            slow_sql_ms=self.slow_sql_threshold,
        )

    def _log_request(self, log_entry: RequestLogEntry) -> None:
        """
        ERROR for 5xx, WARNING for slow requests and 4xx, INFO otherwise.
        """
        log_data = log_entry.model_dump(mode="json", exclude_none=True)

        if log_entry.is_error:
            self.logger.error("Request failed with server error", **log_data)
        elif log_entry.is_slow:
            self.logger.warning(
                f"Slow request detected ({log_entry.metadata.duration_ms}ms)",
                **log_data,
            )
        elif log_entry.metadata.status_code >= 400:
            self.logger.warning("Request failed with client error", **log_data)
        else:
            self.logger.info("Request completed", **log_data)


__all__ = [
    "RequestLoggingMiddleware",
]
