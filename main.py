# main.py
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from datetime import datetime, timezone
from pydantic import BaseModel, Field
from dotenv import load_dotenv
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from common.config import initialize_config, get_config, is_configured
from common.logger import get_app_logger
from common.logger.logger_middleware import RequestLoggingMiddleware
from common.api_error import ConfigurationError, AppError
from app.api.responses import error_body
from app.api.v1 import api_router
from app.db import DbManager
from app.db.schemas import ApiResponse
from contextlib import asynccontextmanager
from fastapi.responses import JSONResponse

load_dotenv()
try:
    initialize_config()
except ConfigurationError as e:
    # Can't use logger yet, but that's OK - this is a fatal startup error
    print(f"FATAL: Configuration error:\n{e}")
    raise SystemExit(1)

config = get_config()
logger = get_app_logger(name=__name__, track_timing=True)

app_title = config.app_title
app_version = config.app_version


@asynccontextmanager
async def lifespan(app: FastAPI):
    _db_config = config.database
    if not _db_config:
        raise RuntimeError("Database configuration required (set DB_DRIVER)")

    logger.info("Database configured", **_db_config.to_dict_safe())

    db_manager = DbManager.from_config(_db_config)
    await db_manager.verify_connection()

    # SQLite files are developer/test databases built from the models directly
    if not _db_config.driver.is_sqlite:
        try:
            revision = await db_manager.verify_migrations_current()
            logger.info("Migrations applied", revision=revision)
        except RuntimeError as e:
            logger.error("Migration check failed", error=str(e))
            logger.error("Run 'alembic upgrade head'")
            raise

    app.state.db_manager = db_manager

    yield
    logger.info("shutting down")
    await db_manager.dispose()


app = FastAPI(
    title=app_title,
    version=app_version,
    description=f"Running in {config.environment} environment",
    lifespan=lifespan,
)
app.add_middleware(
    RequestLoggingMiddleware,
    expose_performance_headers=not config.is_production,
    slow_sql_threshold=config.database.slow_query_threshold if config.database else 100.0,
)
app.include_router(api_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Domain Error: {exc.code}",
        path=request.url.path,
        error_code=exc.code,
        message=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation failed", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": jsonable_encoder(exc.errors())},
        ),
    )


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    logger.warning("Optimistic lock failed", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body(
            "CONCURRENT_MODIFICATION",
            "Record was modified by another request, reload and retry",
        ),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity constraint violated", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body("DUPLICATE", "Request conflicts with an existing record"),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # exc_info=True will show full traceback with Rich formatting
    logger.critical("Unhandled error", path=request.url.path, exc_info=True, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "Unexpected server error"),
    )


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="Current system health status")
    timestamp: datetime = Field(..., description="Server time in ISO 8601 format")
    version: str = Field(..., description="Application version")
    logging_configured: bool = Field(..., description="Logging configuration status")
    log_level: str = Field(..., description="Application log level")
    database: dict = Field(default_factory=dict, description="Database connectivity")


@app.get(
    "/health",
    response_model=ApiResponse[HealthCheckResponse],
    responses={503: {"description": "Database unreachable"}},
)
async def check_health(request: Request):
    db_manager: DbManager | None = getattr(request.app.state, "db_manager", None)
    database = await db_manager.health_check() if db_manager else {"healthy": False}
    healthy = bool(database.get("healthy"))

    body = HealthCheckResponse(
        status="Healthy" if healthy else "Unhealthy",
        timestamp=datetime.now(timezone.utc),
        version=app_version,
        logging_configured=is_configured(),
        log_level=config.logging.level_value,
        database=database,
    )
    if not healthy:
        logger.error("Health check failed", endpoint="/health", database=database)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "data": body.model_dump(mode="json")},
        )

    logger.debug("Health check passed", version=app_version, endpoint="/health")
    return {"success": True, "data": body}


__all__ = ["app", "config"]
