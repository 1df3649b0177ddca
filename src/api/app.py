"""FastAPI application entry point with global error handling."""
from __future__ import annotations

import os
import sys
import time
import uuid

# Add src/ to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from core.config import get_settings
from core.exceptions import LoopTrackerError
from core.logging_config import get_context_logger, get_logger, setup_logging
from api.routes import health, loops, organizations, people
from services.storage import IMAGES_SUBDIR

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

REQUEST_ID_HEADER = "X-Request-ID"


def _error_body(error: str, message: str, **extra) -> dict:
    return {"success": False, "error": error, "message": message, **extra}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Sets up logging, validates the database, and logs startup/shutdown events.
    Missing tables are created; the app still starts if the database is down
    so health checks can report it.
    """
    json_logging = SETTINGS.log_format == "json"
    setup_logging(level=SETTINGS.log_level, log_file=SETTINGS.log_file, json_format=json_logging)

    if not SETTINGS.dry_run:
        LOGGER.warning("!!! LIVE MODE !!! DRY_RUN=false - Real notification emails will be sent!")
    else:
        LOGGER.info("DRY_RUN mode enabled - Notification emails are only logged")

    LOGGER.info(
        "API application starting",
        extra={"extra_data": {
            "environment": SETTINGS.environment,
            "dry_run": SETTINGS.dry_run,
            "email_enabled": SETTINGS.is_email_enabled(),
            "upload_dir": SETTINGS.upload_dir,
        }}
    )

    try:
        from core.db import init_db, validate_database
        db_status = validate_database()

        if db_status["status"] == "error":
            LOGGER.error(
                "Database validation failed - app will start without database",
                extra={"extra_data": {"errors": db_status["errors"]}}
            )
        elif db_status["status"] == "missing_tables":
            LOGGER.warning(
                "Missing database tables detected - attempting to create",
                extra={"extra_data": {"missing": db_status["tables_missing"]}}
            )
            init_result = init_db(create_missing_only=True)
            if init_result["status"] == "error":
                LOGGER.error(
                    "Failed to create missing tables",
                    extra={"extra_data": {"error": init_result.get("error")}}
                )
            else:
                LOGGER.info(
                    "Database tables created successfully",
                    extra={"extra_data": {"created": init_result["tables_created"]}}
                )
        else:
            LOGGER.info("Database validation passed")
    except SQLAlchemyError as e:
        LOGGER.error(f"Database validation error during startup: {e} - app will start anyway")

    yield
    LOGGER.info("API application shutting down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance with:
        - CORS middleware
        - Global exception handlers
        - All API routes
        - Static serving of uploaded loop images
    """
    application = FastAPI(
        title="Loop Tracker",
        description="Real-estate transaction loop tracking API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    application.add_middleware(
        CORSMiddleware,
        allow_origins=SETTINGS.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def log_requests(request: Request, call_next):
        """Tag each request with an id and log its outcome and duration."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        logger = get_context_logger(__name__, request_id=request_id)
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={"extra_data": {"status": response.status_code, "duration_ms": round(duration_ms, 1)}},
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    # -------------------------------------------------------------------------
    # Global Exception Handlers
    # -------------------------------------------------------------------------

    @application.exception_handler(LoopTrackerError)
    async def app_error_handler(
        request: Request, exc: LoopTrackerError
    ) -> JSONResponse:
        """Map application errors to their status code and error code."""
        path = {"path": request.url.path}
        if exc.status_code >= 500:
            LOGGER.error(f"Application error: {exc}", exc_info=True, extra={"extra_data": path})
        else:
            LOGGER.warning(f"{exc.error_code}: {exc}", extra={"extra_data": path})

        extra = {"details": exc.details} if exc.details else {}
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.error_code, exc.message, **extra),
        )

    @application.exception_handler(SQLAlchemyError)
    async def database_error_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        """Unexpected store failures surface as a generic error."""
        LOGGER.error(f"Database error: {exc}", exc_info=True, extra={"extra_data": {"path": request.url.path}})
        return JSONResponse(
            status_code=500,
            content=_error_body("database_error", "Internal server error"),
        )

    # -------------------------------------------------------------------------
    # Include Routers
    # -------------------------------------------------------------------------
    application.include_router(health.router, prefix="/health", tags=["Health"])
    application.include_router(loops.router, prefix="/loops", tags=["Loops"])
    application.include_router(organizations.router, prefix="/organizations", tags=["Organizations"])
    application.include_router(people.router, prefix="/people", tags=["People"])

    # -------------------------------------------------------------------------
    # Uploaded Images
    # -------------------------------------------------------------------------
    images_dir = os.path.join(SETTINGS.upload_dir, IMAGES_SUBDIR)
    application.mount(
        "/uploads/images",
        StaticFiles(directory=images_dir, check_dir=False),
        name="loop-images",
    )

    return application


# Create the application instance
app = create_app()

LOGGER.info("API application initialized")
