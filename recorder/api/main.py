"""FastAPI application for the Recorder Sentinel REST API.

This module configures the FastAPI application with middleware, error
handling and the session control and event ingestion routes.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from recorder import __version__
from recorder.api.routes import events_router, sessions_router
from recorder.api.schemas import ErrorResponse, HealthResponse
from recorder.api.services import RecorderService, get_recorder_service, shutdown_recorder_service
from recorder.config import RecorderSettings, get_config
from recorder.supervision import SessionNotFoundError, SessionStateError, SupervisorError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Application metadata
APP_VERSION = __version__
APP_TITLE = "Recorder Sentinel API"
APP_DESCRIPTION = """
Recorder Sentinel keeps an in-page interaction recorder alive in supervised
browser tabs and collects the events it emits.

## Features

* **Session Control**: Start, stop and force reinjection of recording sessions
* **Health Monitoring**: Payload status, retry state and page diagnostics
* **Event Ingestion**: Endpoint the in-page recorder posts interactions to
"""

# Global application state
app_start_time = datetime.now(timezone.utc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await shutdown_recorder_service()


def _error_response(request: Request, status_code: int, error: str, message: str, details=None) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=request_id,
        ).model_dump(mode='json')
    )


def create_app(settings: Optional[RecorderSettings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Recorder settings (defaults to the global config)

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    settings = settings or get_config().config
    cors_origins = settings.get_server_options()['cors_origins']

    # The in-page recorder posts from the origins of the pages it records
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "HEAD", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def add_request_id_and_logging(request: Request, call_next):
        """Add request ID and logging middleware."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - {str(e)}",
                extra={
                    "request_id": request_id,
                    "error": str(e),
                    "duration_ms": round(duration * 1000, 2),
                },
                exc_info=True
            )
            raise

        response.headers["X-Request-ID"] = request_id

        duration = time.time() - start_time
        # Event posts arrive for every interaction
        log = logger.debug if request.url.path.startswith("/api/recorder/events") else logger.info
        log(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
            }
        )
        return response

    # Global exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with consistent error format."""
        return _error_response(request, exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle Starlette HTTP exceptions."""
        return _error_response(request, exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with detailed information."""
        errors = []
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"][1:])  # Skip 'body'
            errors.append({
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            })

        return _error_response(
            request, 422, "validation_error", "Request validation failed",
            details={"validation_errors": errors},
        )

    @app.exception_handler(SupervisorError)
    async def supervisor_exception_handler(request: Request, exc: SupervisorError):
        """Map supervision errors that escape a route onto HTTP statuses."""
        if isinstance(exc, SessionNotFoundError):
            return _error_response(request, 404, "session_not_found", str(exc))
        if isinstance(exc, SessionStateError):
            return _error_response(request, 409, "invalid_session_state", str(exc))
        return _error_response(request, 500, "supervisor_error", str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"Unhandled exception in request {request_id}: {str(exc)}", exc_info=True)
        return _error_response(request, 500, "internal_server_error", "An unexpected error occurred")

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check(service: RecorderService = Depends(get_recorder_service)):
        """Health check endpoint for monitoring and operational purposes."""
        uptime = (datetime.now(timezone.utc) - app_start_time).total_seconds()

        services = {
            "scheduler": "healthy" if service.scheduler.is_running else "idle",
            "event_store": "healthy",
        }

        return HealthResponse(
            status="healthy",
            version=APP_VERSION,
            services=services,
            active_sessions=len(service.supervisor.session_ids()),
            uptime_seconds=uptime,
        )

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint that points to the API documentation."""
        return JSONResponse(
            content={
                "message": APP_TITLE,
                "version": APP_VERSION,
                "documentation": "/docs",
                "openapi": "/openapi.json"
            }
        )

    app.include_router(sessions_router, prefix="/api")
    app.include_router(events_router, prefix="/api")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "recorder.api.main:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
        log_level="info",
        access_log=True,
    )
