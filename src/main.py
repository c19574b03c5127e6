"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Tests can pass a ready-made service container

For local development:
    uvicorn src.main:app --reload

For production:
    gunicorn src.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import accounts, health, objects, uploads
from .api.services import Services, build_services
from .config.settings import Settings, get_settings
from .core.errors import AuthError, BuskerError, FieldError, ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    On startup, builds the service container (backend clients, gateway,
    coordinator) unless one was injected. On shutdown, releases pooled
    connections.
    """
    settings: Settings = app.state.settings

    logger.info(
        "Busker API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "r2": settings.r2_mock_mode,
                "postgres": settings.postgres_mock_mode,
                "supabase": settings.supabase_mock_mode,
            }
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)

    yield

    # Shutdown
    app.state.services.close()
    logger.info("Busker API shutting down")


def _field_name(location: tuple) -> str:
    parts = [str(part) for part in location if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application. Pass `services` to
    run against specific backends (tests use in-memory ones); otherwise
    they are built from settings at startup.
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=settings.log_level.upper(),
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Backend for a street-performer video sharing app.

        ## Media workflow

        1. **Request an upload URL**: `POST /upload-url`
        2. **Upload** the bytes straight to object storage with `PUT <uploadURL>`
        3. **Finalize**: `POST /objects/{id}/finalize` attaches owner and visibility
        4. **Stream**: `GET /objects/{id}` with `Range` headers for seeking

        ## Accounts

        `POST /accounts` creates the login and the profile together, or
        neither. Retrying with the same `idempotency_key` returns the same
        account.

        ## Authentication

        Send `Authorization: Bearer <access_token>` from the account session.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )
    app.include_router(uploads.router, tags=["Uploads"])
    app.include_router(objects.router, tags=["Objects"])
    app.include_router(accounts.router, tags=["Accounts"])

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - points at docs."""
        return {
            "message": "Busker API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(BuskerError)
    async def busker_error_handler(request: Request, exc: BuskerError):
        """Render application errors as {code, message[, errors]}."""
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "code": exc.code,
                    "error": exc.message,
                    "compensations": [
                        {"name": c.name, "succeeded": c.succeeded} for c in exc.compensations
                    ],
                },
            )

        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_payload(),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Body/param type errors, in the same shape as field validation failures."""
        errors = [
            FieldError(
                field=_field_name(tuple(error.get("loc", ()))),
                code="INVALID_FIELD",
                message=error.get("msg", "Invalid value"),
            )
            for error in exc.errors()
        ]
        return JSONResponse(status_code=422, content=ValidationError(errors).to_payload())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "Internal server error. Please contact support if this persists.",
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    # Get settings to determine log level
    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
