"""
CareNote Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers.
Who:   uvicorn (`uvicorn carenote.main:app`) and the test suite.

Application Architecture:
    ┌───────────────────────────────────────────────────────────────┐
    │                         FastAPI App                           │
    │                                                               │
    │  Middleware:  Rate Limit → Request ID → Logging → GZip → CORS │
    │                                                               │
    │  Routes:  /api/auth  /api/pricing  /api/subscription          │
    │           /api/clinic  /api/sessions  /api/templates          │
    │           /api/leads  /api/admin  /health                     │
    │                                                               │
    │  Exception Handlers (CareNoteError subclasses → HTTP):        │
    │    400 validation │ 401 auth │ 402 payment │ 403 forbidden    │
    │    404 not found  │ 409 conflict │ 429 rate limit             │
    │    502 upstream   │ 503 circuit open │ 500 everything else    │
    └───────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check (logged, not fatal)
    Shutdown: close the Corti HTTP client, dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from carenote import __version__
from carenote.config import settings
from carenote.database import dispose_engine
from carenote.exceptions import (
    AuthenticationError,
    CareNoteError,
    CircuitBreakerOpenError,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    InvariantViolationError,
    NotFoundError,
    PaymentRequiredError,
    RateLimitExceededError,
    UpstreamServiceError,
    ValidationError,
)
from carenote.middleware.logging import RequestLoggingMiddleware
from carenote.middleware.rate_limit import RateLimitMiddleware
from carenote.middleware.request_id import RequestIDMiddleware, request_id_var
from carenote.routes import admin, auth, clinic, contact, health, leads, sessions, subscriptions, templates
from carenote.services.corti_service import corti_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries log every operation at DEBUG/INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosmtplib").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("CareNote Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and the configuration error stay visible
        logger.error("Configuration error: %s", str(e))

    if not settings.email_enabled:
        logger.warning("EMAIL_ENABLED is false: outgoing emails are logged, not sent")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("CareNote Backend shutting down...")
    await corti_service.close()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details or None,
            "request_id": request_id_var.get("") or None,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the CareNoteError hierarchy to HTTP responses.

    Every body has the shape {"error", "message", "details", "request_id"}.
    Internal details (SQL, stack traces, upstream payloads) are logged, never
    returned.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(
            401, "authentication_failed", exc.message, exc.context,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(PaymentRequiredError)
    async def handle_payment_required(request: Request, exc: PaymentRequiredError):
        logger.info("[%s] Subscription gate: %s", request_id_var.get(""), exc.reason)
        return _error_response(402, "payment_required", exc.message, exc.context)

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        return _error_response(403, "forbidden", exc.message, exc.context)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        return _error_response(409, "conflict", exc.message, exc.context)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429, "rate_limit_exceeded", exc.message, exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(UpstreamServiceError)
    async def handle_upstream_error(request: Request, exc: UpstreamServiceError):
        logger.error(
            "[%s] Upstream %s.%s failed: %s",
            request_id_var.get(""), exc.service, exc.operation, exc.message,
        )
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(
            502,
            "upstream_failure",
            exc.message,
            {"service": exc.service, "operation": exc.operation},
            headers=headers,
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503, "service_unavailable", exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(DatabaseError)
    @app.exception_handler(InvariantViolationError)
    async def handle_internal_error(request: Request, exc: CareNoteError):
        logger.error(
            "[%s] %s: %s | Context: %s",
            request_id_var.get(""), type(exc).__name__, exc.message, exc.context,
        )
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(CareNoteError)
    async def handle_carenote_error(request: Request, exc: CareNoteError):
        logger.error("[%s] Unhandled %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", "") or request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "details": None,
                "request_id": rid or None,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="CareNote API",
        description=(
            "Backend for the CareNote clinical documentation platform: accounts, "
            "clinic subscriptions, recording sessions and AI-generated clinical notes."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(subscriptions.router)
    app.include_router(clinic.router)
    app.include_router(sessions.router)
    app.include_router(templates.router)
    app.include_router(leads.router)
    app.include_router(contact.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
