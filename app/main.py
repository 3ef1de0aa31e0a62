import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Type

import structlog
from app.core.logging_config import configure_logging

# Initialize production logging configuration
configure_logging()

_startup_logger = logging.getLogger(__name__)

# Import routers
from app.api.v1 import cas
from app.core.config import settings
from app.core.exceptions import (
    ConfigError,
    ConflictError,
    DecryptionError,
    DomainException,
    NotFoundError,
    PersistenceError,
    StorageIOError,
    ValidationError,
)
from app.middleware.trace_middleware import TraceMiddleware
from app.services.cas.factory import build_cas_service
from app.services.pdf.exceptions import CasParserError
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()

# Create rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    _startup_logger.info("starting_application version=%s", settings.api_version)

    if getattr(app.state, "cas_service", None) is None:
        app.state.cas_service = build_cas_service(settings)
    logger.info(
        "cas_service_ready",
        repository_backend=settings.repository_backend,
        parse_backend=settings.cas_parse_backend,
    )

    yield

    # Shutdown
    _startup_logger.info("shutting_down_application")


_is_production = settings.environment == "production"

# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    lifespan=lifespan,
    docs_url=None if _is_production else f"{settings.api_v1_prefix}/docs",
    redoc_url=None if _is_production else f"{settings.api_v1_prefix}/redoc",
    openapi_url=None if _is_production else f"{settings.api_v1_prefix}/openapi.json",
)

# Add CORS middleware with strict configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,  # Must be explicit list, no wildcards
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Trace-Id"],
    expose_headers=["Content-Type", "X-Trace-Id"],
    max_age=600,  # Cache preflight for 10 minutes
)

# Add security headers middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: Callable) -> StarletteResponse:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if _is_production:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains; preload"
        return response


app.add_middleware(SecurityHeadersMiddleware)

# Add trace ID middleware for request tracking
app.add_middleware(TraceMiddleware)

# Add rate limiting middleware
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Include routers
app.include_router(cas.router, prefix=settings.api_v1_prefix)


# Exception handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
        },
    )


def _make_serializable(obj):
    """Recursively convert objects to JSON-serializable format"""
    if isinstance(obj, dict):
        return {key: _make_serializable(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_make_serializable(item) for item in obj]
    elif isinstance(obj, tuple):
        return tuple(_make_serializable(item) for item in obj)
    elif isinstance(obj, Exception):
        return str(obj)
    elif hasattr(obj, "__dict__"):
        return str(obj)
    else:
        return obj


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors"""
    serializable_errors = _make_serializable(exc.errors())

    logger.warning("validation_error", errors=serializable_errors, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": serializable_errors,
        },
    )


# Domain exception handlers - convert domain exceptions to HTTP responses
DOMAIN_STATUS_CODES: Dict[Type[DomainException], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    DecryptionError: status.HTTP_400_BAD_REQUEST,
    CasParserError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ConfigError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    StorageIOError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _domain_error_response(exc: DomainException, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": _make_serializable(exc.details),
        },
    )


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    """Handle client store failures without leaking driver messages"""
    logger.error("persistence_error", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": exc.error_code,
            "message": "A database error occurred. Please try again.",
            "details": {},
        },
    )


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    """Map each error category to its HTTP status"""
    status_code = next(
        (code for exc_type, code in DOMAIN_STATUS_CODES.items() if isinstance(exc, exc_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "domain_error",
        error_code=exc.error_code,
        error=exc.message,
        status_code=status_code,
        path=request.url.path,
    )
    return _domain_error_response(exc, status_code)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(
        "unhandled_exception", error=str(exc), path=request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
        },
    )


# Health check endpoint
@app.get("/health")
async def health() -> JSONResponse:
    """Health check endpoint"""
    logger.info("healthcheck", status="ok")
    return JSONResponse({"status": "ok", "version": settings.api_version})


@app.get(f"{settings.api_v1_prefix}/health")
@limiter.limit(f"{settings.rate_limit_requests}/minute")
async def health_v1(request: Request) -> JSONResponse:
    """API v1 health check with rate limiting"""
    logger.info("healthcheck", status="ok")
    return JSONResponse(
        {
            "status": "ok",
            "version": settings.api_version,
            "repositoryBackend": settings.repository_backend,
            "parseBackend": settings.cas_parse_backend,
        }
    )
