"""
API Route Decorators for Cross-Cutting Concerns

Provides decorators for enforcing access control policies on API endpoints.
"""

import secrets
from functools import wraps
from typing import Callable

import structlog
from app.core.config import settings
from fastapi import HTTPException, Request, status

logger = structlog.get_logger()


def require_internal_caller(func: Callable) -> Callable:
    """
    Decorator to ensure endpoint is only called by operators or internal services.

    Validates X-Internal-Secret header against INTERNAL_API_SECRET env var.
    With no secret configured every call is refused.

    Usage:
        @router.post("/clients/{client_id}/cas/reset")
        @require_internal_caller
        async def reset_cas_parse(request: Request, client_id: str):
            ...
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        # Extract request from kwargs (FastAPI injects it)
        request: Request = kwargs.get('request')
        if not request:
            for arg in args:
                if isinstance(arg, Request):
                    request = arg
                    break

        if not request:
            logger.error("require_internal_caller_no_request", func=func.__name__)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal error: Request object not found"
            )

        expected = settings.internal_api_secret
        secret = request.headers.get("X-Internal-Secret") or ""
        if not expected or not secrets.compare_digest(secret, expected):
            logger.warning(
                "internal_endpoint_unauthorized_access",
                path=request.url.path,
                func=func.__name__
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Internal endpoint - access denied"
            )

        return await func(*args, **kwargs)

    return wrapper
