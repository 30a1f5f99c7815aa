"""FastAPI error handlers for AuthVault exceptions.

This module converts AuthVault exceptions into the failure envelope. Only
client-safe information leaves the process: store and configuration errors
become a generic ``internal_error``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from authvault.core.exceptions import (
    AuthVaultError,
    RateLimitError,
    UnauthorizedError,
)
from authvault.fastapi.responses import error_response

logger = logging.getLogger(__name__)

INTERNAL_MESSAGE = "An unexpected error occurred. Please try again later."


async def authvault_exception_handler(
    request: Request,
    exc: AuthVaultError
) -> JSONResponse:
    """Handle AuthVault exceptions.

    Args:
        request: The FastAPI request
        exc: The AuthVault exception

    Returns:
        JSONResponse with the failure envelope
    """
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
        return error_response(500, "internal_error", INTERNAL_MESSAGE)

    headers = {}
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, UnauthorizedError) or exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"

    return error_response(
        exc.status_code,
        exc.code,
        exc.message,
        details=exc.details,
        headers=headers or None,
    )


def _validation_details(errors) -> list[dict]:
    details = []
    for error in errors:
        loc = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
        details.append({
            "field": ".".join(loc),
            "message": error["msg"],
            "code": error["type"],
        })
    return details


async def validation_exception_handler(
    request: Request,
    exc: ValidationError | RequestValidationError
) -> JSONResponse:
    """Handle Pydantic and FastAPI request validation errors.

    Returns:
        JSONResponse with field-level error details
    """
    return error_response(
        400,
        "validation_error",
        "Request validation failed",
        details=_validation_details(exc.errors()),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions without exposing internals."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "internal_error", INTERNAL_MESSAGE)


def register_error_handlers(app: FastAPI, include_generic: bool = False) -> None:
    """Register all AuthVault error handlers with a FastAPI app.

    Args:
        app: The FastAPI application
        include_generic: Whether to include a generic handler for all exceptions
    """
    app.add_exception_handler(AuthVaultError, authvault_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)

    if include_generic:
        app.add_exception_handler(Exception, generic_exception_handler)
