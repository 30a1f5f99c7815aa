"""FastAPI dependencies exposing the application's services per request."""

import json
from typing import Any

from fastapi import Depends, Request

from authvault.auth.context import CSRF_HEADER, RequestContext, extract_bearer, resolve_client_ip
from authvault.auth.rate_limit import RateLimiter, RateLimitResult
from authvault.auth.service import AuthContext, AuthService
from authvault.core.exceptions import InputValidationError, RateLimitError
from authvault.core.settings import AuthVaultSettings


def get_settings(request: Request) -> AuthVaultSettings:
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_request_context(
    request: Request,
    settings: AuthVaultSettings = Depends(get_settings),
) -> RequestContext:
    """Build the transport-independent context for this request."""
    direct_ip = request.client.host if request.client else None
    return RequestContext(
        ip_address=resolve_client_ip(
            request.headers,
            direct_ip,
            trust_forwarded=settings.trust_x_forwarded_for,
            trusted_proxies=set(settings.trusted_proxies),
        ),
        user_agent=request.headers.get("user-agent"),
        method=request.method,
        bearer_token=extract_bearer(request.headers.get("authorization")),
        cookies=dict(request.cookies),
        csrf_header=request.headers.get(CSRF_HEADER),
    )


async def read_json(request: Request) -> Any:
    """Decode the request body; an empty body reads as ``{}``.

    Raises:
        InputValidationError: If the body is not valid JSON
    """
    body = await request.body()
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except ValueError:
        raise InputValidationError("Request body must be valid JSON")


def rate_limit(action: str = "default"):
    """Dependency factory enforcing the rate limit of ``action``.

    Args:
        action: The action name for limit configuration

    Returns:
        Dependency function for FastAPI

    Example:
        @router.post("/auth/login")
        async def login(rate: RateLimitResult = Depends(rate_limit("auth_login"))):
            ...
    """

    async def check_limit(
        context: RequestContext = Depends(get_request_context),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitResult:
        result = await limiter.check_rate_limit(context, action)
        if not result.allowed:
            raise RateLimitError(
                "Too many requests. Please try again later.",
                retry_after=result.retry_after,
            )
        return result

    return check_limit


async def get_current_auth(
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> AuthContext:
    """Require an authenticated caller."""
    return await service.authenticate(context)


async def require_admin(
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> AuthContext:
    """Require an authenticated caller with the admin role."""
    return await service.authenticate(context, require_admin=True)
