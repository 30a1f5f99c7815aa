"""Response envelope and auth cookie helpers.

Every response body is ``{"success": bool, "data" | "error": ..., "timestamp": iso}``.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from authvault.auth.context import ACCESS_COOKIE, CSRF_COOKIE, REFRESH_COOKIE, SESSION_COOKIE
from authvault.auth.sessions import SessionBundle
from authvault.core.settings import AuthVaultSettings


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_response(
    data: Any = None,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": True,
            "data": jsonable_encoder(data),
            "timestamp": _timestamp(),
        },
        headers=headers,
    )


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = jsonable_encoder(details)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "timestamp": _timestamp()},
        headers=headers,
    )


def _cookie_options(settings: AuthVaultSettings) -> dict:
    return {"secure": settings.secure_cookies, "samesite": "lax", "path": "/"}


def set_access_cookie(
    response: JSONResponse, token: str, max_age: int, settings: AuthVaultSettings
) -> None:
    response.set_cookie(
        ACCESS_COOKIE, token, max_age=max_age, httponly=True, **_cookie_options(settings)
    )


def set_refresh_cookie(
    response: JSONResponse, token: str, expires_at: datetime, settings: AuthVaultSettings
) -> None:
    max_age = int((expires_at - datetime.now(timezone.utc)).total_seconds())
    response.set_cookie(
        REFRESH_COOKIE, token, max_age=max(0, max_age), httponly=True, **_cookie_options(settings)
    )


def set_session_cookies(
    response: JSONResponse, bundle: SessionBundle, settings: AuthVaultSettings
) -> None:
    """Set the access, session, CSRF and (if issued) refresh cookies."""
    options = _cookie_options(settings)
    session_max_age = int(
        (bundle.session.expires_at - datetime.now(timezone.utc)).total_seconds()
    )

    set_access_cookie(response, bundle.access_token.token, bundle.access_token.expires_in, settings)
    response.set_cookie(
        SESSION_COOKIE, bundle.session_token, max_age=session_max_age, httponly=True, **options
    )
    # Readable by scripts for the double-submit header
    response.set_cookie(
        CSRF_COOKIE, bundle.csrf_token, max_age=session_max_age, httponly=False, **options
    )
    if bundle.refresh_token:
        set_refresh_cookie(
            response, bundle.refresh_token.token, bundle.refresh_token.expires_at, settings
        )


def clear_auth_cookies(response: JSONResponse, settings: AuthVaultSettings) -> None:
    options = _cookie_options(settings)
    for name in (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE, CSRF_COOKIE):
        response.delete_cookie(name, **options)
