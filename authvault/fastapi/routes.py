"""HTTP routes for the credential and session lifecycle."""

from fastapi import APIRouter, Depends, Request

from authvault.auth.context import RequestContext
from authvault.auth.rate_limit import RateLimiter, RateLimitResult
from authvault.auth.service import AuthContext, AuthResult, AuthService
from authvault.auth.validation import (
    AvailabilityQuery,
    ChangePasswordRequest,
    ChangeUsernameRequest,
    ForceLogoutRequest,
    LoginRequest,
    LogoutRequest,
    ProfileUpdateRequest,
    RefreshRequest,
    RegisterRequest,
    parse_request,
)
from authvault.core.settings import AuthVaultSettings
from authvault.fastapi.dependencies import (
    get_auth_service,
    get_current_auth,
    get_rate_limiter,
    get_request_context,
    get_settings,
    rate_limit,
    read_json,
    require_admin,
)
from authvault.fastapi.responses import (
    clear_auth_cookies,
    set_access_cookie,
    set_refresh_cookie,
    set_session_cookies,
    success_response,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def _session_payload(result: AuthResult) -> dict:
    bundle = result.bundle
    tokens = {
        "access_token": bundle.access_token.token,
        "token_type": "bearer",
        "expires_in": bundle.access_token.expires_in,
        "csrf_token": bundle.csrf_token,
    }
    if bundle.refresh_token:
        tokens["refresh_token"] = bundle.refresh_token.token
        tokens["refresh_expires_at"] = bundle.refresh_token.expires_at
    return {
        "user": result.account,
        "session": {
            "id": bundle.session.id,
            "expires_at": bundle.session.expires_at,
            "remember_me": bundle.session.remember_me,
        },
        "tokens": tokens,
    }


@router.post("/login")
async def login(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("auth_login")),
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: AuthVaultSettings = Depends(get_settings),
):
    data = parse_request(LoginRequest, await read_json(request)).unwrap()
    result = await service.login(data, context)
    await limiter.record_success(context, "auth_login")

    response = success_response(_session_payload(result), headers=rate.headers())
    set_session_cookies(response, result.bundle, settings)
    return response


@router.post("/register")
async def register(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("auth_register")),
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: AuthVaultSettings = Depends(get_settings),
):
    data = parse_request(RegisterRequest, await read_json(request)).unwrap()
    result = await service.register(data, context)
    await limiter.record_success(context, "auth_register")

    response = success_response(
        _session_payload(result), status_code=201, headers=rate.headers()
    )
    set_session_cookies(response, result.bundle, settings)
    return response


@router.get("/register")
async def check_availability(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("username_check")),
    service: AuthService = Depends(get_auth_service),
):
    query = parse_request(AvailabilityQuery, dict(request.query_params)).unwrap()
    return success_response(await service.check_availability(query), headers=rate.headers())


@router.post("/refresh")
async def refresh(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("auth_refresh")),
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
    settings: AuthVaultSettings = Depends(get_settings),
):
    data = parse_request(RefreshRequest, await read_json(request)).unwrap()
    if data.device_info:
        context = context.with_device(data.device_info.to_device())
    result = await service.refresh(data.refresh_token, context)

    payload = {
        "user": result.account,
        "tokens": {
            "access_token": result.access_token.token,
            "token_type": "bearer",
            "expires_in": result.access_token.expires_in,
            "refresh_token": result.refresh_token,
            "refresh_expires_at": result.refresh_expires_at,
            "rotated": result.rotated,
        },
    }
    if result.session:
        payload["session"] = {"id": result.session.id, "expires_at": result.session.expires_at}

    response = success_response(payload, headers=rate.headers())
    set_access_cookie(response, result.access_token.token, result.access_token.expires_in, settings)
    if result.rotated:
        set_refresh_cookie(response, result.refresh_token, result.refresh_expires_at, settings)
    return response


@router.get("/refresh")
async def list_refresh_tokens(
    rate: RateLimitResult = Depends(rate_limit("auth_profile")),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
):
    tokens = await service.list_refresh_tokens(auth)
    return success_response(
        {
            "tokens": [
                {
                    "id": token.id,
                    "token_hash": f"{token.token_hash[:8]}...",
                    "session_id": token.session_id,
                    "device_info": token.device_info,
                    "ip_address": token.ip_address,
                    "created_at": token.created_at,
                    "expires_at": token.expires_at,
                }
                for token in tokens
            ],
            "total": len(tokens),
        },
        headers=rate.headers(),
    )


@router.post("/logout")
async def logout(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("auth_logout")),
    context: RequestContext = Depends(get_request_context),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
    settings: AuthVaultSettings = Depends(get_settings),
):
    data = parse_request(LogoutRequest, await read_json(request)).unwrap()
    counts = await service.logout(
        auth,
        context,
        logout_all=data.logout_all,
        reason=data.reason,
        refresh_token=data.refresh_token,
    )
    message = "Logged out from all devices" if data.logout_all else "Logged out successfully"
    response = success_response({"message": message, **counts}, headers=rate.headers())
    clear_auth_cookies(response, settings)
    return response


@router.delete("/logout")
async def force_logout(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("admin")),
    admin: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    data = parse_request(ForceLogoutRequest, dict(request.query_params)).unwrap()
    counts = await service.force_logout(admin, data.user_id, data.reason)
    return success_response(
        {"message": "Account logged out from all devices", **counts},
        headers=rate.headers(),
    )


@router.get("/profile")
async def profile(
    rate: RateLimitResult = Depends(rate_limit("auth_profile")),
    auth: AuthContext = Depends(get_current_auth),
):
    return success_response({"user": auth.account}, headers=rate.headers())


@router.api_route("/profile", methods=["PUT", "PATCH"])
async def update_profile(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("profile_update")),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
):
    data = parse_request(ProfileUpdateRequest, await read_json(request)).unwrap()
    account, changes = await service.update_profile(auth, data)
    return success_response(
        {"user": account, "message": "Profile updated successfully", "changes": changes},
        headers=rate.headers(),
    )


@router.get("/session")
async def session_info(
    rate: RateLimitResult = Depends(rate_limit("auth_profile")),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
):
    stats = await service.session_info(auth)
    return success_response(
        {
            "authenticated": True,
            "user": auth.account,
            "session": auth.session.public() if auth.session else None,
            "stats": stats.to_dict(),
        },
        headers=rate.headers(),
    )


@router.get("/sessions")
async def list_sessions(
    rate: RateLimitResult = Depends(rate_limit("auth_profile")),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
):
    sessions = await service.list_sessions(auth)
    current = auth.session.id if auth.session else None
    return success_response(
        {
            "sessions": [
                {**session.public(), "current": session.id == current}
                for session in sessions
            ],
            "total": len(sessions),
        },
        headers=rate.headers(),
    )


@router.post("/change-password")
async def change_password(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("change_password")),
    context: RequestContext = Depends(get_request_context),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: AuthVaultSettings = Depends(get_settings),
):
    data = parse_request(ChangePasswordRequest, await read_json(request)).unwrap()
    counts = await service.change_password(auth, data, context)
    await limiter.record_success(context, "change_password")

    response = success_response(
        {"message": "Password changed. All sessions have been logged out.", **counts},
        headers=rate.headers(),
    )
    clear_auth_cookies(response, settings)
    return response


@router.post("/change-username")
async def change_username(
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("profile_update")),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
):
    data = parse_request(ChangeUsernameRequest, await read_json(request)).unwrap()
    account = await service.change_username(auth, data)
    return success_response({"user": account}, headers=rate.headers())
