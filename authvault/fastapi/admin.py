"""Administrative HTTP routes."""

from fastapi import APIRouter, Depends, Query, Request

from authvault.auth.context import RequestContext
from authvault.auth.rate_limit import RateLimitResult
from authvault.auth.service import AuthContext, AuthService
from authvault.auth.validation import AdminAccountUpdate, parse_request
from authvault.fastapi.dependencies import (
    get_auth_service,
    get_request_context,
    rate_limit,
    read_json,
    require_admin,
)
from authvault.fastapi.responses import success_response

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/accounts")
async def list_accounts(
    limit: int | None = Query(default=None, ge=1, le=1000),
    rate: RateLimitResult = Depends(rate_limit("admin")),
    admin: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    accounts = await service.list_accounts(limit)
    return success_response(
        {"accounts": accounts, "total": len(accounts)},
        headers=rate.headers(),
    )


@router.patch("/accounts/{account_id}")
async def update_account(
    account_id: str,
    request: Request,
    rate: RateLimitResult = Depends(rate_limit("admin")),
    context: RequestContext = Depends(get_request_context),
    admin: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    update = parse_request(AdminAccountUpdate, await read_json(request)).unwrap()
    account = await service.update_account(admin, account_id, update, context)
    return success_response({"user": account}, headers=rate.headers())


@router.post("/cleanup")
async def cleanup(
    rate: RateLimitResult = Depends(rate_limit("admin")),
    admin: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    return success_response({"removed": await service.cleanup()}, headers=rate.headers())
