"""Betting-site user accounts: registration, OTP verification, login, password recovery."""
from fastapi import Depends, Request

from affiliate_backend.app.api.account_routes import build_account_router, handle_account_error
from affiliate_backend.app.api.deps import get_user_accounts
from affiliate_backend.app.core.auth import get_current_user_id
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.schemas import MessageResponse, UserRegisterRequest
from affiliate_backend.app.services.accounts import UserAccountService

router = build_account_router("user", get_user_accounts, get_current_user_id)


@router.post("/register", response_model=MessageResponse, status_code=201)
@limiter.limit("5/minute")
async def register(
    request: Request,
    data: UserRegisterRequest,
    service: UserAccountService = Depends(get_user_accounts),
):
    try:
        await service.register(
            fullname=data.fullname,
            email=data.email,
            phone=data.phone,
            password=data.password,
            device_id=data.device_id,
            coupon_code=data.coupon_code,
        )
    except ServiceError as e:
        handle_account_error(e)
    return MessageResponse(message="User registered. Please verify your email.")
