"""Affiliate accounts. Registration is held in the cache until the e-mailed OTP is verified."""
from fastapi import Depends, Request

from affiliate_backend.app.api.account_routes import build_account_router, handle_account_error
from affiliate_backend.app.api.deps import get_affiliate_accounts
from affiliate_backend.app.core.auth import get_current_affiliate_id
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.schemas import AffiliateRegisterRequest, MessageResponse
from affiliate_backend.app.services.accounts import AffiliateAccountService

router = build_account_router("affiliate", get_affiliate_accounts, get_current_affiliate_id)


@router.post("/register", response_model=MessageResponse)
@limiter.limit("5/minute")
async def register(
    request: Request,
    data: AffiliateRegisterRequest,
    service: AffiliateAccountService = Depends(get_affiliate_accounts),
):
    try:
        await service.register(
            firstname=data.firstname,
            lastname=data.lastname,
            email=data.email,
            phone=data.phone,
            password=data.password,
            device_id=data.device_id,
        )
    except ServiceError as e:
        handle_account_error(e)
    return MessageResponse(message="OTP sent to your email for verification.")
