"""Affiliate profile, referral link, referred users and dashboard. Also the public /ref/{code} redirect."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.api.deps import get_affiliate_accounts, get_session
from affiliate_backend.app.core.auth import get_current_affiliate_id
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.core.settings import get_settings
from affiliate_backend.app.schemas import (
    AffiliateProfileUpdate,
    DashboardResponse,
    ReferralLinkResponse,
    ReferredUserResponse,
)
from affiliate_backend.app.services.accounts import AffiliateAccountService
from affiliate_backend.app.services.referrals import ReferralService

router = APIRouter()
ref_router = APIRouter()


def _handle_referral_error(e: ServiceError):
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/update-profile")
async def update_profile(
    data: AffiliateProfileUpdate,
    affiliate_id: int = Depends(get_current_affiliate_id),
    service: AffiliateAccountService = Depends(get_affiliate_accounts),
):
    try:
        affiliate = await service.update_profile(
            affiliate_id,
            firstname=data.firstname,
            lastname=data.lastname,
            phone=data.phone,
        )
    except ServiceError as e:
        _handle_referral_error(e)
    return {"success": True, "message": "Profile updated successfully", "affiliate": affiliate}


@router.get("/referral-link", response_model=ReferralLinkResponse)
async def referral_link(
    affiliate_id: int = Depends(get_current_affiliate_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await ReferralService(session).get_referral_link(affiliate_id)
    except ServiceError as e:
        _handle_referral_error(e)


@router.get("/referred-users", response_model=List[ReferredUserResponse])
async def referred_users(
    affiliate_id: int = Depends(get_current_affiliate_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await ReferralService(session).list_referred_users(affiliate_id)
    except ServiceError as e:
        _handle_referral_error(e)


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    affiliate_id: int = Depends(get_current_affiliate_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await ReferralService(session).get_dashboard(affiliate_id)
    except ServiceError as e:
        _handle_referral_error(e)


@ref_router.get("/ref/{referral_code}")
@limiter.limit("60/minute")
async def referral_visit(
    request: Request,
    referral_code: str,
    session: AsyncSession = Depends(get_session),
):
    """Record the click and send the visitor to signup with the code prefilled."""
    try:
        await ReferralService(session).record_click(
            referral_code,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except ServiceError as e:
        _handle_referral_error(e)
    signup_url = f"{get_settings().FRONTEND_URL.rstrip('/')}/signup?ref={referral_code}"
    return RedirectResponse(url=signup_url, status_code=302)
