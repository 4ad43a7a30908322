from typing import AsyncGenerator
from fastapi import Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from affiliate_backend.app.core.auth import TOKEN_COOKIE_NAME
from affiliate_backend.app.core.database import async_session
from affiliate_backend.app.core.settings import get_settings
from affiliate_backend.app.services.accounts import AffiliateAccountService, UserAccountService
from affiliate_backend.app.services.cache import CacheService
from affiliate_backend.app.services.deposits import DepositReconciler
from affiliate_backend.app.services.paystack import PaystackClient, get_gateway


# Database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


# Session factory for workflows that scope their own transactions
def get_session_factory() -> async_sessionmaker:
    return async_session


# Redis-backed expiring store per request
async def get_cache() -> AsyncGenerator[CacheService, None]:
    redis = await CacheService.get_redis()
    yield CacheService(redis)


def get_reconciler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    gateway: PaystackClient = Depends(get_gateway),
) -> DepositReconciler:
    return DepositReconciler(session_factory, gateway)


def get_user_accounts(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
) -> UserAccountService:
    return UserAccountService(session, cache)


def get_affiliate_accounts(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
) -> AffiliateAccountService:
    return AffiliateAccountService(session, cache)


def set_auth_cookie(response: Response, token: str) -> None:
    """httpOnly session cookie; cross-site in production, so it must be Secure there."""
    settings = get_settings()
    response.set_cookie(
        key=TOKEN_COOKIE_NAME,
        value=token,
        max_age=settings.JWT_EXPIRY_HOURS * 3600,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def clear_auth_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=TOKEN_COOKIE_NAME,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )
