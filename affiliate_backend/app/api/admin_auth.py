"""Admin login endpoint - no auth required."""
import hmac

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.settings import get_settings

router = APIRouter()
logger = get_logger(__name__)


class AdminLoginRequest(BaseModel):
    login: str
    password: str


@router.post("/login")
@limiter.limit("5/minute")
async def admin_login(request: Request, data: AdminLoginRequest):
    """Check admin login and password, return the X-Admin-Token value.

    Rate limited to 5 attempts per minute per IP address.
    """
    settings = get_settings()
    if not settings.ADMIN_LOGIN or not settings.ADMIN_PASSWORD or not settings.ADMIN_SECRET:
        raise HTTPException(status_code=503, detail="Admin panel not configured")
    login_ok = hmac.compare_digest(data.login, settings.ADMIN_LOGIN)
    password_ok = hmac.compare_digest(data.password, settings.ADMIN_PASSWORD)
    if not (login_ok and password_ok):
        logger.warning("Admin login failed", client=request.client.host if request.client else None)
        raise HTTPException(status_code=401, detail="Invalid login or password")
    return {"token": settings.ADMIN_SECRET}
