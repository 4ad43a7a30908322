"""
JWT authentication for users and affiliates, admin token check.

Tokens are accepted from the `Authorization: Bearer <token>` header (API
clients) or from the `token` cookie set at login (browser).
"""
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Cookie, Header, HTTPException

from affiliate_backend.app.core.constants import ROLE_AFFILIATE, ROLE_USER
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.settings import get_settings

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_COOKIE_NAME = "token"


def _jwt_secret() -> str:
    settings = get_settings()
    secret = settings.JWT_SECRET or settings.ADMIN_SECRET
    if not secret:
        # Fail closed: no secret means no token can be issued or trusted
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    return secret


def create_access_token(account_id: int, role: str) -> str:
    """Create JWT for a user or affiliate session."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "role": role,
        "exp": now + timedelta(hours=get_settings().JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, role: str) -> Optional[int]:
    """Decode JWT and return the account id, or None if invalid, expired or of another role."""
    try:
        payload = jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
        if payload.get("role") != role:
            return None
        return int(payload["sub"])
    except (jwt.InvalidTokenError, ValueError, KeyError):
        return None


def _extract_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization:
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise HTTPException(
                status_code=401,
                detail="Invalid Authorization header format. Expected: Bearer <token>",
            )
        return parts[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="Not authenticated")


def _require_role(role: str, authorization: Optional[str], cookie_token: Optional[str]) -> int:
    account_id = decode_access_token(_extract_token(authorization, cookie_token), role)
    if account_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return account_id


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None, alias=TOKEN_COOKIE_NAME),
) -> int:
    """FastAPI dependency: id of the authenticated betting-site user."""
    return _require_role(ROLE_USER, authorization, token)


async def get_current_affiliate_id(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None, alias=TOKEN_COOKIE_NAME),
) -> int:
    """FastAPI dependency: id of the authenticated affiliate."""
    return _require_role(ROLE_AFFILIATE, authorization, token)


async def require_admin_token(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    """Require admin token. If ADMIN_SECRET is not configured, reject all requests (fail-closed)."""
    admin_secret = get_settings().ADMIN_SECRET
    if not admin_secret:
        logger.warning("ADMIN_SECRET not configured, admin endpoints are blocked")
        raise HTTPException(status_code=503, detail="Admin panel not configured (ADMIN_SECRET missing)")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, admin_secret):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")
