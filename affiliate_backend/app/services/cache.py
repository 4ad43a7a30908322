"""
Redis-backed expiring store.

Holds short-lived account state: registration / password-reset / new-device
OTP codes and affiliate registrations waiting for e-mail verification.
Every key carries a TTL so abandoned flows clean themselves up.
"""
import json
from typing import Optional, Any
from redis.asyncio import Redis

from affiliate_backend.app.core.settings import get_settings


class CacheService:
    """Service for expiring key/value operations using Redis."""

    _redis: Optional[Redis] = None

    TTL_DEFAULT = 300  # 5 minutes

    # OTP purposes
    OTP_VERIFY = "verify"
    OTP_RESET = "reset"
    OTP_DEVICE = "device"

    # Cache key templates
    KEY_OTP = "otp:{kind}:{purpose}:{email}"
    KEY_PENDING_AFFILIATE = "pending:affiliate:{email}"

    @classmethod
    async def get_redis(cls) -> Redis:
        """Get or create Redis connection."""
        if cls._redis is None:
            settings = get_settings()
            cls._redis = Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                decode_responses=True
            )
        return cls._redis

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._redis:
            await cls._redis.aclose()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

    async def set(self, key: str, value: Any, ttl: int = TTL_DEFAULT):
        """Set value in cache with TTL."""
        await self.redis.set(key, json.dumps(value, ensure_ascii=False), ex=ttl)

    async def delete(self, key: str):
        """Delete value from cache."""
        await self.redis.delete(key)

    # ----- One-time codes -----

    def _otp_key(self, kind: str, purpose: str, email: str) -> str:
        return self.KEY_OTP.format(kind=kind, purpose=purpose, email=email.lower())

    async def set_otp(self, kind: str, purpose: str, email: str, code: str, ttl: int):
        """Store a code for (account kind, purpose, email); replaces any earlier one."""
        await self.set(self._otp_key(kind, purpose, email), {"code": code}, ttl)

    async def check_otp(self, kind: str, purpose: str, email: str, code: str) -> bool:
        """True when `code` matches the stored, unexpired code. Does not consume it."""
        stored = await self.get(self._otp_key(kind, purpose, email))
        return bool(stored) and stored.get("code") == code

    async def consume_otp(self, kind: str, purpose: str, email: str, code: str) -> bool:
        """Check the code and delete it on a match, so it cannot be replayed."""
        if not await self.check_otp(kind, purpose, email, code):
            return False
        await self.delete(self._otp_key(kind, purpose, email))
        return True

    # ----- Pending affiliate registrations -----

    async def get_pending_affiliate(self, email: str) -> Optional[dict]:
        return await self.get(self.KEY_PENDING_AFFILIATE.format(email=email.lower()))

    async def set_pending_affiliate(self, email: str, data: dict, ttl: int):
        await self.set(self.KEY_PENDING_AFFILIATE.format(email=email.lower()), data, ttl)

    async def delete_pending_affiliate(self, email: str):
        await self.delete(self.KEY_PENDING_AFFILIATE.format(email=email.lower()))
