import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.api import user_auth, affiliate_auth, deposits, withdrawals, admin, admin_auth
from affiliate_backend.app.api import affiliate_profile
from affiliate_backend.app.api.deps import get_session, clear_auth_cookie
from affiliate_backend.app.core.auth import require_admin_token
from affiliate_backend.app.services.cache import CacheService
from affiliate_backend.app.core.logging import setup_logging, get_logger
from affiliate_backend.app.core.settings import get_settings
from affiliate_backend.app.core.metrics import PrometheusMiddleware, get_metrics_response

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# JSON logs in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    redis_host=settings.REDIS_HOST,
    paystack_configured=bool(settings.PAYSTACK_SECRET_KEY),
    email_configured=bool(settings.EMAIL_API_URL),
)

for problem in settings.validate_production_settings():
    logger.warning("Configuration problem", problem=problem)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: log
    - Shutdown: close the Redis connection
    """
    logger.info("Application starting up", version="1.0.0")
    yield
    logger.info("Application shutting down")
    await CacheService.close()


app = FastAPI(title="BloomingBet Affiliate Backend", lifespan=lifespan)

# Routers use the same limiter instance for @limiter.limit
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS goes first so it runs last on the way out
ALLOWED_ORIGINS = settings.allowed_origins_list
logger.info("CORS configuration", allowed_origins=ALLOWED_ORIGINS, is_production=settings.is_production)
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    # Credentials need explicit origins, so development allows the usual local frontends
    ALLOWED_ORIGINS = ["http://localhost:3000", "http://localhost:5173", settings.FRONTEND_URL]
    logger.warning("CORS: using development origins. Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(PrometheusMiddleware)

app.include_router(user_auth.router, prefix="/api/auth/user", tags=["user-auth"])
app.include_router(affiliate_auth.router, prefix="/api/auth/affiliates", tags=["affiliate-auth"])
app.include_router(deposits.router, prefix="/api/deposit", tags=["deposits"])
app.include_router(affiliate_profile.router, prefix="/api/affiliate/profile", tags=["affiliate"])
app.include_router(withdrawals.router, prefix="/api/affiliate/withdrawal", tags=["withdrawals"])
# Public referral link target
app.include_router(affiliate_profile.ref_router, tags=["referrals"])
# Admin login needs no token, so it is registered before the protected router
app.include_router(admin_auth.router, prefix="/api/admin", tags=["admin"])
app.include_router(
    admin.router,
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_token)],
)


@app.post("/api/logout")
async def logout(response: Response):
    """Clear the auth cookie. Bearer tokens simply expire."""
    clear_auth_cookie(response)
    return {"success": True, "message": "Logged out successfully"}


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    Health check endpoint for monitoring and orchestration.
    Checks database and Redis connectivity.
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {
            "database": "ok",
            "redis": "ok"
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    try:
        redis = await CacheService.get_redis()
        await redis.ping()
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["redis"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus metrics, or OpenMetrics when `openmetrics` is set."""
    return get_metrics_response(openmetrics=openmetrics)
