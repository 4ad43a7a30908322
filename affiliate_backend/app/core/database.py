from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from affiliate_backend.app.core.settings import get_settings
from affiliate_backend.app.core.base import Base  # noqa: F401 - re-exported for migrations

settings = get_settings()

engine = create_async_engine(
    url=settings.db_url,
    echo=False,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,  # drop dead connections before handing them out
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_timeout=30,
)
async_session = async_sessionmaker(engine, expire_on_commit=False)
