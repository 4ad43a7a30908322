"""
Test fixtures for the affiliate backend tests.

Provides:
- In-memory SQLite database per test
- Fake Paystack gateway and dict-backed cache
- Async test client with dependency overrides
- Factories for users, affiliates and deposits
"""
# Environment must be set before the app is imported
import os

TEST_PAYSTACK_SECRET = "sk_test_secret"

os.environ.setdefault("ADMIN_LOGIN", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "admin")
os.environ.setdefault("ADMIN_SECRET", "test_admin_secret")
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
# Required by Settings validation; tests use SQLite
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["PAYSTACK_SECRET_KEY"] = TEST_PAYSTACK_SECRET
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["REFERRAL_BASE_URL"] = "https://bloomingbet.com/ref"
os.environ.pop("EMAIL_API_URL", None)

import asyncio
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from affiliate_backend.app.core.base import Base
from affiliate_backend.app.core.auth import create_access_token
from affiliate_backend.app.core.constants import DEPOSIT_PENDING, ROLE_AFFILIATE, ROLE_USER
from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.core.password_utils import hash_password
from affiliate_backend.app.main import app
from affiliate_backend.app.api.deps import get_session, get_cache, get_session_factory
from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.models.deposit import Deposit
from affiliate_backend.app.models.user import User
from affiliate_backend.app.services.cache import CacheService
from affiliate_backend.app.services.paystack import (
    GatewayInitResult,
    GatewayUnreachable,
    GatewayVerification,
    PaystackClient,
    get_gateway,
)
import affiliate_backend.app.models.commission  # noqa: F401
import affiliate_backend.app.models.referral  # noqa: F401
import affiliate_backend.app.models.withdrawal  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "Secret123"

# Routers are rate limited in production; tests hit them in tight loops
limiter.enabled = False


class MockCacheService(CacheService):
    """Dict instead of Redis. OTP and pending-registration helpers run unchanged."""

    def __init__(self):
        super().__init__(redis=None)
        self._cache: Dict[str, object] = {}

    async def get(self, key: str):
        return self._cache.get(key)

    async def set(self, key: str, value, ttl: int = 300):
        self._cache[key] = value

    async def delete(self, key: str):
        self._cache.pop(key, None)


class FakeGateway(PaystackClient):
    """
    Paystack stand-in. Signature checks use the real HMAC code;
    initialize / verify answer from `transactions`.
    """

    def __init__(self):
        super().__init__(secret_key=TEST_PAYSTACK_SECRET, base_url="https://paystack.test")
        self.transactions: Dict[str, Tuple[str, int]] = {}
        self.initialized: List[dict] = []
        self.verify_calls: List[str] = []
        self.unreachable = False

    def set_transaction(self, reference: str, status: str, amount_minor: int):
        self.transactions[reference] = (status, amount_minor)

    async def initialize(self, email, amount_minor, reference, callback_url, metadata=None):
        if self.unreachable:
            raise GatewayUnreachable()
        self.initialized.append({
            "email": email,
            "amount_minor": amount_minor,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
        })
        return GatewayInitResult(
            authorization_url=f"https://checkout.paystack.test/{reference}",
            access_code=f"ac_{reference}",
            reference=reference,
        )

    async def verify(self, reference):
        self.verify_calls.append(reference)
        # Yield so concurrent reconciliations interleave
        await asyncio.sleep(0)
        if self.unreachable:
            raise GatewayUnreachable()
        status, amount_minor = self.transactions.get(reference, ("abandoned", 0))
        return GatewayVerification(status=status, amount_minor=amount_minor, reference=reference)


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_cache() -> MockCacheService:
    return MockCacheService()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> List[dict]:
    """Capture OTP e-mails instead of sending them."""
    sent: List[dict] = []

    async def fake_send_otp_email(to, purpose, code, ttl_minutes=None):
        sent.append({"to": to, "purpose": purpose, "code": code, "ttl_minutes": ttl_minutes})
        return True

    monkeypatch.setattr("affiliate_backend.app.services.accounts.send_otp_email", fake_send_otp_email)
    return sent


def last_code(sent_emails: List[dict], to: str) -> str:
    return [m for m in sent_emails if m["to"] == to][-1]["code"]


@pytest.fixture
async def client(
    session_factory: async_sessionmaker,
    mock_cache: MockCacheService,
    gateway: FakeGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for the API.

    Every request gets its own session, separate from the one fixtures write with.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_cache():
        yield mock_cache

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_cache] = override_get_cache
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

async def create_user(
    session: AsyncSession,
    email: str = "user@example.com",
    coupon_code: Optional[str] = None,
    balance: Decimal = Decimal("0"),
    **kwargs,
) -> User:
    user = User(
        fullname=kwargs.pop("fullname", "Test User"),
        email=email,
        phone=kwargs.pop("phone", "+2348000000001"),
        password_hash=hash_password(kwargs.pop("password", TEST_PASSWORD)),
        is_verified=kwargs.pop("is_verified", True),
        known_devices=kwargs.pop("known_devices", ["device-1"]),
        coupon_code=coupon_code,
        available_balance=balance,
        **kwargs,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def create_affiliate(
    session: AsyncSession,
    affiliate_code: str = "AFF100",
    email: str = "affiliate@example.com",
    phone: str = "+2348000000100",
    acc_balance: Decimal = Decimal("0"),
    total_earned: Decimal = Decimal("0"),
    **kwargs,
) -> Affiliate:
    affiliate = Affiliate(
        firstname=kwargs.pop("firstname", "Ada"),
        lastname=kwargs.pop("lastname", "Obi"),
        email=email,
        phone=phone,
        password_hash=hash_password(kwargs.pop("password", TEST_PASSWORD)),
        is_verified=True,
        known_devices=kwargs.pop("known_devices", ["device-1"]),
        affiliate_code=affiliate_code,
        referral_link=f"https://bloomingbet.com/ref/{affiliate_code}",
        coupon_code=kwargs.pop("coupon_code", "BB100"),
        total_earned=total_earned,
        acc_balance=acc_balance,
        **kwargs,
    )
    session.add(affiliate)
    await session.commit()
    await session.refresh(affiliate)
    return affiliate


async def create_deposit(
    session: AsyncSession,
    user_id: int,
    reference: str,
    amount: Decimal,
    status: str = DEPOSIT_PENDING,
    credited: bool = False,
) -> Deposit:
    deposit = Deposit(user_id=user_id, amount=amount, reference=reference, status=status, credited=credited)
    session.add(deposit)
    await session.commit()
    await session.refresh(deposit)
    return deposit


@pytest.fixture
async def test_user(test_session: AsyncSession) -> User:
    return await create_user(test_session)


@pytest.fixture
async def test_affiliate(test_session: AsyncSession) -> Affiliate:
    return await create_affiliate(test_session)


@pytest.fixture
async def referred_user(test_session: AsyncSession, test_affiliate: Affiliate) -> User:
    """User who signed up with the affiliate's code."""
    return await create_user(
        test_session,
        email="referred@example.com",
        phone="+2348000000002",
        coupon_code=test_affiliate.affiliate_code,
    )


def user_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, ROLE_USER)}"}


def affiliate_headers(affiliate: Affiliate) -> dict:
    return {"Authorization": f"Bearer {create_access_token(affiliate.id, ROLE_AFFILIATE)}"}


@pytest.fixture
def auth_header(test_user: User) -> dict:
    return user_headers(test_user)


@pytest.fixture
def affiliate_auth_header(test_affiliate: Affiliate) -> dict:
    return affiliate_headers(test_affiliate)
