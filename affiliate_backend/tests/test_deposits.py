"""
Tests for the deposit reconciliation workflow (services/deposits.py).

Covers:
- Exactly-once crediting and already_processed answers
- Gateway amount as the credited amount
- Failed / in-flight gateway statuses
- Missing deposit rows, ownership, unreachable gateway
- Non-positive gateway amounts and rollback when the commission step fails
- Concurrent reconciliation of one reference
- Webhook signature and event handling
"""
import asyncio
import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from affiliate_backend.app.core.base import Base
from affiliate_backend.app.core.constants import DEPOSIT_FAILED, DEPOSIT_PENDING, DEPOSIT_SUCCESS
from affiliate_backend.app.core.exceptions import ValidationError
from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.models.commission import Commission
from affiliate_backend.app.models.deposit import Deposit
from affiliate_backend.app.models.user import User
from affiliate_backend.app.services.deposits import (
    DepositNotFoundError,
    DepositReconciler,
    InvalidWebhookSignatureError,
    RESULT_ALREADY_PROCESSED,
    RESULT_CREDITED,
    RESULT_FAILED,
    ReconcileError,
    from_minor_units,
    generate_reference,
    parse_deposit_amount,
    to_minor_units,
)
from affiliate_backend.app.services.commissions import CommissionEngine
from affiliate_backend.app.services.paystack import GatewayRejected, GatewayUnreachable
from affiliate_backend.tests.conftest import (
    TEST_PAYSTACK_SECRET,
    FakeGateway,
    create_affiliate,
    create_deposit,
    create_user,
)


async def _balance(session_factory, user_id: int) -> Decimal:
    async with session_factory() as session:
        return (await session.get(User, user_id)).available_balance


async def _deposit(session_factory, reference: str) -> Deposit:
    async with session_factory() as session:
        result = await session.execute(select(Deposit).where(Deposit.reference == reference))
        return result.scalar_one()


# ============================================
# HELPERS
# ============================================

def test_generate_reference_format():
    reference = generate_reference()
    prefix, millis, suffix = reference.split("-")
    assert prefix == "TRX"
    assert millis.isdigit()
    assert 0 <= int(suffix) <= 999


def test_minor_unit_conversion():
    assert to_minor_units(Decimal("500")) == 50000
    assert to_minor_units(Decimal("0.07")) == 7
    assert from_minor_units(50050) == Decimal("500.50")


@pytest.mark.parametrize("raw", ["0", "-5", "abc", "1.005", "NaN"])
def test_parse_deposit_amount_rejects(raw):
    with pytest.raises(ValidationError):
        parse_deposit_amount(raw)


def test_parse_deposit_amount_accepts_cents():
    assert parse_deposit_amount("12.34") == Decimal("12.34")


# ============================================
# INITIALIZE
# ============================================

@pytest.mark.asyncio
async def test_initialize_records_pending_deposit(session_factory, test_user, gateway: FakeGateway):
    reconciler = DepositReconciler(session_factory, gateway)

    data = await reconciler.initialize_deposit(test_user.id, Decimal("500"))

    assert data["authorization_url"].startswith("https://checkout.paystack.test/")
    deposit = await _deposit(session_factory, data["reference"])
    assert deposit.status == DEPOSIT_PENDING
    assert deposit.credited is False
    assert deposit.amount == Decimal("500")

    sent = gateway.initialized[0]
    assert sent["amount_minor"] == 50000
    assert sent["email"] == test_user.email
    assert sent["metadata"] == {"user_id": test_user.id}
    assert f"reference={data['reference']}" in sent["callback_url"]
    assert sent["callback_url"].startswith("http://frontend.test/dashboard/verify-payment")


@pytest.mark.asyncio
async def test_initialize_gateway_down_keeps_pending_row(session_factory, test_user, gateway: FakeGateway):
    gateway.unreachable = True
    reconciler = DepositReconciler(session_factory, gateway)

    with pytest.raises(GatewayUnreachable):
        await reconciler.initialize_deposit(test_user.id, Decimal("20"))

    async with session_factory() as session:
        count = (await session.execute(select(func.count(Deposit.id)))).scalar_one()
    assert count == 1
    assert await _balance(session_factory, test_user.id) == Decimal("0")


# ============================================
# RECONCILE
# ============================================

@pytest.mark.asyncio
async def test_reconcile_credits_once(session_factory, test_session: AsyncSession, gateway: FakeGateway):
    """Deposit of 500 credited once; the second call is already_processed."""
    user = await create_user(test_session, balance=Decimal("100"))
    await create_deposit(test_session, user.id, "TRX-X", Decimal("500"))
    gateway.set_transaction("TRX-X", "success", 50000)
    reconciler = DepositReconciler(session_factory, gateway)

    first = await reconciler.reconcile(user.id, "TRX-X")
    assert first.status == RESULT_CREDITED
    assert first.amount == Decimal("500.00")
    assert await _balance(session_factory, user.id) == Decimal("600")
    deposit = await _deposit(session_factory, "TRX-X")
    assert deposit.status == DEPOSIT_SUCCESS
    assert deposit.credited is True

    second = await reconciler.reconcile(user.id, "TRX-X")
    assert second.status == RESULT_ALREADY_PROCESSED
    assert second.already_processed is True
    assert await _balance(session_factory, user.id) == Decimal("600")


@pytest.mark.asyncio
async def test_reconcile_uses_gateway_amount(session_factory, test_user, test_session, gateway: FakeGateway):
    await create_deposit(test_session, test_user.id, "TRX-AMT", Decimal("500"))
    gateway.set_transaction("TRX-AMT", "success", 45050)

    result = await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-AMT")

    assert result.amount == Decimal("450.50")
    assert await _balance(session_factory, test_user.id) == Decimal("450.50")
    assert (await _deposit(session_factory, "TRX-AMT")).amount == Decimal("450.50")


@pytest.mark.asyncio
async def test_reconcile_failed_status_marks_failed(session_factory, test_user, test_session, gateway: FakeGateway):
    await create_deposit(test_session, test_user.id, "TRX-Y", Decimal("300"))
    gateway.set_transaction("TRX-Y", "failed", 30000)

    result = await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-Y")

    assert result.status == RESULT_FAILED
    assert result.gateway_status == "failed"
    assert (await _deposit(session_factory, "TRX-Y")).status == DEPOSIT_FAILED
    assert await _balance(session_factory, test_user.id) == Decimal("0")


@pytest.mark.asyncio
async def test_reconcile_in_flight_status_stays_pending(session_factory, test_user, test_session, gateway: FakeGateway):
    await create_deposit(test_session, test_user.id, "TRX-ONGOING", Decimal("300"))
    gateway.set_transaction("TRX-ONGOING", "ongoing", 30000)

    result = await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-ONGOING")

    assert result.status == RESULT_FAILED
    deposit = await _deposit(session_factory, "TRX-ONGOING")
    assert deposit.status == DEPOSIT_PENDING
    assert deposit.credited is False


@pytest.mark.asyncio
async def test_failed_deposit_credited_when_gateway_later_succeeds(
    session_factory, test_user, test_session, gateway: FakeGateway
):
    await create_deposit(test_session, test_user.id, "TRX-LATE", Decimal("80"), status=DEPOSIT_FAILED)
    gateway.set_transaction("TRX-LATE", "success", 8000)

    result = await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-LATE")

    assert result.status == RESULT_CREDITED
    assert (await _deposit(session_factory, "TRX-LATE")).status == DEPOSIT_SUCCESS
    assert await _balance(session_factory, test_user.id) == Decimal("80")


@pytest.mark.asyncio
async def test_credited_deposit_with_non_success_verify_is_untouched(
    session_factory, test_user, test_session, gateway: FakeGateway
):
    await create_deposit(
        test_session, test_user.id, "TRX-DONE", Decimal("80"), status=DEPOSIT_SUCCESS, credited=True
    )
    gateway.set_transaction("TRX-DONE", "reversed", 8000)

    result = await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-DONE")

    assert result.status == RESULT_ALREADY_PROCESSED
    deposit = await _deposit(session_factory, "TRX-DONE")
    assert deposit.status == DEPOSIT_SUCCESS
    assert deposit.credited is True


@pytest.mark.asyncio
async def test_reconcile_creates_missing_deposit_row(session_factory, test_user, gateway: FakeGateway):
    gateway.set_transaction("TRX-NEW", "success", 12000)

    result = await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-NEW")

    assert result.status == RESULT_CREDITED
    deposit = await _deposit(session_factory, "TRX-NEW")
    assert deposit.user_id == test_user.id
    assert deposit.credited is True
    assert deposit.amount == Decimal("120")


@pytest.mark.asyncio
async def test_reconcile_other_users_reference_is_not_found(session_factory, test_session, gateway: FakeGateway):
    owner = await create_user(test_session, email="owner@example.com")
    intruder = await create_user(test_session, email="intruder@example.com", phone="+2348000000009")
    await create_deposit(test_session, owner.id, "TRX-OWN", Decimal("50"))
    gateway.set_transaction("TRX-OWN", "success", 5000)

    with pytest.raises(DepositNotFoundError):
        await DepositReconciler(session_factory, gateway).reconcile(intruder.id, "TRX-OWN")

    assert (await _deposit(session_factory, "TRX-OWN")).credited is False
    assert await _balance(session_factory, owner.id) == Decimal("0")
    assert await _balance(session_factory, intruder.id) == Decimal("0")


@pytest.mark.asyncio
async def test_reconcile_gateway_unreachable_changes_nothing(
    session_factory, test_user, test_session, gateway: FakeGateway
):
    await create_deposit(test_session, test_user.id, "TRX-DOWN", Decimal("50"))
    gateway.unreachable = True

    with pytest.raises(GatewayUnreachable):
        await DepositReconciler(session_factory, gateway).reconcile(test_user.id, "TRX-DOWN")

    deposit = await _deposit(session_factory, "TRX-DOWN")
    assert deposit.status == DEPOSIT_PENDING
    assert deposit.credited is False


@pytest.mark.asyncio
@pytest.mark.parametrize("amount_minor", [0, -50000])
async def test_reconcile_rejects_non_positive_success_amount(
    session_factory, test_session, gateway: FakeGateway, amount_minor
):
    """A success without a positive amount never touches the balance or the first-deposit flag."""
    user = await create_user(test_session, balance=Decimal("100"))
    await create_deposit(test_session, user.id, "TRX-NEG", Decimal("500"))
    gateway.set_transaction("TRX-NEG", "success", amount_minor)

    with pytest.raises(GatewayRejected):
        await DepositReconciler(session_factory, gateway).reconcile(user.id, "TRX-NEG")

    assert await _balance(session_factory, user.id) == Decimal("100")
    deposit = await _deposit(session_factory, "TRX-NEG")
    assert deposit.amount == Decimal("500")
    assert deposit.status == DEPOSIT_PENDING
    assert deposit.credited is False
    async with session_factory() as session:
        assert (await session.get(User, user.id)).first_deposit is False


@pytest.mark.asyncio
async def test_first_deposit_commission_scenario(session_factory, test_session, gateway: FakeGateway):
    """Referred user's first 1000 deposit pays 150 once; the second pays nothing."""
    affiliate = await create_affiliate(test_session, affiliate_code="AFF100")
    user = await create_user(test_session, coupon_code="AFF100")
    reconciler = DepositReconciler(session_factory, gateway)

    gateway.set_transaction("TRX-1", "success", 100000)
    first = await reconciler.reconcile(user.id, "TRX-1")
    assert first.commission.awarded is True
    assert first.commission.amount == Decimal("150.00")

    gateway.set_transaction("TRX-2", "success", 100000)
    second = await reconciler.reconcile(user.id, "TRX-2")
    assert second.status == RESULT_CREDITED
    assert second.commission.awarded is False

    async with session_factory() as session:
        refreshed = await session.get(Affiliate, affiliate.id)
        assert refreshed.total_earned == Decimal("150")
        assert refreshed.acc_balance == Decimal("150")
        commissions = (await session.execute(select(func.count(Commission.id)))).scalar_one()
        assert commissions == 1
        assert (await session.get(User, user.id)).first_deposit is True
    assert await _balance(session_factory, user.id) == Decimal("2000")


@pytest.mark.asyncio
async def test_user_without_coupon_never_earns_commission(session_factory, test_session, gateway: FakeGateway):
    affiliate = await create_affiliate(test_session, affiliate_code="AFF100")
    user = await create_user(test_session, coupon_code=None)
    reconciler = DepositReconciler(session_factory, gateway)

    for reference in ("TRX-N1", "TRX-N2", "TRX-N3"):
        gateway.set_transaction(reference, "success", 100000)
        result = await reconciler.reconcile(user.id, reference)
        assert result.status == RESULT_CREDITED
        assert result.commission.awarded is False

    async with session_factory() as session:
        assert (await session.execute(select(func.count(Commission.id)))).scalar_one() == 0
        refreshed = await session.get(Affiliate, affiliate.id)
        assert refreshed.total_earned == Decimal("0")
        assert refreshed.acc_balance == Decimal("0")
    assert await _balance(session_factory, user.id) == Decimal("3000")


@pytest.mark.asyncio
async def test_commission_failure_rolls_back_credit(
    session_factory, test_session, gateway: FakeGateway, monkeypatch
):
    """An error in the commission step undoes the balance credit as well."""
    affiliate = await create_affiliate(test_session, affiliate_code="AFF100")
    user = await create_user(test_session, coupon_code="AFF100")
    await create_deposit(test_session, user.id, "TRX-C", Decimal("500"))
    gateway.set_transaction("TRX-C", "success", 50000)

    async def broken_commission(self, user_id, deposit_id, amount):
        raise RuntimeError("commission table unavailable")

    monkeypatch.setattr(CommissionEngine, "maybe_award_first_deposit_commission", broken_commission)

    with pytest.raises(ReconcileError):
        await DepositReconciler(session_factory, gateway).reconcile(user.id, "TRX-C")

    assert await _balance(session_factory, user.id) == Decimal("0")
    deposit = await _deposit(session_factory, "TRX-C")
    assert deposit.amount == Decimal("500")
    assert deposit.status == DEPOSIT_PENDING
    assert deposit.credited is False
    async with session_factory() as session:
        assert (await session.get(User, user.id)).first_deposit is False
        assert (await session.get(Affiliate, affiliate.id)).total_earned == Decimal("0")


# ============================================
# CONCURRENCY
# ============================================

@pytest.fixture
async def file_session_factory(tmp_path):
    """
    File-backed SQLite with BEGIN IMMEDIATE, so concurrent transactions
    serialize the way row locks do on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_reconcile_credits_once(file_session_factory, gateway: FakeGateway):
    async with file_session_factory() as session:
        await create_affiliate(session, affiliate_code="AFF100")
        user = await create_user(session, coupon_code="AFF100")
        await create_deposit(session, user.id, "TRX-RACE", Decimal("500"))
    gateway.set_transaction("TRX-RACE", "success", 50000)
    reconciler = DepositReconciler(file_session_factory, gateway)

    results = await asyncio.gather(*(reconciler.reconcile(user.id, "TRX-RACE") for _ in range(5)))

    statuses = sorted(r.status for r in results)
    assert statuses.count(RESULT_CREDITED) == 1
    assert statuses.count(RESULT_ALREADY_PROCESSED) == 4
    assert await _balance(file_session_factory, user.id) == Decimal("500")
    async with file_session_factory() as session:
        commissions = (await session.execute(select(func.count(Commission.id)))).scalar_one()
    assert commissions == 1


# ============================================
# WEBHOOK
# ============================================

def _sign(body: bytes, secret: str = TEST_PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


@pytest.mark.asyncio
async def test_webhook_bad_signature(session_factory, gateway: FakeGateway):
    body = json.dumps({"event": "charge.success", "data": {"reference": "TRX-W"}}).encode()

    with pytest.raises(InvalidWebhookSignatureError):
        await DepositReconciler(session_factory, gateway).handle_webhook(body, _sign(body, "wrong"))
    with pytest.raises(InvalidWebhookSignatureError):
        await DepositReconciler(session_factory, gateway).handle_webhook(body, None)
    assert gateway.verify_calls == []


@pytest.mark.asyncio
async def test_webhook_charge_success_credits(session_factory, test_user, test_session, gateway: FakeGateway):
    await create_deposit(test_session, test_user.id, "TRX-W", Decimal("75"))
    gateway.set_transaction("TRX-W", "success", 7500)
    body = json.dumps({"event": "charge.success", "data": {"reference": "TRX-W"}}).encode()
    reconciler = DepositReconciler(session_factory, gateway)

    result = await reconciler.handle_webhook(body, _sign(body))
    assert result.status == RESULT_CREDITED
    assert await _balance(session_factory, test_user.id) == Decimal("75")

    # Paystack redelivers webhooks
    again = await reconciler.handle_webhook(body, _sign(body))
    assert again.status == RESULT_ALREADY_PROCESSED
    assert await _balance(session_factory, test_user.id) == Decimal("75")


@pytest.mark.asyncio
async def test_webhook_uses_metadata_when_row_missing(session_factory, test_user, gateway: FakeGateway):
    gateway.set_transaction("TRX-META", "success", 1000)
    body = json.dumps({
        "event": "charge.success",
        "data": {"reference": "TRX-META", "metadata": {"user_id": test_user.id}},
    }).encode()

    result = await DepositReconciler(session_factory, gateway).handle_webhook(body, _sign(body))

    assert result.status == RESULT_CREDITED
    assert (await _deposit(session_factory, "TRX-META")).user_id == test_user.id


@pytest.mark.asyncio
async def test_webhook_ignores_other_events(session_factory, gateway: FakeGateway):
    body = json.dumps({"event": "transfer.success", "data": {"reference": "TRX-T"}}).encode()

    assert await DepositReconciler(session_factory, gateway).handle_webhook(body, _sign(body)) is None
    assert gateway.verify_calls == []


@pytest.mark.asyncio
async def test_webhook_lookup_database_error_is_reconcile_error(gateway: FakeGateway):
    def unavailable_session_factory():
        raise OperationalError("SELECT deposits", {}, Exception("database is down"))

    body = json.dumps({"event": "charge.success", "data": {"reference": "TRX-DB"}}).encode()

    with pytest.raises(ReconcileError):
        await DepositReconciler(unavailable_session_factory, gateway).handle_webhook(body, _sign(body))
    assert gateway.verify_calls == []
