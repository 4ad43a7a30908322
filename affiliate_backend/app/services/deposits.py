"""
Deposit Reconciliation Workflow.

Confirms a deposit with the payment gateway, then credits the user's balance
and runs the first-deposit commission inside one database transaction.

The gateway is called outside any transaction. The crediting transaction
locks the deposit row by reference, so concurrent reconciliations of the same
reference are totally ordered: the first credits, the rest see credited=True
and report already_processed.
"""
import json
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Callable, Awaitable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_backend.app.core.constants import (
    DEPOSIT_FAILED,
    DEPOSIT_PENDING,
    GATEWAY_FINAL_FAILURE_STATUSES,
    MINOR_UNITS,
    ONE_CENT,
)
from affiliate_backend.app.core.exceptions import ServiceError, ValidationError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.metrics import deposits_initialized_total, deposits_reconciled_total
from affiliate_backend.app.core.settings import get_settings
from affiliate_backend.app.models.deposit import Deposit
from affiliate_backend.app.models.user import User
from affiliate_backend.app.services.commissions import CommissionEngine, CommissionResult
from affiliate_backend.app.services.ledger import LedgerStore, UserNotFoundError
from affiliate_backend.app.services.paystack import GatewayRejected, GatewayVerification, PaystackClient

logger = get_logger(__name__)

RESULT_CREDITED = "credited"
RESULT_ALREADY_PROCESSED = "already_processed"
RESULT_FAILED = "failed"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class DepositServiceError(ServiceError):
    """Base exception for deposit workflow errors."""
    pass


class DepositNotFoundError(DepositServiceError):
    def __init__(self, reference: str):
        super().__init__(f"Deposit {reference} not found", 404)


class ReconcileError(DepositServiceError):
    """Unclassified failure while crediting. The transaction was rolled back."""

    def __init__(self):
        super().__init__("Deposit could not be processed, please retry", 500)


class InvalidWebhookSignatureError(DepositServiceError):
    def __init__(self):
        super().__init__("Invalid webhook signature", 401)


class _AlreadyCredited(Exception):
    """Raised inside the crediting transaction to leave it through rollback."""


@dataclass
class ReconcileResult:
    status: str
    reference: str
    amount: Optional[Decimal] = None
    gateway_status: Optional[str] = None
    commission: Optional[CommissionResult] = None

    @property
    def already_processed(self) -> bool:
        return self.status == RESULT_ALREADY_PROCESSED


def generate_reference() -> str:
    """TRX-<epoch milliseconds>-<0..999>; the unique constraint catches the rare collision."""
    return f"TRX-{int(time.time() * 1000)}-{secrets.randbelow(1000)}"


def to_minor_units(amount: Decimal) -> int:
    return int((amount * MINOR_UNITS).to_integral_value())


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_UNITS).quantize(ONE_CENT)


def parse_deposit_amount(raw: Any) -> Decimal:
    """Positive amount with at most two decimal places."""
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if amount != amount.quantize(ONE_CENT):
        raise ValidationError("Amount can have at most two decimal places")
    return amount


class DepositReconciler:
    """
    Deposit initialization, verification and webhook handling.

    Takes a session factory rather than a session: each database step opens
    its own short transaction, and no transaction is held open while the
    gateway is being called.
    """

    MAX_ATTEMPTS = 2

    def __init__(self, session_factory: async_sessionmaker, gateway: PaystackClient):
        self.session_factory = session_factory
        self.gateway = gateway

    # -- Initialization -----------------------------------------------------

    async def initialize_deposit(self, user_id: int, amount: Any) -> Dict[str, Any]:
        """
        Record a pending deposit and ask the gateway for a checkout URL.

        If the gateway call fails the pending row stays; it simply never gets paid.
        """
        amount = parse_deposit_amount(amount)
        reference = generate_reference()

        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if not user:
                raise UserNotFoundError(user_id)
            email = user.email
            await LedgerStore(session).record_pending_deposit(user_id, amount, reference)
            await session.commit()

        callback_url = (
            f"{get_settings().FRONTEND_URL.rstrip('/')}/dashboard/verify-payment"
            f"?user_id={user_id}&reference={reference}"
        )
        init = await self.gateway.initialize(
            email=email,
            amount_minor=to_minor_units(amount),
            reference=reference,
            callback_url=callback_url,
            metadata={"user_id": user_id},
        )
        deposits_initialized_total.inc()
        logger.info("Deposit initialized", user_id=user_id, reference=reference, amount=str(amount))
        return {
            "authorization_url": init.authorization_url,
            "access_code": init.access_code,
            "reference": reference,
        }

    # -- Reconciliation -----------------------------------------------------

    async def reconcile(self, user_id: int, reference: str) -> ReconcileResult:
        """
        Confirm `reference` with the gateway and credit it at most once.

        Gateway errors propagate as GatewayUnreachable / GatewayRejected with
        the deposit untouched. Classified service errors propagate unchanged;
        anything else is logged and reported as ReconcileError.
        """
        verification = await self.gateway.verify(reference)

        if not verification.is_success:
            result = await self._run_with_retry(
                reference, lambda: self._record_unsuccessful(user_id, reference, verification)
            )
        else:
            amount = from_minor_units(verification.amount_minor)
            if amount <= 0:
                logger.error("Successful deposit without a positive amount", reference=reference, amount=str(amount))
                raise GatewayRejected("Payment gateway reported a non-positive amount")
            result = await self._run_with_retry(
                reference, lambda: self._credit(user_id, reference, amount)
            )

        deposits_reconciled_total.labels(outcome=result.status).inc()
        return result

    async def _run_with_retry(
        self,
        reference: str,
        step: Callable[[], Awaitable[ReconcileResult]],
    ) -> ReconcileResult:
        """Run a transactional step; retry once when a concurrent insert of the same reference wins."""
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                return await step()
            except IntegrityError as exc:
                if attempt == self.MAX_ATTEMPTS:
                    logger.error("Deposit reconciliation conflict persisted", reference=reference, error=str(exc))
                    raise ReconcileError() from exc
                logger.info("Concurrent deposit insert, retrying", reference=reference)
            except ServiceError:
                raise
            except Exception as exc:
                logger.exception("Deposit reconciliation failed", reference=reference, error=str(exc))
                raise ReconcileError() from exc
        raise ReconcileError()

    async def _lock_or_create(
        self,
        session: AsyncSession,
        user_id: int,
        reference: str,
        amount: Decimal,
        status: str,
    ) -> Deposit:
        ledger = LedgerStore(session)
        deposit = await ledger.lock_deposit_for_update(reference)
        if deposit is None:
            # Paid without a recorded initialization; the unique constraint
            # turns a concurrent insert into IntegrityError and a retry.
            deposit = Deposit(
                user_id=user_id,
                amount=amount,
                reference=reference,
                status=status,
                credited=False,
            )
            session.add(deposit)
            await session.flush()
            logger.warning("Deposit row was missing, created from gateway data", reference=reference)
        if deposit.user_id != user_id:
            logger.warning(
                "Deposit reference belongs to another user",
                reference=reference,
                user_id=user_id,
                owner_id=deposit.user_id,
            )
            raise DepositNotFoundError(reference)
        return deposit

    async def _credit(self, user_id: int, reference: str, amount: Decimal) -> ReconcileResult:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    deposit = await self._lock_or_create(session, user_id, reference, amount, DEPOSIT_PENDING)
                    if deposit.credited:
                        raise _AlreadyCredited()

                    if deposit.amount != amount:
                        logger.warning(
                            "Gateway amount differs from recorded amount",
                            reference=reference,
                            recorded=str(deposit.amount),
                            gateway=str(amount),
                        )
                        deposit.amount = amount

                    ledger = LedgerStore(session)
                    await ledger.credit_balance_once(deposit.user_id, amount)
                    await ledger.mark_credited(deposit)
                    commission = await CommissionEngine(session).maybe_award_first_deposit_commission(
                        deposit.user_id, deposit.id, amount
                    )
        except _AlreadyCredited:
            logger.info("Deposit already processed", reference=reference, user_id=user_id)
            return ReconcileResult(status=RESULT_ALREADY_PROCESSED, reference=reference)

        logger.info(
            "Deposit credited",
            reference=reference,
            user_id=user_id,
            amount=str(amount),
            commission_awarded=commission.awarded,
        )
        return ReconcileResult(
            status=RESULT_CREDITED,
            reference=reference,
            amount=amount,
            gateway_status="success",
            commission=commission,
        )

    async def _record_unsuccessful(
        self,
        user_id: int,
        reference: str,
        verification: GatewayVerification,
    ) -> ReconcileResult:
        """Final gateway failures mark the row failed; in-flight statuses leave it pending."""
        final = verification.status in GATEWAY_FINAL_FAILURE_STATUSES
        status = DEPOSIT_FAILED if final else DEPOSIT_PENDING
        async with self.session_factory() as session:
            async with session.begin():
                deposit = await self._lock_or_create(
                    session, user_id, reference, from_minor_units(verification.amount_minor), status
                )
                if deposit.credited:
                    logger.warning(
                        "Gateway reports non-success for a credited deposit",
                        reference=reference,
                        gateway_status=verification.status,
                    )
                    return ReconcileResult(
                        status=RESULT_ALREADY_PROCESSED,
                        reference=reference,
                        gateway_status=verification.status,
                    )
                if final:
                    await LedgerStore(session).mark_failed(reference)

        logger.info(
            "Deposit not successful",
            reference=reference,
            user_id=user_id,
            gateway_status=verification.status,
            marked_failed=final,
        )
        return ReconcileResult(status=RESULT_FAILED, reference=reference, gateway_status=verification.status)

    # -- Webhook ------------------------------------------------------------

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Optional[ReconcileResult]:
        """
        Process a Paystack webhook. Only `charge.success` triggers reconciliation;
        the gateway's verify endpoint stays the source of truth for status and amount.
        """
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("Webhook signature mismatch")
            raise InvalidWebhookSignatureError()

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")

        event = payload.get("event")
        data = payload.get("data") or {}
        reference = data.get("reference") if isinstance(data, dict) else None
        if event != "charge.success" or not reference:
            logger.info("Webhook ignored", webhook_event=event, reference=reference)
            return None

        owner_id = await self._deposit_owner(reference)
        if owner_id is None:
            metadata = data.get("metadata") or {}
            try:
                owner_id = int(metadata.get("user_id")) if isinstance(metadata, dict) else None
            except (TypeError, ValueError):
                owner_id = None
        if owner_id is None:
            logger.warning("Webhook for unknown deposit", reference=reference)
            return None

        return await self.reconcile(owner_id, reference)

    async def _deposit_owner(self, reference: str) -> Optional[int]:
        try:
            async with self.session_factory() as session:
                deposit = await LedgerStore(session).get_by_reference(reference)
        except SQLAlchemyError as exc:
            logger.exception("Webhook deposit lookup failed", reference=reference, error=str(exc))
            raise ReconcileError() from exc
        return deposit.user_id if deposit else None

    # -- Reads --------------------------------------------------------------

    async def list_deposits(self, user_id: int) -> List[Deposit]:
        async with self.session_factory() as session:
            return await LedgerStore(session).list_user_deposits(user_id)
