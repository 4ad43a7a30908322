"""
Affiliate withdrawal workflow.

pending -> approved | rejected. Approval deducts the amount from the
affiliate's acc_balance while holding row locks on the withdrawal and the
affiliate; total_earned is never touched.
"""
from decimal import Decimal
from typing import List, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.core.constants import (
    ONE_CENT,
    WITHDRAWAL_APPROVED,
    WITHDRAWAL_PENDING,
    WITHDRAWAL_REJECTED,
    ZERO,
)
from affiliate_backend.app.core.exceptions import ServiceError, ValidationError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.metrics import withdrawals_processed_total
from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.models.withdrawal import AffiliateWithdrawal
from affiliate_backend.app.services.referrals import AffiliateNotFoundError

logger = get_logger(__name__)


class WithdrawalServiceError(ServiceError):
    """Base exception for withdrawal errors."""
    pass


class WithdrawalNotFoundError(WithdrawalServiceError):
    def __init__(self, withdrawal_id: int):
        super().__init__(f"Withdrawal {withdrawal_id} not found", 404)


class WithdrawalAlreadyProcessedError(WithdrawalServiceError):
    def __init__(self, withdrawal_id: int, status: str):
        super().__init__(f"Withdrawal {withdrawal_id} already processed ({status})", 400)


class InsufficientBalanceError(WithdrawalServiceError):
    def __init__(self, available: Decimal):
        super().__init__(f"Insufficient balance: {available} available for withdrawal", 400)


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(ONE_CENT)


class WithdrawalService:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _pending_total(self, affiliate_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(AffiliateWithdrawal.amount), 0)).where(
                AffiliateWithdrawal.affiliate_id == affiliate_id,
                AffiliateWithdrawal.status == WITHDRAWAL_PENDING,
            )
        )
        return _money(result.scalar_one())

    async def request_withdrawal(
        self,
        affiliate_id: int,
        amount: Decimal,
        bank_account: str,
    ) -> AffiliateWithdrawal:
        """
        Create a pending withdrawal.

        The amount plus already pending requests must fit in acc_balance, so
        approving every open request can never drive the balance negative.
        """
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if amount != amount.quantize(ONE_CENT):
            raise ValidationError("Amount can have at most two decimal places")
        bank_account = (bank_account or "").strip()
        if not bank_account:
            raise ValidationError("Bank account is required")

        result = await self.session.execute(
            select(Affiliate).where(Affiliate.id == affiliate_id).with_for_update()
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            raise AffiliateNotFoundError(affiliate_id)

        available = _money(affiliate.acc_balance) - await self._pending_total(affiliate_id)
        if amount > available:
            raise InsufficientBalanceError(max(available, ZERO))

        withdrawal = AffiliateWithdrawal(
            affiliate_id=affiliate_id,
            amount=amount,
            bank_account=bank_account,
            status=WITHDRAWAL_PENDING,
        )
        self.session.add(withdrawal)
        await self.session.commit()
        await self.session.refresh(withdrawal)
        logger.info("Withdrawal requested", affiliate_id=affiliate_id, withdrawal_id=withdrawal.id, amount=str(amount))
        return withdrawal

    async def list_affiliate_withdrawals(self, affiliate_id: int) -> List[AffiliateWithdrawal]:
        result = await self.session.execute(
            select(AffiliateWithdrawal)
            .where(AffiliateWithdrawal.affiliate_id == affiliate_id)
            .order_by(AffiliateWithdrawal.created_at.desc(), AffiliateWithdrawal.id.desc())
        )
        return list(result.scalars().all())

    async def get_balance_summary(self, affiliate_id: int) -> Dict[str, Any]:
        """
        total_earned, approved withdrawals and what is left.

        The remainder is written back to acc_balance so the cached projection
        heals if it ever drifted.
        """
        affiliate = await self.session.get(Affiliate, affiliate_id)
        if not affiliate:
            raise AffiliateNotFoundError(affiliate_id)

        result = await self.session.execute(
            select(func.coalesce(func.sum(AffiliateWithdrawal.amount), 0)).where(
                AffiliateWithdrawal.affiliate_id == affiliate_id,
                AffiliateWithdrawal.status == WITHDRAWAL_APPROVED,
            )
        )
        total_earned = _money(affiliate.total_earned)
        total_withdrawn = _money(result.scalar_one())
        available = total_earned - total_withdrawn

        if _money(affiliate.acc_balance) != available:
            logger.info(
                "acc_balance resynced",
                affiliate_id=affiliate_id,
                old=str(affiliate.acc_balance),
                new=str(available),
            )
            affiliate.acc_balance = available
            await self.session.commit()

        return {
            "total_earned": total_earned,
            "total_withdrawn": total_withdrawn,
            "available_balance": available,
            "pending_withdrawals": await self._pending_total(affiliate_id),
        }

    async def list_all_withdrawals(self) -> List[Dict[str, Any]]:
        """All withdrawals with the requesting affiliate's contact data, newest first."""
        result = await self.session.execute(
            select(
                AffiliateWithdrawal,
                Affiliate.email,
                Affiliate.firstname,
                Affiliate.lastname,
            )
            .join(Affiliate, Affiliate.id == AffiliateWithdrawal.affiliate_id)
            .order_by(AffiliateWithdrawal.created_at.desc(), AffiliateWithdrawal.id.desc())
        )
        return [
            {
                "id": w.id,
                "affiliate_id": w.affiliate_id,
                "amount": w.amount,
                "bank_account": w.bank_account,
                "status": w.status,
                "created_at": w.created_at,
                "updated_at": w.updated_at,
                "email": email,
                "firstname": firstname,
                "lastname": lastname,
            }
            for w, email, firstname, lastname in result.all()
        ]

    async def _get_pending_for_update(self, withdrawal_id: int) -> AffiliateWithdrawal:
        result = await self.session.execute(
            select(AffiliateWithdrawal)
            .where(AffiliateWithdrawal.id == withdrawal_id)
            .with_for_update()
        )
        withdrawal = result.scalar_one_or_none()
        if not withdrawal:
            raise WithdrawalNotFoundError(withdrawal_id)
        if withdrawal.status != WITHDRAWAL_PENDING:
            raise WithdrawalAlreadyProcessedError(withdrawal_id, withdrawal.status)
        return withdrawal

    async def approve(self, withdrawal_id: int) -> AffiliateWithdrawal:
        withdrawal = await self._get_pending_for_update(withdrawal_id)
        result = await self.session.execute(
            select(Affiliate).where(Affiliate.id == withdrawal.affiliate_id).with_for_update()
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            raise AffiliateNotFoundError(withdrawal.affiliate_id)

        balance = _money(affiliate.acc_balance)
        if withdrawal.amount > balance:
            await self.session.rollback()
            raise InsufficientBalanceError(balance)

        affiliate.acc_balance = balance - withdrawal.amount
        withdrawal.status = WITHDRAWAL_APPROVED
        await self.session.commit()

        withdrawals_processed_total.labels(status=WITHDRAWAL_APPROVED).inc()
        logger.info(
            "Withdrawal approved",
            withdrawal_id=withdrawal_id,
            affiliate_id=affiliate.id,
            amount=str(withdrawal.amount),
        )
        return withdrawal

    async def reject(self, withdrawal_id: int) -> AffiliateWithdrawal:
        withdrawal = await self._get_pending_for_update(withdrawal_id)
        withdrawal.status = WITHDRAWAL_REJECTED
        await self.session.commit()

        withdrawals_processed_total.labels(status=WITHDRAWAL_REJECTED).inc()
        logger.info("Withdrawal rejected", withdrawal_id=withdrawal_id, affiliate_id=withdrawal.affiliate_id)
        return withdrawal
