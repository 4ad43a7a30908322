"""
Commission Engine: first-deposit commission for referred users.

Runs inside the reconciliation transaction and is not atomic on its own.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.core.constants import COMMISSION_RATE, ONE_CENT
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.metrics import commissions_awarded_total
from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.models.commission import Commission
from affiliate_backend.app.services.ledger import LedgerStore

logger = get_logger(__name__)


@dataclass
class CommissionResult:
    awarded: bool
    affiliate_id: Optional[int] = None
    amount: Optional[Decimal] = None


def calculate_commission(deposit_amount: Decimal) -> Decimal:
    """Commission for a deposit, rounded half-up to cents."""
    return (Decimal(deposit_amount) * COMMISSION_RATE).quantize(ONE_CENT, rounding=ROUND_HALF_UP)


class CommissionEngine:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def maybe_award_first_deposit_commission(
        self,
        user_id: int,
        deposit_id: int,
        amount: Decimal,
    ) -> CommissionResult:
        """
        Award the referring affiliate a commission on the user's first deposit.

        No coupon code, an already set first_deposit flag, or a coupon code
        that matches no affiliate all mean no side effects at all.
        """
        user = await LedgerStore(self.session).get_user_for_update(user_id)
        if not user.coupon_code or user.first_deposit:
            return CommissionResult(awarded=False)

        result = await self.session.execute(
            select(Affiliate)
            .where(Affiliate.affiliate_code == user.coupon_code)
            .with_for_update()
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            logger.info("Coupon code matches no affiliate", user_id=user_id, coupon_code=user.coupon_code)
            return CommissionResult(awarded=False)

        commission = calculate_commission(amount)
        affiliate.total_earned = (affiliate.total_earned or Decimal("0")) + commission
        affiliate.acc_balance = (affiliate.acc_balance or Decimal("0")) + commission
        self.session.add(Commission(
            affiliate_id=affiliate.id,
            user_id=user_id,
            deposit_id=deposit_id,
            commission_amount=commission,
        ))
        user.first_deposit = True
        await self.session.flush()

        commissions_awarded_total.inc()
        logger.info(
            "First-deposit commission awarded",
            affiliate_id=affiliate.id,
            user_id=user_id,
            deposit_id=deposit_id,
            commission=str(commission),
        )
        return CommissionResult(awarded=True, affiliate_id=affiliate.id, amount=commission)
