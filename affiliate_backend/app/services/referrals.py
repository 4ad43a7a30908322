"""
Referral attribution: which affiliate referred a user, click tracking,
referred-user listing and the affiliate dashboard read model.

A user is attributed to the affiliate whose affiliate_code equals the
user's coupon_code. The link is set at registration and never changes.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.core.constants import ONE_CENT, ZERO
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.metrics import referral_clicks_total
from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.models.commission import Commission
from affiliate_backend.app.models.referral import ReferralClick
from affiliate_backend.app.models.user import User

logger = get_logger(__name__)


class ReferralServiceError(ServiceError):
    """Base exception for referral errors."""
    pass


class AffiliateNotFoundError(ReferralServiceError):
    def __init__(self, identifier):
        super().__init__(f"Affiliate {identifier} not found", 404)


@dataclass
class ReferredUser:
    id: int
    fullname: str
    email: str
    phone: Optional[str]
    created_at: datetime
    first_deposit: bool
    commission: Decimal


class ReferralService:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_affiliate(self, affiliate_id: int) -> Affiliate:
        affiliate = await self.session.get(Affiliate, affiliate_id)
        if not affiliate:
            raise AffiliateNotFoundError(affiliate_id)
        return affiliate

    async def attribute_user(self, user_id: int) -> Optional[int]:
        """Id of the affiliate who referred the user, or None."""
        result = await self.session.execute(
            select(Affiliate.id)
            .join(User, User.coupon_code == Affiliate.affiliate_code)
            .where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def record_click(
        self,
        affiliate_code: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> int:
        """
        Log a referral link visit and return the affiliate id.

        Unknown codes raise AffiliateNotFoundError. Failing to store the click
        itself is logged and ignored: clicks feed statistics, not money.
        """
        result = await self.session.execute(
            select(Affiliate.id).where(Affiliate.affiliate_code == affiliate_code)
        )
        affiliate_id = result.scalar_one_or_none()
        if affiliate_id is None:
            raise AffiliateNotFoundError(affiliate_code)

        try:
            self.session.add(ReferralClick(
                affiliate_id=affiliate_id,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:1000] or None,
            ))
            await self.session.commit()
            referral_clicks_total.inc()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning("Referral click not stored", affiliate_id=affiliate_id, error=str(e))
        return affiliate_id

    async def list_referred_users(self, affiliate_id: int) -> List[ReferredUser]:
        """Users referred by the affiliate with their cumulative commission, newest first."""
        affiliate = await self._get_affiliate(affiliate_id)
        commission_total = func.coalesce(func.sum(Commission.commission_amount), 0)
        result = await self.session.execute(
            select(
                User.id,
                User.fullname,
                User.email,
                User.phone,
                User.created_at,
                User.first_deposit,
                commission_total.label("commission"),
            )
            .outerjoin(
                Commission,
                and_(Commission.user_id == User.id, Commission.affiliate_id == affiliate.id),
            )
            .where(User.coupon_code == affiliate.affiliate_code)
            .group_by(User.id)
            .order_by(User.created_at.desc(), User.id.desc())
        )
        return [
            ReferredUser(
                id=row.id,
                fullname=row.fullname,
                email=row.email,
                phone=row.phone,
                created_at=row.created_at,
                first_deposit=bool(row.first_deposit),
                commission=Decimal(str(row.commission)).quantize(ONE_CENT),
            )
            for row in result.all()
        ]

    async def get_referral_link(self, affiliate_id: int) -> Dict[str, Any]:
        affiliate = await self._get_affiliate(affiliate_id)
        return {
            "referral_link": affiliate.referral_link,
            "affiliate_code": affiliate.affiliate_code,
            "coupon_code": affiliate.coupon_code,
        }

    async def get_dashboard(self, affiliate_id: int) -> Dict[str, Any]:
        """Aggregates for the affiliate dashboard; empty aggregates are zero."""
        affiliate = await self._get_affiliate(affiliate_id)

        referred = await self.session.execute(
            select(
                func.count(User.id),
                func.count(User.id).filter(User.first_deposit.is_(True)),
            ).where(User.coupon_code == affiliate.affiliate_code)
        )
        referred_count, deposited_count = referred.one()

        clicks = await self.session.execute(
            select(func.count(ReferralClick.id)).where(ReferralClick.affiliate_id == affiliate.id)
        )

        commissions = await self.session.execute(
            select(
                func.count(Commission.id),
                func.coalesce(func.sum(Commission.commission_amount), 0),
            ).where(Commission.affiliate_id == affiliate.id)
        )
        commission_count, commission_sum = commissions.one()

        return {
            "affiliate_code": affiliate.affiliate_code,
            "referral_link": affiliate.referral_link,
            "total_clicks": clicks.scalar_one() or 0,
            "total_referred_users": referred_count or 0,
            "depositing_users": deposited_count or 0,
            "total_commissions": commission_count or 0,
            "commission_sum": Decimal(str(commission_sum)).quantize(ONE_CENT),
            "total_earned": affiliate.total_earned or ZERO,
            "acc_balance": affiliate.acc_balance or ZERO,
        }
