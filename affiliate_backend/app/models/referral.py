from sqlalchemy import ForeignKey, DateTime, String, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from affiliate_backend.app.core.base import Base


class ReferralClick(Base):
    """Append-only log of visits to an affiliate's referral link."""
    __tablename__ = 'referral_clicks'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey('affiliates.id'))
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_referral_clicks_affiliate_id', 'affiliate_id'),
    )
