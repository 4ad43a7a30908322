from sqlalchemy import ForeignKey, DateTime, String, DECIMAL, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from affiliate_backend.app.core.base import Base


class AffiliateWithdrawal(Base):
    __tablename__ = 'affiliate_withdrawals'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey('affiliates.id'))
    amount: Mapped[Decimal] = mapped_column(DECIMAL(14, 2))
    bank_account: Mapped[str] = mapped_column(String(255))
    # pending -> approved | rejected (terminal)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index('ix_affiliate_withdrawals_affiliate_id', 'affiliate_id'),
        Index('ix_affiliate_withdrawals_status', 'status'),
    )
