from sqlalchemy import ForeignKey, DateTime, DECIMAL, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from affiliate_backend.app.core.base import Base


class Commission(Base):
    __tablename__ = 'commissions'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey('affiliates.id'))
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'))
    # At most one commission per deposit
    deposit_id: Mapped[int] = mapped_column(ForeignKey('deposits.id'), unique=True)
    commission_amount: Mapped[Decimal] = mapped_column(DECIMAL(14, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_commissions_affiliate_id', 'affiliate_id'),
        Index('ix_commissions_user_id', 'user_id'),
    )
