from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from affiliate_backend.app.core.base import Base


class Deposit(Base):
    """
    One gateway payment attempt, keyed by its globally unique reference.

    status: pending -> success | failed. `credited` flips to True once, together
    with status=success, when the amount has been added to the user's balance.
    """
    __tablename__ = 'deposits'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'))
    amount: Mapped[Decimal] = mapped_column(DECIMAL(14, 2))
    reference: Mapped[str] = mapped_column(String(100), unique=True)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    credited: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_deposits_user_id', 'user_id'),
    )
