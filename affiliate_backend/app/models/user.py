from sqlalchemy import String, DateTime, DECIMAL, Boolean, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from affiliate_backend.app.core.base import Base


class User(Base):
    """Betting-site user. Referred when coupon_code matches an affiliate_code."""
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    fullname: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    # Device ids that may log in without an e-mailed code
    known_devices: Mapped[list] = mapped_column(JSON, default=list)

    # Referral attribution: set once at registration, never changed
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    available_balance: Mapped[Decimal] = mapped_column(DECIMAL(14, 2), default=Decimal("0"))
    # Set when the first-deposit commission has been decided
    first_deposit: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_users_coupon_code', 'coupon_code'),
    )
