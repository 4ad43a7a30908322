from sqlalchemy import String, DateTime, DECIMAL, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from affiliate_backend.app.core.base import Base


class Affiliate(Base):
    __tablename__ = 'affiliates'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    firstname: Mapped[str] = mapped_column(String(100))
    lastname: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    phone: Mapped[str] = mapped_column(String(20), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    known_devices: Mapped[list] = mapped_column(JSON, default=list)

    affiliate_code: Mapped[str] = mapped_column(String(20), unique=True)
    referral_link: Mapped[str] = mapped_column(String(500))
    coupon_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Only grows, by commission
    total_earned: Mapped[Decimal] = mapped_column(DECIMAL(14, 2), default=Decimal("0"))
    # total_earned minus approved withdrawals
    acc_balance: Mapped[Decimal] = mapped_column(DECIMAL(14, 2), default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
