"""
Ledger Store: deposit rows and user balances.

Every mutation here runs inside the caller's transaction. The exactly-once
guarantee for balance credits comes from the caller holding the deposit row
lock (`lock_deposit_for_update`) and checking `credited` before crediting.
"""
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.core.constants import DEPOSIT_FAILED, DEPOSIT_PENDING, DEPOSIT_SUCCESS
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.models.deposit import Deposit
from affiliate_backend.app.models.user import User

logger = get_logger(__name__)


class LedgerError(ServiceError):
    """Base exception for ledger errors."""
    pass


class DuplicateReferenceError(LedgerError):
    def __init__(self, reference: str):
        super().__init__(f"Deposit reference {reference} already exists", 409)


class UserNotFoundError(LedgerError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found", 404)


class LedgerStore:
    """Deposit and balance persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_pending_deposit(self, user_id: int, amount: Decimal, reference: str) -> int:
        """
        Insert a pending deposit and return its id.

        A reference collision is reported as DuplicateReferenceError; the
        session is rolled back in that case, so call this as the first write
        of a transaction.
        """
        deposit = Deposit(
            user_id=user_id,
            amount=amount,
            reference=reference,
            status=DEPOSIT_PENDING,
            credited=False,
        )
        self.session.add(deposit)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.warning("Duplicate deposit reference", reference=reference, user_id=user_id)
            raise DuplicateReferenceError(reference)
        return deposit.id

    async def lock_deposit_for_update(self, reference: str) -> Optional[Deposit]:
        """SELECT ... FOR UPDATE on the deposit row. Only meaningful inside a transaction."""
        result = await self.session.execute(
            select(Deposit)
            .where(Deposit.reference == reference)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_for_update(self, user_id: int) -> User:
        result = await self.session.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def credit_balance_once(self, user_id: int, amount: Decimal) -> None:
        """
        Add `amount` to the user's available balance.

        The caller must hold the deposit lock and have seen credited=False.
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(available_balance=User.available_balance + amount)
        )
        if result.rowcount == 0:
            raise UserNotFoundError(user_id)

    async def mark_credited(self, deposit: Deposit) -> None:
        deposit.credited = True
        deposit.status = DEPOSIT_SUCCESS
        await self.session.flush()

    async def mark_failed(self, reference: str) -> bool:
        """Set status=failed on an uncredited deposit. Returns whether a row changed."""
        result = await self.session.execute(
            update(Deposit)
            .where(Deposit.reference == reference, Deposit.credited.is_(False))
            .values(status=DEPOSIT_FAILED)
        )
        return result.rowcount > 0

    async def get_by_reference(self, reference: str) -> Optional[Deposit]:
        result = await self.session.execute(select(Deposit).where(Deposit.reference == reference))
        return result.scalar_one_or_none()

    async def list_user_deposits(self, user_id: int) -> List[Deposit]:
        """User's deposits, newest first."""
        result = await self.session.execute(
            select(Deposit)
            .where(Deposit.user_id == user_id)
            .order_by(Deposit.created_at.desc(), Deposit.id.desc())
        )
        return list(result.scalars().all())
