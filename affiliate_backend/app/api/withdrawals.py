"""Affiliate withdrawal endpoints (request, history, balance summary)."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.api.deps import get_session
from affiliate_backend.app.core.auth import get_current_affiliate_id
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.schemas import BalanceSummaryResponse, WithdrawalCreate, WithdrawalResponse
from affiliate_backend.app.services.withdrawals import WithdrawalService

router = APIRouter()


def _handle_withdrawal_error(e: ServiceError):
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/request")
async def request_withdrawal(
    data: WithdrawalCreate,
    affiliate_id: int = Depends(get_current_affiliate_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        withdrawal = await WithdrawalService(session).request_withdrawal(
            affiliate_id, data.amount, data.bank_account
        )
    except ServiceError as e:
        _handle_withdrawal_error(e)
    return {
        "success": True,
        "message": "Withdrawal request submitted",
        "data": WithdrawalResponse.model_validate(withdrawal),
    }


@router.get("/my-withdrawals", response_model=List[WithdrawalResponse])
async def my_withdrawals(
    affiliate_id: int = Depends(get_current_affiliate_id),
    session: AsyncSession = Depends(get_session),
):
    return await WithdrawalService(session).list_affiliate_withdrawals(affiliate_id)


@router.get("/balance-summary")
async def balance_summary(
    affiliate_id: int = Depends(get_current_affiliate_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        summary = await WithdrawalService(session).get_balance_summary(affiliate_id)
    except ServiceError as e:
        _handle_withdrawal_error(e)
    return {"success": True, "data": BalanceSummaryResponse(**summary)}
