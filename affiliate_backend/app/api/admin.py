"""Administrative withdrawal processing. Mounted with the X-Admin-Token dependency in main.py."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.api.deps import get_session
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.schemas import WithdrawalListResponse, WithdrawalResponse
from affiliate_backend.app.services.withdrawals import WithdrawalService

router = APIRouter()


def _handle_withdrawal_error(e: ServiceError):
    """Convert withdrawal service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/withdrawals", response_model=WithdrawalListResponse)
async def list_withdrawals(session: AsyncSession = Depends(get_session)):
    return {"success": True, "data": await WithdrawalService(session).list_all_withdrawals()}


@router.patch("/withdrawals/{withdrawal_id}/approve")
async def approve_withdrawal(withdrawal_id: int, session: AsyncSession = Depends(get_session)):
    try:
        withdrawal = await WithdrawalService(session).approve(withdrawal_id)
    except ServiceError as e:
        _handle_withdrawal_error(e)
    return {
        "success": True,
        "message": "Withdrawal approved",
        "data": WithdrawalResponse.model_validate(withdrawal),
    }


@router.patch("/withdrawals/{withdrawal_id}/reject")
async def reject_withdrawal(withdrawal_id: int, session: AsyncSession = Depends(get_session)):
    try:
        withdrawal = await WithdrawalService(session).reject(withdrawal_id)
    except ServiceError as e:
        _handle_withdrawal_error(e)
    return {
        "success": True,
        "message": "Withdrawal rejected",
        "data": WithdrawalResponse.model_validate(withdrawal),
    }
