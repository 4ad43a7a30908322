"""Deposit endpoints: initialize a Paystack checkout, verify it, list deposits, gateway webhook."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from affiliate_backend.app.api.deps import get_reconciler
from affiliate_backend.app.core.auth import get_current_user_id
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.schemas import (
    DepositInitializeRequest,
    DepositInitializeResponse,
    DepositResponse,
    DepositVerifyRequest,
    DepositVerifyResponse,
)
from affiliate_backend.app.services.deposits import (
    DepositReconciler,
    InvalidWebhookSignatureError,
    RESULT_FAILED,
)

router = APIRouter()
logger = get_logger(__name__)


def _handle_deposit_error(e: ServiceError):
    """Convert deposit / gateway / ledger exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/initialize", response_model=DepositInitializeResponse)
async def initialize_deposit(
    data: DepositInitializeRequest,
    user_id: int = Depends(get_current_user_id),
    reconciler: DepositReconciler = Depends(get_reconciler),
):
    try:
        return await reconciler.initialize_deposit(user_id, data.amount)
    except ServiceError as e:
        _handle_deposit_error(e)


@router.post("/verify", response_model=DepositVerifyResponse)
async def verify_deposit(
    data: DepositVerifyRequest,
    user_id: int = Depends(get_current_user_id),
    reconciler: DepositReconciler = Depends(get_reconciler),
):
    """
    Confirm the payment with the gateway and credit it once.

    Repeated calls for the same reference answer `already_processed: true`.
    A gateway status other than success answers 400 with status "failed".
    """
    try:
        result = await reconciler.reconcile(user_id, data.reference)
    except ServiceError as e:
        _handle_deposit_error(e)

    body = DepositVerifyResponse(
        status=result.status,
        reference=result.reference,
        already_processed=result.already_processed,
        amount=result.amount,
        gateway_status=result.gateway_status,
        commission_awarded=bool(result.commission and result.commission.awarded),
    )
    if result.status == RESULT_FAILED:
        raise HTTPException(status_code=400, detail=body.model_dump(mode="json"))
    return body


@router.get("/", response_model=List[DepositResponse])
async def list_deposits(
    user_id: int = Depends(get_current_user_id),
    reconciler: DepositReconciler = Depends(get_reconciler),
):
    return await reconciler.list_deposits(user_id)


@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    reconciler: DepositReconciler = Depends(get_reconciler),
):
    """
    Paystack event hook. A bad signature is refused with 401; every other
    outcome answers 200 so the gateway stops retrying. Failures are logged
    and the deposit can still be settled through /verify.
    """
    raw_body = await request.body()
    try:
        result = await reconciler.handle_webhook(raw_body, x_paystack_signature)
    except InvalidWebhookSignatureError as e:
        _handle_deposit_error(e)
    except ServiceError as e:
        logger.error("Webhook processing failed", error=e.message, status_code=e.status_code)
        return {"status": "error"}
    return {"status": result.status if result else "ignored"}
