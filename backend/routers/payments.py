"""Payments router: the public side of a shareable payment link.

Links look like /pay/{payment_id}?amount=<decimal>&group=<name>. The query
parameters are only trusted when this ledger has never seen the payment.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

import schemas
from dependencies import get_reconciler
from ledger.errors import ValidationError
from ledger.reconciler import PaymentReconciler
from schemas import OutcomeStatus
from utils.rate_limiter import payment_link_rate_limiter, payment_submission_rate_limiter


router = APIRouter(prefix="/pay", tags=["payments"])

OUTCOME_STATUS_CODES = {
    OutcomeStatus.CONFIRMED: status.HTTP_200_OK,
    OutcomeStatus.SUBMITTED_UNCONFIRMED: status.HTTP_202_ACCEPTED,
    OutcomeStatus.REVERTED: status.HTTP_409_CONFLICT,
    OutcomeStatus.REJECTED: status.HTTP_400_BAD_REQUEST,
}


@router.get(
    "/{payment_id}",
    response_model=schemas.PaymentAttemptView,
    dependencies=[Depends(payment_link_rate_limiter)]
)
def open_payment_link(
    payment_id: str,
    amount: str = Query("0"),
    group: Optional[str] = Query(None),
    payer: Optional[str] = Query(None),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    try:
        attempt = reconciler.locate(payment_id, amount, group_name=group, payer_address=payer)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return attempt.view()


@router.post("/{payment_id}/preview", response_model=schemas.TransferPreview)
async def preview_payment(
    payment_id: str,
    request: schemas.PreviewRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    try:
        attempt = reconciler.locate(payment_id, request.amount, group_name=request.group_name)
        return await reconciler.preview(attempt, request.amount)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post(
    "/{payment_id}",
    response_model=schemas.PaymentResult,
    dependencies=[Depends(payment_submission_rate_limiter)]
)
async def submit_payment(
    payment_id: str,
    request: schemas.PaymentRequest,
    response: Response,
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    try:
        result = await reconciler.pay(
            payment_id,
            request.amount,
            request.payer_address,
            group_name=request.group_name
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    response.status_code = OUTCOME_STATUS_CODES[result.status]
    return result
