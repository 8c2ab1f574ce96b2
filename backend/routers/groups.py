"""Groups router: create and read groups, edit member names, recompute and claim."""

from fastapi import APIRouter, Depends, HTTPException

import schemas
from dependencies import get_ledger, get_reconciler
from ledger.errors import GroupNotFoundError, TransferError, ValidationError
from ledger.reconciler import PaymentReconciler
from ledger.store import LedgerStore
from utils.rate_limiter import group_creation_rate_limiter
from utils.validation import get_group_or_404


router = APIRouter(prefix="/groups", tags=["groups"])


@router.post("", response_model=schemas.Group, dependencies=[Depends(group_creation_rate_limiter)])
def create_group(
    group: schemas.GroupCreate,
    ledger: LedgerStore = Depends(get_ledger)
):
    try:
        return ledger.create_group(
            name=group.name,
            total_amount=group.total_amount,
            splitter_count=group.number_of_splitters,
            creator_address=group.creator_address,
            wallet_address=group.wallet_address
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=list[schemas.Group])
def read_groups(
    creator: str,
    ledger: LedgerStore = Depends(get_ledger)
):
    """Groups created by an address (case-insensitive)."""
    return ledger.get_user_groups(creator)


@router.get("/{group_id}", response_model=schemas.Group)
def get_group(
    group_id: str,
    ledger: LedgerStore = Depends(get_ledger)
):
    return get_group_or_404(ledger, group_id)


@router.put("/{group_id}/payments/{payment_id}/name", response_model=schemas.Group)
def update_member_name(
    group_id: str,
    payment_id: str,
    update: schemas.MemberNameUpdate,
    ledger: LedgerStore = Depends(get_ledger)
):
    if not ledger.update_member_name(group_id, payment_id, update.member_name):
        raise HTTPException(status_code=404, detail="Group or payment not found")
    return get_group_or_404(ledger, group_id)


@router.post("/{group_id}/recompute", response_model=schemas.Group)
def recompute_collected(
    group_id: str,
    ledger: LedgerStore = Depends(get_ledger)
):
    if not ledger.recompute_collected(group_id):
        raise HTTPException(status_code=404, detail="Group not found")
    return get_group_or_404(ledger, group_id)


@router.post("/{group_id}/claim", response_model=schemas.ClaimResult)
async def claim_funds(
    group_id: str,
    claim: schemas.ClaimRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    try:
        return await reconciler.claim(group_id, claim.to_address)
    except GroupNotFoundError:
        raise HTTPException(status_code=404, detail="Group not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransferError as e:
        raise HTTPException(status_code=502, detail=f"Failed to claim funds: {e.reason}")
