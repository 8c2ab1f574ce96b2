"""Network router: which chain and token the ledger settles on."""

from fastapi import APIRouter, Depends

import schemas
from dependencies import get_wallet


router = APIRouter(prefix="/network", tags=["network"])


@router.get("", response_model=schemas.NetworkInfo)
async def get_network_info(wallet=Depends(get_wallet)):
    return await wallet.chain_info()
