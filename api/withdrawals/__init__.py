"""Withdrawal endpoints.

Sending, completion and failure are driven by the withdrawal sender worker.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from addresses import AddressError
from auth import get_current_account
from ledger import LedgerError
from withdrawals import WithdrawalManager
from ..deps import get_withdrawal_manager
from ..errors import http_error
from ..serializers import money_safe

# Create router
router = APIRouter(
    prefix="/withdrawals",
    tags=["Withdrawals"]
)

class WithdrawalRequest(BaseModel):
    """Request model for a withdrawal."""
    amount: Decimal
    destination_address: str

@router.post("", status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    request: WithdrawalRequest,
    account_id: UUID = Depends(get_current_account),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
) -> Dict[str, Any]:
    """Reserve funds and queue a withdrawal."""
    try:
        return money_safe(await manager.request(
            account_id, request.amount, request.destination_address
        ))
    except (LedgerError, AddressError) as e:
        raise http_error(e)

@router.get("/fee-estimate")
async def estimate_fee(
    amount: Decimal = Query(..., gt=0),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
) -> Dict[str, Any]:
    """Quote the fee for a withdrawal amount."""
    try:
        return money_safe(manager.estimate_fee(amount))
    except LedgerError as e:
        raise http_error(e)

@router.get("/stats")
async def get_stats(
    account_id: UUID = Depends(get_current_account),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
) -> Dict[str, Any]:
    """Summarize the caller's withdrawals."""
    return money_safe(await manager.get_stats(account_id))

@router.get("")
async def list_withdrawals(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    account_id: UUID = Depends(get_current_account),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
) -> List[Dict[str, Any]]:
    """List the caller's withdrawals."""
    try:
        return money_safe(await manager.list_withdrawals(account_id, status_filter, limit, offset))
    except ValueError as e:
        raise http_error(e)

@router.get("/{withdrawal_id}")
async def get_withdrawal(
    withdrawal_id: UUID,
    account_id: UUID = Depends(get_current_account),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
) -> Dict[str, Any]:
    """Get one of the caller's withdrawals."""
    try:
        withdrawal = await manager.get_withdrawal(withdrawal_id)
    except LedgerError as e:
        raise http_error(e)

    if withdrawal['account_id'] != account_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Withdrawal {withdrawal_id} not found"
        )
    return money_safe(withdrawal)
