"""Invoice endpoints.

Payment confirmation is not exposed here; the payment observer worker drives it.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from addresses import AddressError
from auth import get_current_account
from invoices import InvoiceManager
from ledger import LedgerError
from ..deps import get_invoice_manager
from ..errors import http_error
from ..serializers import money_safe

# Create router
router = APIRouter(
    prefix="/invoices",
    tags=["Invoices"]
)

class CreateInvoiceRequest(BaseModel):
    """Request model for creating an invoice."""
    kind: str
    amount: Decimal
    payment_method: str = 'auto'
    resource_id: Optional[str] = None

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: CreateInvoiceRequest,
    account_id: UUID = Depends(get_current_account),
    manager: InvoiceManager = Depends(get_invoice_manager)
) -> Dict[str, Any]:
    """Create an invoice payable by the caller."""
    try:
        return money_safe(await manager.create(
            owner_account_id=account_id,
            kind=request.kind,
            requested_amount=request.amount,
            resource_id=request.resource_id,
            payment_method=request.payment_method
        ))
    except (LedgerError, AddressError, ValueError) as e:
        raise http_error(e)

@router.get("")
async def list_invoices(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    account_id: UUID = Depends(get_current_account),
    manager: InvoiceManager = Depends(get_invoice_manager)
) -> List[Dict[str, Any]]:
    """List the caller's invoices."""
    try:
        return money_safe(await manager.list_invoices(account_id, status_filter, limit, offset))
    except ValueError as e:
        raise http_error(e)

@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: UUID,
    account_id: UUID = Depends(get_current_account),
    manager: InvoiceManager = Depends(get_invoice_manager)
) -> Dict[str, Any]:
    """Get one of the caller's invoices."""
    try:
        invoice = await manager.get_invoice(invoice_id)
    except LedgerError as e:
        raise http_error(e)

    if account_id not in (invoice['owner_account_id'], invoice['counterparty_account_id']):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Invoice {invoice_id} not found"
        )
    return money_safe(invoice)

@router.post("/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: UUID,
    account_id: UUID = Depends(get_current_account),
    manager: InvoiceManager = Depends(get_invoice_manager)
) -> Dict[str, Any]:
    """Cancel one of the caller's pending invoices."""
    try:
        return money_safe(await manager.cancel(invoice_id, account_id))
    except LedgerError as e:
        raise http_error(e)
