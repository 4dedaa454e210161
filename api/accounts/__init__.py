"""Account balance, journal and entitlement endpoints."""

from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from auth import get_current_account
from invoices import InvoiceManager
from ledger import LedgerStore, LedgerError
from privacy import PrivacyGate
from revenue import RevenueSplitEngine
from ..deps import get_invoice_manager, get_ledger, get_privacy_gate, get_revenue_engine
from ..errors import http_error
from ..serializers import money_safe

# Create router
router = APIRouter(
    prefix="/accounts",
    tags=["Accounts"]
)

@router.get("/me")
async def get_my_account(
    account_id: UUID = Depends(get_current_account),
    ledger: LedgerStore = Depends(get_ledger)
) -> Dict[str, Any]:
    """Get the caller's balance and subscription horizon."""
    try:
        return money_safe(await ledger.get_account(account_id))
    except LedgerError as e:
        raise http_error(e)

@router.get("/me/entries")
async def get_my_entries(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    account_id: UUID = Depends(get_current_account),
    ledger: LedgerStore = Depends(get_ledger)
) -> List[Dict[str, Any]]:
    """Get the caller's journal, newest first."""
    return money_safe(await ledger.get_entries(account_id, limit, offset))

@router.get("/me/reconcile")
async def reconcile_my_account(
    account_id: UUID = Depends(get_current_account),
    ledger: LedgerStore = Depends(get_ledger)
) -> Dict[str, Any]:
    """Compare the caller's balance with their journal."""
    try:
        return money_safe(await ledger.reconcile(account_id))
    except LedgerError as e:
        raise http_error(e)

@router.get("/me/entitlement")
async def get_my_entitlement(
    account_id: UUID = Depends(get_current_account),
    manager: InvoiceManager = Depends(get_invoice_manager)
) -> Dict[str, Any]:
    """Get the caller's subscription status."""
    try:
        return await manager.get_entitlement(account_id)
    except LedgerError as e:
        raise http_error(e)

@router.get("/me/earnings")
async def get_my_earnings(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    account_id: UUID = Depends(get_current_account),
    engine: RevenueSplitEngine = Depends(get_revenue_engine)
) -> List[Dict[str, Any]]:
    """Get the caller's data-access earnings."""
    return money_safe(await engine.get_earnings(account_id, limit, offset))

@router.get("/me/grants")
async def get_my_grants(
    account_id: UUID = Depends(get_current_account),
    gate: PrivacyGate = Depends(get_privacy_gate)
) -> List[Dict[str, Any]]:
    """Get the data access grants the caller has bought."""
    return money_safe(await gate.get_grants(account_id))
