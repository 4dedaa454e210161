"""Shared manager instances for the API routers.

Routers take these through FastAPI's Depends so tests can swap them out with
``app.dependency_overrides``.
"""
from functools import lru_cache

from invoices import InvoiceManager
from ledger import LedgerStore
from privacy import PrivacyGate
from revenue import RevenueSplitEngine
from withdrawals import WithdrawalManager

@lru_cache()
def get_ledger() -> LedgerStore:
    return LedgerStore()

@lru_cache()
def get_invoice_manager() -> InvoiceManager:
    return InvoiceManager(ledger=get_ledger())

@lru_cache()
def get_withdrawal_manager() -> WithdrawalManager:
    return WithdrawalManager(ledger=get_ledger())

@lru_cache()
def get_privacy_gate() -> PrivacyGate:
    return PrivacyGate()

@lru_cache()
def get_revenue_engine() -> RevenueSplitEngine:
    return RevenueSplitEngine(get_ledger())
