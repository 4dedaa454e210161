"""Worker that watches invoice addresses and confirms payments."""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from addresses import ADDRESS_TRANSPARENT
from config import settings_conf
from invoices import InvoiceManager, AmountMismatchError
from ledger.exceptions import InvalidTransitionError
from rpc import RPCError, get_client

logger = logging.getLogger(__name__)

def transparent_receipts(rpc, min_confirmations: int) -> Dict[str, Dict[str, Any]]:
    """Everything the wallet received at transparent addresses, keyed by address."""
    return {
        entry['address']: entry
        for entry in rpc.listreceivedbyaddress(min_confirmations, False, True)
        if entry.get('address')
    }

def received_at_address(
    rpc,
    invoice: Dict[str, Any],
    min_confirmations: int,
    transparent: Optional[Dict[str, Dict[str, Any]]] = None
) -> Tuple[Decimal, Optional[str]]:
    """Total confirmed amount received at an invoice's address and a reference for it.

    The reference is the list of txids that make up the total, so repeated
    observations of the same payment carry the same reference. ``transparent``
    is a ``transparent_receipts`` result to reuse across invoices.
    """
    address = invoice['payment_address']

    if invoice['address_type'] == ADDRESS_TRANSPARENT:
        if transparent is None:
            transparent = transparent_receipts(rpc, min_confirmations)
        entry = transparent.get(address, {})
        total = Decimal(str(entry.get('amount', 0)))
        txids = entry.get('txids', [])
    else:
        notes = rpc.z_listreceivedbyaddress(address, min_confirmations)
        total = sum((Decimal(str(note.get('amount', 0))) for note in notes), Decimal('0'))
        txids = [note['txid'] for note in notes if note.get('txid')]

    reference = ','.join(sorted(set(txids))) or None
    return total, reference

async def check_invoice(
    manager: InvoiceManager,
    rpc,
    invoice: Dict[str, Any],
    min_confirmations: int,
    transparent: Optional[Dict[str, Dict[str, Any]]] = None
) -> bool:
    """Confirm one invoice if enough has arrived. Returns True when it was paid."""
    loop = asyncio.get_running_loop()
    total, reference = await loop.run_in_executor(
        None, received_at_address, rpc, invoice, min_confirmations, transparent
    )
    if total <= 0:
        return False

    try:
        await manager.confirm_payment(invoice['id'], total, reference or invoice['payment_address'])
        return True
    except AmountMismatchError:
        # Partial payment, keep watching
        return False
    except InvalidTransitionError as e:
        logger.info(f"Invoice {invoice['id']} closed before payment was seen: {e}")
        return False

async def process_pending_invoices(manager: InvoiceManager, rpc, min_confirmations: int, batch_size: int = 100) -> int:
    """Check every open invoice once, a page at a time. Returns the number confirmed."""
    loop = asyncio.get_running_loop()
    transparent = None
    after = None
    checked = 0
    confirmed = 0

    while True:
        page = await manager.list_pending(batch_size, after)
        checked += len(page)

        for invoice in page:
            try:
                if invoice['address_type'] == ADDRESS_TRANSPARENT and transparent is None:
                    transparent = await loop.run_in_executor(
                        None, transparent_receipts, rpc, min_confirmations
                    )
                if await check_invoice(manager, rpc, invoice, min_confirmations, transparent):
                    confirmed += 1
            except RPCError as e:
                logger.error(f"Node error checking invoice {invoice['id']}: {e}")

        if len(page) < batch_size:
            break
        after = (page[-1]['created_at'], page[-1]['id'])

    logger.debug(f"Checked {checked} pending invoices")
    return confirmed

async def run_worker(manager: Optional[InvoiceManager] = None, rpc=None):
    """Main worker loop."""
    manager = manager or InvoiceManager()
    rpc = rpc or get_client()
    interval = settings_conf['observer_interval']
    min_confirmations = settings_conf['min_confirmations']

    logger.info("Payment observer starting up")
    while True:
        try:
            confirmed = await process_pending_invoices(manager, rpc, min_confirmations)
            if confirmed:
                logger.info(f"Confirmed {confirmed} invoice payments")
            await manager.expire_stale()

        except Exception as e:
            logger.exception(f"Error in payment observer loop: {e}")

        finally:
            await asyncio.sleep(interval)

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
