"""Worker that sends pending withdrawals through the node wallet."""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from config import settings_conf
from ledger.exceptions import InvalidTransitionError
from rpc import RPCError, NodeConnectionError, get_client
from withdrawals import WithdrawalManager

logger = logging.getLogger(__name__)

class SendFailed(Exception):
    """The node reported that the send operation failed; nothing was sent."""
    pass

class SendPending(Exception):
    """The send outcome is unknown; the withdrawal must stay in processing."""
    pass

def submit_send(rpc, withdrawal: Dict[str, Any], source_address: str, privacy_policy: str) -> str:
    """Start a z_sendmany for a withdrawal and return the operation id."""
    recipients = [{
        'address': withdrawal['destination_address'],
        'amount': float(withdrawal['net_amount'])
    }]
    return rpc.z_sendmany(source_address, recipients, 1, None, privacy_policy)

def wait_for_operation(rpc, opid: str, timeout: int, poll_interval: float = 1.0) -> str:
    """Poll an async node operation until it finishes.

    Returns:
        The txid of the sent transaction

    Raises:
        SendFailed: If the operation failed
        SendPending: If it did not finish within ``timeout`` or could not be polled
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            statuses = rpc.z_getoperationstatus([opid])
        except RPCError as e:
            raise SendPending(f"Could not poll operation {opid}: {e}") from e

        if statuses:
            status = statuses[0]
            if status.get('status') == 'success':
                return status['result']['txid']
            if status.get('status') in ('failed', 'cancelled'):
                error = status.get('error', {})
                raise SendFailed(error.get('message', status['status']))
        time.sleep(poll_interval)

    raise SendPending(f"Operation {opid} still running after {timeout}s")

async def send_withdrawal(manager: WithdrawalManager, rpc, withdrawal: Dict[str, Any]) -> Optional[str]:
    """Claim, send and settle one withdrawal.

    Returns:
        The final status, or None if another sender claimed it first
    """
    try:
        await manager.begin_processing(withdrawal['id'])
    except InvalidTransitionError:
        logger.info(f"Withdrawal {withdrawal['id']} already claimed")
        return None

    loop = asyncio.get_running_loop()
    source = settings_conf['withdrawal_source_address']
    policy = settings_conf['withdrawal_privacy_policy']

    try:
        opid = await loop.run_in_executor(None, submit_send, rpc, withdrawal, source, policy)
    except NodeConnectionError as e:
        # The request may or may not have reached the node
        logger.error(f"Withdrawal {withdrawal['id']} left processing, send outcome unknown: {e}")
        return 'processing'
    except RPCError as e:
        await manager.fail(withdrawal['id'], str(e))
        return 'failed'

    try:
        txid = await loop.run_in_executor(
            None, wait_for_operation, rpc, opid, settings_conf['send_timeout']
        )
    except SendFailed as e:
        await manager.fail(withdrawal['id'], str(e))
        return 'failed'
    except SendPending as e:
        logger.error(f"Withdrawal {withdrawal['id']} left processing: {e}")
        return 'processing'

    await manager.complete(withdrawal['id'], txid)
    return 'sent'

async def process_pending_withdrawals(manager: WithdrawalManager, rpc, batch_size: int) -> int:
    """Send one batch of pending withdrawals. Returns the number sent."""
    pending = await manager.list_pending(batch_size)
    logger.debug(f"Found {len(pending)} pending withdrawals")

    sent = 0
    for withdrawal in pending:
        if await send_withdrawal(manager, rpc, withdrawal) == 'sent':
            sent += 1
    return sent

async def run_worker(manager: Optional[WithdrawalManager] = None, rpc=None):
    """Main worker loop."""
    manager = manager or WithdrawalManager()
    rpc = rpc or get_client()
    batch_size = settings_conf['sender_batch_size']
    interval = settings_conf['observer_interval']

    logger.info("Withdrawal sender starting up")
    while True:
        try:
            sent = await process_pending_withdrawals(manager, rpc, batch_size)
            if sent:
                logger.info(f"Sent {sent} withdrawals")

        except Exception as e:
            logger.exception(f"Error in withdrawal sender loop: {e}")

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
