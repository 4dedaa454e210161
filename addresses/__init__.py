"""Zcash address handling.

This module provides:
- Address grammar checks for transparent, Sapling and unified addresses
- AddressGateway, which asks the node for a fresh receiving address
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional

from config import settings_conf
from rpc import RPCError, ZcashError, get_client

logger = logging.getLogger(__name__)

ADDRESS_TRANSPARENT = 'transparent'
ADDRESS_SHIELDED = 'shielded'
ADDRESS_UNIFIED = 'unified'

PAYMENT_METHODS = ('auto', ADDRESS_TRANSPARENT, ADDRESS_SHIELDED, ADDRESS_UNIFIED)

_ALPHANUMERIC = re.compile(r'^[a-zA-Z0-9]+$')

# network -> address type -> (prefixes, min length, max length)
_GRAMMAR = {
    'mainnet': {
        ADDRESS_UNIFIED: (('u1',), 100, None),
        ADDRESS_TRANSPARENT: (('t1', 't3'), 34, 36),
        ADDRESS_SHIELDED: (('zs',), 78, 78),
    },
    'testnet': {
        ADDRESS_UNIFIED: (('utest1',), 105, None),
        ADDRESS_TRANSPARENT: (('tm', 't2'), 34, 36),
        ADDRESS_SHIELDED: (('ztestsapling',), 90, None),
    },
}

class AddressError(Exception):
    """Base class for address errors."""
    pass

class InvalidAddressError(AddressError):
    """Raised when an address does not match the network's address grammar."""
    def __init__(self, address: str, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"Invalid address: {reason}")

class AddressAllocationError(AddressError):
    """Raised when the node cannot hand out a receiving address."""
    pass

class AddressValidation(NamedTuple):
    valid: bool
    address_type: Optional[str]
    error: Optional[str]

def detect_address_type(address: str, network: str = 'mainnet') -> Optional[str]:
    """Return the address type implied by the prefix, or None."""
    for address_type, (prefixes, _, _) in _GRAMMAR[network].items():
        if address.startswith(prefixes):
            return address_type
    return None

def validate_address(address: Any, network: str = 'mainnet') -> AddressValidation:
    """Check an address against the grammar for a network.

    Args:
        address: Candidate address; surrounding whitespace is ignored
        network: 'mainnet' or 'testnet'

    Returns:
        AddressValidation(valid, address_type, error)
    """
    if network not in _GRAMMAR:
        raise ValueError(f"Unknown network: {network}")

    if not isinstance(address, str) or not address.strip():
        return AddressValidation(False, None, 'Address is required')

    address = address.strip()
    address_type = detect_address_type(address, network)
    if address_type is None:
        return AddressValidation(
            False, None,
            f'Not a {network} transparent, shielded or unified address'
        )

    if not _ALPHANUMERIC.match(address):
        return AddressValidation(False, address_type, 'Address contains invalid characters')

    _, min_length, max_length = _GRAMMAR[network][address_type]
    if len(address) < min_length or (max_length is not None and len(address) > max_length):
        if min_length == max_length:
            expected = f"exactly {min_length}"
        elif max_length is None:
            expected = f"at least {min_length}"
        else:
            expected = f"between {min_length} and {max_length}"
        return AddressValidation(
            False, address_type,
            f"{address_type.capitalize()} address must be {expected} characters"
        )

    return AddressValidation(True, address_type, None)

def require_valid_address(address: Any, network: str = 'mainnet') -> str:
    """Return the stripped address or raise InvalidAddressError."""
    result = validate_address(address, network)
    if not result.valid:
        raise InvalidAddressError(str(address), result.error)
    return address.strip()

@dataclass
class AddressAllocation:
    """A receiving address handed out by the node."""
    address: str
    address_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)

class AddressGateway:
    """Allocates receiving addresses through the node's wallet."""

    def __init__(self, rpc_client=None, network: Optional[str] = None):
        """Initialize the gateway.

        Args:
            rpc_client: ZcashRPC instance. Fetched from rpc.get_client() on first use if not given.
            network: Network the node runs on. Defaults to the configured network.
        """
        self._rpc = rpc_client
        self.network = network or settings_conf['network']

    @property
    def rpc(self):
        if self._rpc is None:
            self._rpc = get_client()
        return self._rpc

    def allocate(self, payment_method: str = 'auto') -> AddressAllocation:
        """Get a fresh receiving address for a payment method.

        'auto' prefers a unified address and falls back to Sapling when the
        node does not support unified accounts.

        Raises:
            ValueError: If the payment method is unknown
            AddressAllocationError: If the node call fails or returns a bad address
        """
        if payment_method not in PAYMENT_METHODS:
            raise ValueError(
                f"Unknown payment method {payment_method!r}, "
                f"expected one of {', '.join(PAYMENT_METHODS)}"
            )

        try:
            if payment_method == ADDRESS_TRANSPARENT:
                allocation = self._transparent()
            elif payment_method == ADDRESS_SHIELDED:
                allocation = self._shielded()
            elif payment_method == ADDRESS_UNIFIED:
                allocation = self._unified()
            else:
                try:
                    allocation = self._unified()
                except ZcashError as e:
                    logger.warning(f"Unified address unavailable, falling back to Sapling: {e}")
                    allocation = self._shielded()
        except RPCError as e:
            logger.error(f"Address allocation failed for {payment_method}: {e}")
            raise AddressAllocationError(f"Failed to allocate {payment_method} address: {e}") from e

        check = validate_address(allocation.address, self.network)
        if not check.valid:
            raise AddressAllocationError(f"Node returned an invalid address: {check.error}")

        allocation.metadata.setdefault('payment_method', payment_method)
        allocation.metadata.setdefault('network', self.network)
        logger.debug(f"Allocated {allocation.address_type} address for {payment_method}")
        return allocation

    def _transparent(self) -> AddressAllocation:
        return AddressAllocation(self.rpc.getnewaddress(), ADDRESS_TRANSPARENT)

    def _shielded(self) -> AddressAllocation:
        return AddressAllocation(
            self.rpc.z_getnewaddress('sapling'),
            ADDRESS_SHIELDED,
            {'pool': 'sapling'}
        )

    def _unified(self) -> AddressAllocation:
        account = self.rpc.z_getnewaccount()
        result = self.rpc.z_getaddressforaccount(account['account'])
        return AddressAllocation(
            result['address'],
            ADDRESS_UNIFIED,
            {
                'account': result.get('account', account['account']),
                'diversifier_index': result.get('diversifier_index'),
                'receiver_types': result.get('receiver_types', [])
            }
        )

__all__ = [
    'AddressError',
    'InvalidAddressError',
    'AddressAllocationError',
    'AddressValidation',
    'AddressAllocation',
    'AddressGateway',
    'validate_address',
    'require_valid_address',
    'detect_address_type',
    'PAYMENT_METHODS',
    'ADDRESS_TRANSPARENT',
    'ADDRESS_SHIELDED',
    'ADDRESS_UNIFIED'
]
