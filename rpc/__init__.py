"""RPC module for interacting with a Zcash node"""
import logging
import threading
import requests
from typing import Any, Dict, Optional

from config import settings_conf, get_zcash_conf

logger = logging.getLogger(__name__)

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class NodeConnectionError(RPCError):
    """Raised when connection to node fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass

class ZcashError(RPCError):
    """Zcash-specific error codes and messages

    Common error codes:
    -1  - General error during processing
    -5  - Invalid address or key
    -6  - Insufficient funds
    -8  - Invalid parameter
    -22 - Error parsing JSON
    -25 - Error processing transaction
    -26 - Transaction rejected
    -27 - Transaction already in chain
    -32601 - Method not found
    """
    ERROR_MESSAGES = {
        -1: "General error during processing",
        -5: "Invalid address or key",
        -6: "Insufficient funds",
        -8: "Invalid parameter",
        -22: "Error parsing JSON",
        -25: "Error processing transaction",
        -26: "Transaction rejected",
        -27: "Transaction already in chain",
        -32601: "Method not found",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)

        return caller

class ZcashRPC:
    """Zcash node RPC client"""

    def __init__(self, conf: Optional[Dict[str, Any]] = None, host: Optional[str] = None, timeout: int = 10):
        """Initialize RPC client.

        Args:
            conf: Parsed zcash.conf. Loaded from config when not given.
            host: Node host. Defaults to rpc_host from settings.
            timeout: Request timeout in seconds
        """
        if conf is None:
            conf = get_zcash_conf()
        if host is None:
            host = conf.get('rpcbind') or settings_conf['rpc_host']

        self.rpc_user = conf['rpcuser']
        self.rpc_password = conf['rpcpassword']
        self.rpc_port = conf['rpcport']
        self.rpc_host = host
        self.timeout = timeout

        self.url = f"http://{self.rpc_host}:{self.rpc_port}"

        self.session = requests.Session()
        self.session.auth = (self.rpc_user, self.rpc_password)
        self.session.headers['content-type'] = 'application/json'

        self._request_id = 0
        self._lock = threading.Lock()

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        with self._lock:
            self._request_id += 1
            return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the node

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response from node

        Raises:
            NodeConnectionError: Connection to node failed
            NodeAuthError: Authentication failed
            ZcashError: Node returned an error
        """
        payload = {
            "jsonrpc": "1.0",
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds", method=method
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to Zcash node at {self.url}", method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(f"Request failed: {str(e)}", method=method) from e

        if response.status_code == 401:
            raise NodeAuthError("Authentication failed - check rpcuser/rpcpassword", method=method)

        # The node reports RPC errors with a 500 status and a JSON body
        try:
            result = response.json()
        except ValueError as e:
            raise NodeConnectionError(
                f"Invalid response format (HTTP {response.status_code})", method=method
            ) from e

        error = result.get('error')
        if error:
            raise ZcashError(
                error.get('message', 'Unknown error'),
                error.get('code', -1),
                method
            )

        if response.status_code >= 400:
            raise NodeConnectionError(f"HTTP error {response.status_code}", method=method)

        if 'result' not in result:
            raise NodeConnectionError("Invalid response format: missing result", method=method)
        return result['result']

    # Blockchain methods
    getblockchaininfo = RPCMethod('getblockchaininfo')
    getblockcount = RPCMethod('getblockcount')

    # Transparent wallet methods
    getnewaddress = RPCMethod('getnewaddress')
    getreceivedbyaddress = RPCMethod('getreceivedbyaddress')
    listreceivedbyaddress = RPCMethod('listreceivedbyaddress')
    validateaddress = RPCMethod('validateaddress')

    # Shielded and unified wallet methods
    z_getnewaddress = RPCMethod('z_getnewaddress')
    z_getnewaccount = RPCMethod('z_getnewaccount')
    z_getaddressforaccount = RPCMethod('z_getaddressforaccount')
    z_listunifiedreceivers = RPCMethod('z_listunifiedreceivers')
    z_getbalance = RPCMethod('z_getbalance')
    z_listreceivedbyaddress = RPCMethod('z_listreceivedbyaddress')
    z_validateaddress = RPCMethod('z_validateaddress')
    z_sendmany = RPCMethod('z_sendmany')
    z_getoperationstatus = RPCMethod('z_getoperationstatus')
    z_getoperationresult = RPCMethod('z_getoperationresult')

_client: Optional[ZcashRPC] = None

def get_client() -> ZcashRPC:
    """Get the shared RPC client, creating it on first use.

    Raises:
        ZcashConfigError: If zcash.conf is missing or invalid
    """
    global _client
    if _client is None:
        _client = ZcashRPC()
        logger.info(f"RPC client configured for {_client.url}")
    return _client

# Export client and error types
__all__ = [
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'ZcashError',
    'ZcashRPC',
    'get_client'
]
