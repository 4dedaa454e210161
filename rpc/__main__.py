"""Command line interface for checking node connectivity"""
from config import ZcashConfigError
from . import get_client, NodeConnectionError, NodeAuthError, ZcashError

def check_rpc():
    """Run a few read-only calls against the configured node"""
    try:
        client = get_client()
    except ZcashConfigError as e:
        print(str(e))
        return

    try:
        print("\nChecking node:")
        print("-" * 50)

        info = client.getblockchaininfo()
        print(f"  Chain: {info.get('chain')}")
        print(f"  Blocks: {info.get('blocks')}")

        print("\nChecking error handling with an invalid address:")
        result = client.z_validateaddress('not-an-address')
        print(f"  isvalid: {result.get('isvalid')}")

    except NodeAuthError as e:
        print(f"Authentication failed: {e}")
    except NodeConnectionError as e:
        print(f"Connection failed: {e}")
    except ZcashError as e:
        print(f"Node error: {e}")

if __name__ == "__main__":
    check_rpc()
