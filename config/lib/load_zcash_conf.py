"""Zcash node configuration loader module.

This module handles loading and parsing of the node's configuration file (zcash.conf).
The file uses a simple key=value format, with one setting per line. Comments start
with #.

Required settings:
    - rpcuser (RPC authentication username)
    - rpcpassword (RPC authentication password)
    - rpcport (Port for RPC connections)

Example zcash.conf:
    server=1
    testnet=1
    rpcuser=user
    rpcpassword=password
    rpcport=18232

Raises:
    ZcashConfigError: If the configuration file is missing, invalid, or missing required settings
"""
from pathlib import Path
from typing import Dict, Any, Union, List
import logging

logger = logging.getLogger(__name__)

class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.missing: List[str] = []
        self.invalid: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing or self.invalid)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.missing:
            messages.append("Missing required settings:")
            messages.extend(f"  - {item}" for item in self.missing)

        if self.invalid:
            if messages:
                messages.append("")
            messages.append("Invalid setting types:")
            messages.extend(f"  - {item}" for item in self.invalid)

        return "\n".join(messages)

class ZcashConfigError(Exception):
    """Raised when there's an error loading the node configuration"""
    pass

def parse_value(value: str) -> Union[str, int]:
    """Parse integer values, leave everything else as text"""
    try:
        return int(value)
    except ValueError:
        return value

def load_zcash_conf(zcash_root: str) -> Dict[str, Any]:
    """Load and parse zcash.conf.

    Args:
        zcash_root: Path to the node configuration directory

    Returns:
        Dictionary containing parsed node settings

    Raises:
        ZcashConfigError: If file not found, parsing fails, or validation fails
    """
    config_path = Path(zcash_root) / 'zcash.conf'

    if not config_path.exists():
        raise ZcashConfigError(
            f"Node configuration file not found at: {config_path}\n"
            "Please ensure zcash.conf exists in your node configuration directory"
        )

    try:
        with open(config_path, 'r') as f:
            lines = f.readlines()
    except OSError as e:
        raise ZcashConfigError(f"Error reading zcash.conf: {str(e)}")

    config = {}
    for line in lines:
        line = line.strip()
        if not line or line.startswith('#') or line.startswith('['):
            continue
        if '=' not in line:
            logger.warning(f"Skipping invalid line in zcash.conf: {line}")
            continue
        key, value = line.split('=', 1)
        config[key.strip()] = parse_value(value.strip())

    errors = ConfigValidationError()
    required_settings = {
        'rpcuser': str,
        'rpcpassword': str,
        'rpcport': int
    }

    for key, expected_type in required_settings.items():
        if key not in config:
            errors.missing.append(key)
        elif not isinstance(config[key], expected_type):
            # Numeric passwords are still passwords
            if expected_type is str:
                config[key] = str(config[key])
            else:
                errors.invalid.append(f"{key} (expected {expected_type.__name__})")

    if errors.has_errors():
        raise ZcashConfigError(
            "Node Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    return config
