"""Settings configuration loader module.

This module handles loading and parsing of the main settings.conf file which holds
the ledger service settings: database location, node location, invoice windows,
withdrawal limits and fees, and the revenue split.

The settings file uses INI format with a [DEFAULT] section containing key-value pairs.
Any key left out falls back to the value in DEFAULTS. A missing file is not an
error; the defaults are used and a warning is logged.

Example settings.conf:
    [DEFAULT]
    db_url = postgresql://root@localhost:26257/ledger?sslmode=disable
    zcash_root = /home/user/.zcash/
    network = testnet
    withdrawal_fee_floor = 0.0002

Raises:
    SettingsError: If the file cannot be parsed or a setting has an invalid value
"""
from configparser import ConfigParser
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Any, List
import logging
import os

logger = logging.getLogger(__name__)

class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.invalid: List[str] = []
        self.out_of_range: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.invalid or self.out_of_range)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.invalid:
            messages.append("Invalid setting values:")
            messages.extend(f"  - {item}" for item in self.invalid)

        if self.out_of_range:
            if messages:
                messages.append("")
            messages.append("Settings out of range:")
            messages.extend(f"  - {item}" for item in self.out_of_range)

        return "\n".join(messages)

class SettingsError(Exception):
    """Raised when there are issues loading or parsing the settings configuration."""
    pass

# Default settings
DEFAULTS = {
    'db_url': 'postgresql://root@localhost:26257/ledger?sslmode=disable',
    'zcash_root': os.path.expanduser('~/.zcash'),
    'network': 'testnet',
    'rpc_host': '127.0.0.1',
    'min_confirmations': '1',
    'invoice_expiration_minutes': '60',
    'subscription_period_days': '30',
    'data_access_days': '30',
    'withdrawal_min': '0.001',
    'withdrawal_max': '100',
    'withdrawal_fixed_fee': '0',
    'withdrawal_fee_rate': '0.02',
    'withdrawal_fee_floor': '0.0002',
    'owner_share': '0.70',
    'jwt_secret': '',
    'jwt_algorithm': 'HS256',
    'observer_interval': '60',
    'sender_batch_size': '10',
    'withdrawal_source_address': 'ANY_TADDR',
    'withdrawal_privacy_policy': 'AllowRevealedRecipients',
    'send_timeout': '120',
    'api_host': '0.0.0.0',
    'api_port': '8000'
}

INT_SETTINGS = (
    'min_confirmations',
    'invoice_expiration_minutes',
    'subscription_period_days',
    'data_access_days',
    'observer_interval',
    'sender_batch_size',
    'send_timeout',
    'api_port'
)

DECIMAL_SETTINGS = (
    'withdrawal_min',
    'withdrawal_max',
    'withdrawal_fixed_fee',
    'withdrawal_fee_rate',
    'withdrawal_fee_floor',
    'owner_share'
)

NETWORKS = ('mainnet', 'testnet')

def load_settings_conf(settings_path: str = ".") -> Dict[str, Any]:
    """Load and parse settings.conf, then validate it.

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        Dictionary containing validated settings

    Raises:
        SettingsError: If parsing or validation fails
    """
    config_path = Path(settings_path) / 'settings.conf'
    settings = dict(DEFAULTS)

    if not config_path.exists():
        logger.warning(f"Settings file not found at {config_path}, using defaults")
        return validate_settings(settings)

    try:
        parser = ConfigParser()
        parser.read(config_path)
    except Exception as e:
        raise SettingsError(f"Error parsing settings.conf: {str(e)}")

    settings.update(dict(parser['DEFAULT']))
    return validate_settings(settings)

def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Validate loaded settings.

    Args:
        settings: Dictionary of raw string settings

    Returns:
        Validated settings with numeric values converted

    Raises:
        SettingsError: If validation fails
    """
    errors = ConfigValidationError()

    for key in INT_SETTINGS:
        try:
            settings[key] = int(settings[key])
        except (ValueError, TypeError, KeyError):
            errors.invalid.append(f"{key}: expected an integer, got {settings.get(key)!r}")

    for key in DECIMAL_SETTINGS:
        try:
            settings[key] = Decimal(str(settings[key]))
        except (InvalidOperation, KeyError):
            errors.invalid.append(f"{key}: expected a decimal, got {settings.get(key)!r}")

    if settings.get('network') not in NETWORKS:
        errors.invalid.append(f"network: must be one of {', '.join(NETWORKS)}")

    if errors.invalid:
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    for key in INT_SETTINGS:
        if settings[key] < 1:
            errors.out_of_range.append(f"{key} must be at least 1")

    if settings['withdrawal_min'] <= 0:
        errors.out_of_range.append("withdrawal_min must be positive")
    if settings['withdrawal_max'] < settings['withdrawal_min']:
        errors.out_of_range.append("withdrawal_max must not be below withdrawal_min")
    if settings['withdrawal_fixed_fee'] < 0:
        errors.out_of_range.append("withdrawal_fixed_fee must not be negative")
    if not 0 <= settings['withdrawal_fee_rate'] < 1:
        errors.out_of_range.append("withdrawal_fee_rate must be in [0, 1)")
    if settings['withdrawal_fee_floor'] < 0:
        errors.out_of_range.append("withdrawal_fee_floor must not be negative")
    if not 0 < settings['owner_share'] < 1:
        errors.out_of_range.append("owner_share must be between 0 and 1")

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    return settings
