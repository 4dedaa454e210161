"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_zcash_conf import load_zcash_conf, ZcashConfigError
from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS
import os

__all__ = [
    'settings_conf',
    'get_zcash_conf',
    'reload_settings',
    'SettingsError',
    'ZcashConfigError',
    'DEFAULTS'
]

SETTINGS_PATH_ENV = 'LEDGER_SETTINGS_PATH'

_zcash_conf: Optional[Dict[str, Any]] = None

def _load() -> Dict[str, Any]:
    try:
        return load_settings_conf(os.environ.get(SETTINGS_PATH_ENV, '.'))
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please check settings.conf against settings.conf.example."
        )

settings_conf: Dict[str, Any] = _load()

def reload_settings() -> Dict[str, Any]:
    """Re-read settings.conf into the shared settings dict in place."""
    global _zcash_conf
    fresh = _load()
    settings_conf.clear()
    settings_conf.update(fresh)
    _zcash_conf = None
    return settings_conf

def get_zcash_conf() -> Dict[str, Any]:
    """Load zcash.conf on first use.

    The node config is only needed by code that talks to the node, so it is not
    read at import time.

    Raises:
        ZcashConfigError: If zcash.conf is missing or invalid
    """
    global _zcash_conf
    if _zcash_conf is None:
        _zcash_conf = load_zcash_conf(settings_conf['zcash_root'])
    return _zcash_conf
