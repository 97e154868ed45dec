"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError, DEFAULTS
import configparser

__all__ = ['settings_conf', 'load_config', 'load_settings_conf', 'SettingsError', 'DEFAULTS']

def load_config(config_path: Optional[str] = None) -> configparser.ConfigParser:
    """Load raw configuration from file.

    Args:
        config_path: Optional path to config file. If not provided,
                    will look for settings.conf in current directory.

    Returns:
        ConfigParser object with loaded settings
    """
    config = configparser.ConfigParser(defaults=DEFAULTS)

    if config_path:
        config.read(config_path)
    else:
        config.read('settings.conf')

    return config

try:
    settings_conf: Dict[str, Any] = load_settings_conf()

except SettingsError as e:
    # Re-raise the error but provide more context
    raise SettingsError(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "Run `python -m config` to write examples/settings.conf.example."
    )
