"""Tests for settings loading."""

from decimal import Decimal

import pytest

from config import DEFAULTS, SettingsError, load_settings_conf

def write_settings(tmp_path, body: str):
    path = tmp_path / 'settings.conf'
    path.write_text("[DEFAULT]\n" + body)
    return path

def test_missing_file_uses_defaults(tmp_path):
    """Test that a missing settings file falls back to the built-in defaults."""
    settings = load_settings_conf(str(tmp_path / 'missing.conf'))

    assert settings['db_url'] == DEFAULTS['db_url']
    assert settings['api_port'] == 3001
    assert settings['token_refresh_buffer_minutes'] == 5
    assert settings['token_lifetime_minutes'] == 55
    assert settings['analytics_max_queue'] == 50
    assert settings['delivery_fee'] == Decimal('5.00')
    assert settings['nearby_radius_km'] == Decimal('10')

def test_file_overrides_defaults(tmp_path):
    path = write_settings(tmp_path, "api_port = 8080\ndelivery_fee = 7.50\n")

    settings = load_settings_conf(str(path))

    assert settings['api_port'] == 8080
    assert settings['delivery_fee'] == Decimal('7.50')
    assert settings['session_lifetime_hours'] == 24

def test_directory_path_reads_settings_conf(tmp_path):
    write_settings(tmp_path, "analytics_flush_interval = 60\n")

    settings = load_settings_conf(str(tmp_path))

    assert settings['analytics_flush_interval'] == 60

def test_invalid_integer_raises(tmp_path):
    path = write_settings(tmp_path, "api_port = not-a-port\n")

    with pytest.raises(SettingsError) as exc_info:
        load_settings_conf(str(path))
    assert 'api_port' in str(exc_info.value)

def test_negative_fee_raises(tmp_path):
    path = write_settings(tmp_path, "delivery_fee = -1\n")

    with pytest.raises(SettingsError):
        load_settings_conf(str(path))

def test_empty_db_url_raises(tmp_path):
    path = write_settings(tmp_path, "db_url =\n")

    with pytest.raises(SettingsError) as exc_info:
        load_settings_conf(str(path))
    assert 'db_url' in str(exc_info.value)
