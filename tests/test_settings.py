"""Tests for environment-driven configuration."""

import json
import os

import pytest

from config.settings import (
    PRODUCTION_API_BASE, SANDBOX_API_BASE, get_default_clients, get_settings, is_iso_date,
    setup_security_environment,
)
from utils.exceptions import ConfigurationError

ENV_VARS = (
    'QBO_ENVIRONMENT', 'QBO_CLIENT_ID', 'QBO_CLIENT_SECRET', 'QBO_MINOR_VERSION',
    'JOB_COSTS_START_DATE', 'QBO_PAGE_SIZE', 'QBO_MAX_PAGES', 'QBO_MAX_WORKERS',
    'QBO_REQUEST_TIMEOUT', 'JOB_COSTS_DB', 'JWT_SECRET', 'API_CLIENTS', 'LOG_LEVEL', 'LOG_FILE',
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.setenv(name, '')
    monkeypatch.setenv('QBO_ENVIRONMENT', 'sandbox')
    monkeypatch.setenv('API_CLIENTS', '{}')
    monkeypatch.setenv('QBO_REQUEST_TIMEOUT', '30')
    return monkeypatch


class TestGetSettings:

    def test_defaults(self, clean_env):
        settings = get_settings()
        assert settings.environment == 'sandbox'
        assert settings.api_base == SANDBOX_API_BASE
        assert settings.page_size == 500
        assert settings.max_pages == 10
        assert settings.minor_version == 65
        assert settings.start_date == '2024-01-01'
        assert settings.log_file is None

    def test_overrides(self, clean_env):
        clean_env.setenv('QBO_ENVIRONMENT', 'Production')
        clean_env.setenv('QBO_PAGE_SIZE', '100')
        clean_env.setenv('JOB_COSTS_START_DATE', '2023-07-01')
        clean_env.setenv('API_CLIENTS', json.dumps({'c': {'api_key': 'k'}}))

        settings = get_settings()

        assert settings.api_base == PRODUCTION_API_BASE
        assert settings.page_size == 100
        assert settings.start_date == '2023-07-01'
        assert settings.api_clients == {'c': {'api_key': 'k'}}

    @pytest.mark.parametrize('name, value', [
        ('QBO_ENVIRONMENT', 'staging'),
        ('QBO_PAGE_SIZE', 'lots'),
        ('API_CLIENTS', '{not json'),
        ('QBO_REQUEST_TIMEOUT', 'soon'),
        ('JOB_COSTS_START_DATE', '20240301'),
        ('JOB_COSTS_START_DATE', '2024-W10-1'),
    ])
    def test_invalid_values(self, clean_env, name, value):
        clean_env.setenv(name, value)
        with pytest.raises(ConfigurationError):
            get_settings()


class TestSecurityEnvironment:

    def test_fills_missing_values(self, clean_env):
        clean_env.setenv('API_CLIENTS', '')

        setup_security_environment()

        assert os.environ['JWT_SECRET']
        assert json.loads(os.environ['API_CLIENTS']) == get_default_clients()

    def test_keeps_configured_values(self, clean_env):
        clean_env.setenv('JWT_SECRET', 'configured')
        clean_env.setenv('API_CLIENTS', '{"c": {}}')

        setup_security_environment()

        assert os.environ['JWT_SECRET'] == 'configured'
        assert os.environ['API_CLIENTS'] == '{"c": {}}'


class TestIsoDate:

    @pytest.mark.parametrize('value', ['2024-01-01', '2023-12-31', '2024-02-29'])
    def test_accepted(self, value):
        assert is_iso_date(value)

    @pytest.mark.parametrize('value', ['20240101', '2024W011', '2024-W01-1', '2024-1-1', '2023-02-29', '', None])
    def test_rejected(self, value):
        assert not is_iso_date(value)
