"""
Service configuration
Reads QuickBooks, fetch, ledger and security settings from the environment
"""

import os
import json
import secrets
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SANDBOX_API_BASE = "https://sandbox-quickbooks.api.intuit.com"
PRODUCTION_API_BASE = "https://quickbooks.api.intuit.com"
TOKEN_ENDPOINT = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

DEFAULT_START_DATE = "2024-01-01"
JWT_EXPIRY = 3600  # 1 hour
REQUEST_TIMEOUT = 300  # 5 minutes, HMAC replay window
DATE_FORMAT = "%Y-%m-%d"


@dataclass
class Settings:
    """Runtime settings for one process"""

    environment: str = 'sandbox'
    client_id: str = ''
    client_secret: str = ''
    minor_version: int = 65
    start_date: str = DEFAULT_START_DATE
    page_size: int = 500
    max_pages: int = 10
    max_workers: int = 4
    http_timeout: float = 30.0
    ledger_db: str = 'job_costs.db'
    jwt_secret: str = ''
    api_clients: Dict[str, Any] = field(default_factory=dict)
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    @property
    def api_base(self) -> str:
        if self.environment == 'production':
            return PRODUCTION_API_BASE
        return SANDBOX_API_BASE


def get_default_clients() -> Dict[str, Any]:
    """Default HMAC client configuration for local use"""
    return {
        "demo_client": {
            "api_key": "demo_api_key_12345",
            "api_secret": "demo_secret_67890",
            "name": "Demo Client",
            "permissions": ["read_company", "read_job_costs"]
        },
        "admin_client": {
            "api_key": "admin_api_key_54321",
            "api_secret": "admin_secret_09876",
            "name": "Admin Client",
            "permissions": ["all"]
        }
    }


def setup_security_environment():
    """Install a JWT secret and default clients when none are configured"""
    if not os.environ.get('JWT_SECRET'):
        os.environ['JWT_SECRET'] = secrets.token_urlsafe(32)
        logger.warning("JWT_SECRET not set; generated a process-local secret")

    if not os.environ.get('API_CLIENTS'):
        os.environ['API_CLIENTS'] = json.dumps(get_default_clients())
        logger.warning("API_CLIENTS not set; using default demo clients")


def is_iso_date(value: str) -> bool:
    """True only for a zero-padded YYYY-MM-DD calendar date"""
    try:
        return datetime.strptime(value, DATE_FORMAT).strftime(DATE_FORMAT) == value
    except (TypeError, ValueError):
        return False


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def get_settings() -> Settings:
    """Build settings from the current environment"""
    environment = (os.environ.get('QBO_ENVIRONMENT') or 'sandbox').lower()
    if environment not in ('sandbox', 'production'):
        raise ConfigurationError(f"QBO_ENVIRONMENT must be 'sandbox' or 'production', got {environment!r}")

    try:
        api_clients = json.loads(os.environ.get('API_CLIENTS') or '{}')
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"API_CLIENTS is not valid JSON: {e}")

    timeout_raw = os.environ.get('QBO_REQUEST_TIMEOUT') or '30'
    try:
        http_timeout = float(timeout_raw)
    except ValueError:
        raise ConfigurationError(f"QBO_REQUEST_TIMEOUT must be a number, got {timeout_raw!r}")

    start_date = os.environ.get('JOB_COSTS_START_DATE') or DEFAULT_START_DATE
    if not is_iso_date(start_date):
        raise ConfigurationError(f"JOB_COSTS_START_DATE must be YYYY-MM-DD, got {start_date!r}")

    return Settings(
        environment=environment,
        client_id=os.environ.get('QBO_CLIENT_ID', ''),
        client_secret=os.environ.get('QBO_CLIENT_SECRET', ''),
        minor_version=_int_env('QBO_MINOR_VERSION', 65),
        start_date=start_date,
        page_size=_int_env('QBO_PAGE_SIZE', 500),
        max_pages=_int_env('QBO_MAX_PAGES', 10),
        max_workers=_int_env('QBO_MAX_WORKERS', 4),
        http_timeout=http_timeout,
        ledger_db=os.environ.get('JOB_COSTS_DB') or 'job_costs.db',
        jwt_secret=os.environ.get('JWT_SECRET', ''),
        api_clients=api_clients,
        log_level=os.environ.get('LOG_LEVEL') or 'INFO',
        log_file=os.environ.get('LOG_FILE') or None,
    )
