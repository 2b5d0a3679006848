"""
QBO Job Costs - reconciliation service
Pulls vendor costs from QuickBooks Online and lists the job-cost lines
not yet imported into the internal ledger.
"""

import logging
import os
from typing import Optional

from flask import Flask

from api.secure_endpoints import create_secure_api_routes
from config.settings import Settings, get_settings, setup_security_environment
from job_costs.ledger import SQLiteLedger
from utils.credentials import CredentialManager
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

__version__ = '1.0.0'


def create_app(settings: Optional[Settings] = None,
               ledger: Optional[SQLiteLedger] = None,
               credential_manager: Optional[CredentialManager] = None) -> Flask:
    """Build the Flask application; arguments override environment-derived defaults"""
    if settings is None:
        setup_security_environment()
        settings = get_settings()

    app = Flask(__name__)
    app.config['SETTINGS'] = settings
    app.config['VERSION'] = __version__
    app.config['CREDENTIAL_MANAGER'] = credential_manager or CredentialManager()

    if ledger is None:
        ledger = SQLiteLedger(settings.ledger_db)
        ledger.ensure_schema()
    app.config['LEDGER'] = ledger

    @app.after_request
    def add_security_headers(response):
        """Add security headers"""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Cache-Control'] = 'no-store'
        return response

    create_secure_api_routes(app)
    return app


def main():
    setup_security_environment()
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)
    app = create_app(settings)

    port = int(os.environ.get('PORT', 8050))
    debug = os.environ.get('FLASK_ENV') == 'development'
    logger.info(f"Starting QBO job-cost service on port {port} ({app.config['SETTINGS'].environment})")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    main()
