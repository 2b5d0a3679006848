"""
Secure API Endpoints with HMAC + JWT Authentication
Job-cost reconciliation and QuickBooks lookup routes
"""

import logging
from datetime import datetime
from flask import current_app, jsonify, request
from typing import Any, Dict

from auth.hmac_auth import (
    generate_jwt_token, require_hmac_auth, require_jwt_auth, require_permission, AuthError
)
from config.settings import JWT_EXPIRY, is_iso_date
from job_costs.reconcile import NOT_CONNECTED_ERROR, reconcile_job_costs
from qbo_api.auth import QBOAuth
from qbo_api.data_fetcher import QBODataFetcher
from utils.credentials import CredentialManager
from utils.exceptions import EntityNotSupportedError, NotConnectedError, QBOFaultError

logger = logging.getLogger(__name__)

CONNECTION_FAILED_ERROR = 'QuickBooks not connected or token refresh failed'
API_FAILED_ERROR = 'QuickBooks API request failed'
DEFAULT_COMPANY_NAME = 'QuickBooks Company'


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _request_options() -> Dict[str, Any]:
    """Merge query-string and JSON body options; the body wins"""
    options: Dict[str, Any] = dict(request.args.items())
    if request.method == 'POST':
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            options.update(body)
    return options


def _credentials() -> CredentialManager:
    return current_app.config['CREDENTIAL_MANAGER']


def _qbo_auth() -> QBOAuth:
    return QBOAuth(current_app.config['SETTINGS'], credential_manager=_credentials())


def _data_fetcher() -> QBODataFetcher:
    """Query client for the connected company; raises NotConnectedError"""
    token = _qbo_auth().get_valid_token()
    return QBODataFetcher(token, current_app.config['SETTINGS'])


def create_secure_api_routes(app):
    """
    Create secure API routes with authentication
    """

    @app.route('/api/auth/token', methods=['POST'])
    @require_hmac_auth
    def get_access_token(client_info):
        """
        Exchange HMAC authentication for JWT token
        """
        try:
            token = generate_jwt_token(client_info)
        except AuthError as e:
            return jsonify({'error': e.message}), e.status_code

        return jsonify({
            'access_token': token,
            'token_type': 'Bearer',
            'expires_in': JWT_EXPIRY,
            'client_id': client_info['client_id'],
            'client_name': client_info['client_name']
        })

    @app.route('/api/quickbooks/job-transactions', methods=['GET', 'POST'])
    @require_jwt_auth
    @require_permission('read_job_costs')
    def get_job_transactions(client_info):
        """
        Pending (not yet imported) job-cost lines plus per-project totals
        """
        options = _request_options()
        start_date = options.get('startDate') or None
        if start_date and not is_iso_date(str(start_date)):
            return jsonify({'transactions': [], 'error': f'Invalid startDate: {start_date}'})

        payload = reconcile_job_costs(
            current_app.config['SETTINGS'],
            current_app.config['LEDGER'],
            _qbo_auth(),
            start_date=start_date,
            include_unassigned=_parse_bool(options.get('includeUnassigned', False)),
            debug=_parse_bool(options.get('debug', False)),
        )
        logger.info(f"Job transactions for {client_info['client_id']}: {len(payload['transactions'])} pending")
        return jsonify(payload)

    @app.route('/api/quickbooks/accounts', methods=['GET'])
    @require_jwt_auth
    @require_permission('read_company')
    def get_accounts(client_info):
        """
        Active chart of accounts
        """
        try:
            accounts = [
                {
                    'id': str(a.get('Id', '')),
                    'name': a.get('Name') or '',
                    'type': a.get('AccountType') or '',
                    'number': a.get('AcctNum'),
                }
                for a in _data_fetcher().get_active_accounts()
            ]
        except NotConnectedError:
            return jsonify({'accounts': [], 'error': NOT_CONNECTED_ERROR})
        except Exception as e:
            logger.exception(f"Failed to list accounts: {e}")
            return jsonify({'accounts': [], 'error': str(e)})

        return jsonify({'accounts': accounts})

    @app.route('/api/quickbooks/projects', methods=['GET'])
    @require_jwt_auth
    @require_permission('read_company')
    def get_projects(client_info):
        """
        Active QuickBooks Projects (jobs) for linking to internal projects
        """
        try:
            projects = [
                {'id': str(p.get('Id', '')), 'name': p.get('Name') or p.get('DisplayName') or ''}
                for p in _data_fetcher().get_active_projects()
            ]
        except NotConnectedError:
            return jsonify({'projects': [], 'error': NOT_CONNECTED_ERROR})
        except EntityNotSupportedError:
            return jsonify({
                'projects': [],
                'error': 'Could not fetch projects (Project entity may require a different API)',
            })
        except Exception as e:
            logger.exception(f"Failed to list projects: {e}")
            return jsonify({'projects': [], 'error': str(e)})

        return jsonify({'projects': projects})

    @app.route('/api/quickbooks/connection', methods=['GET'])
    @require_jwt_auth
    @require_permission('read_company')
    def test_connection(client_info):
        """
        Live connection check: refreshes the token if needed and reads CompanyInfo
        """
        try:
            company_info = _data_fetcher().get_company_info()
        except NotConnectedError:
            return jsonify({'connected': False, 'error': CONNECTION_FAILED_ERROR, 'details': None})
        except QBOFaultError as e:
            return jsonify({
                'connected': False,
                'error': API_FAILED_ERROR,
                'details': {'status': e.status_code, 'code': e.code, 'message': e.text},
            })
        except Exception as e:
            logger.exception(f"Connection check failed: {e}")
            return jsonify({'connected': False, 'error': str(e), 'details': None})

        if company_info is None:
            return jsonify({'connected': False, 'error': API_FAILED_ERROR, 'details': None})

        if company_info:
            _credentials().store_company_info(company_info)
        company_name = company_info.get('CompanyName') or DEFAULT_COMPANY_NAME
        logger.info(f"Connection check for {client_info['client_id']}: connected to {company_name}")
        return jsonify({'connected': True, 'company': company_name})

    @app.route('/api/quickbooks/status', methods=['GET'])
    @require_jwt_auth
    def get_status(client_info):
        """
        Stored connection state; makes no QuickBooks request
        """
        credentials = _credentials()
        connected = credentials.has_tokens()
        company_info = credentials.get_company_info() if connected else None

        return jsonify({
            'connected': connected,
            'realmId': credentials.get_token('realm_id') if connected else None,
            'company': (company_info or {}).get('CompanyName'),
            'client_id': client_info['client_id'],
            'permissions': client_info.get('permissions', []),
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """
        Health check endpoint (no authentication required)
        """
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'version': current_app.config.get('VERSION', '1.0.0')
        })

    logger.info("Secure API routes created successfully")
