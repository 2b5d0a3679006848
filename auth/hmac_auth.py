"""
Caller authentication for the job-cost API

API clients sign a token request with their shared secret (HMAC-SHA256)
and then present the issued JWT as a Bearer token on every other route.
"""

import hmac
import hashlib
import time
import jwt
import logging
from functools import wraps
from flask import current_app, request, jsonify
from typing import Dict, Any, Optional, Tuple

from config.settings import JWT_EXPIRY, REQUEST_TIMEOUT, Settings

logger = logging.getLogger(__name__)

JWT_ISSUER = 'qbo-job-costs'
JWT_ALGORITHM = 'HS256'
ALL_PERMISSIONS = 'all'


class AuthError(Exception):
    """Caller authentication or authorization failure"""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _settings() -> Settings:
    return current_app.config['SETTINGS']


def _jwt_secret() -> str:
    secret = _settings().jwt_secret
    if not secret:
        logger.error("No JWT secret configured; refusing to issue or accept tokens")
        raise AuthError('Server configuration error', status_code=500)
    return secret


def sign_request(api_secret: str, method: str, path: str, timestamp: str, body: str = '') -> str:
    """HMAC-SHA256 hex digest of "METHOD:path:timestamp:body" """
    message = f"{method}:{path}:{timestamp}:{body}"
    return hmac.new(api_secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def _check_timestamp(timestamp: str, now: Optional[float] = None) -> None:
    try:
        sent_at = float(timestamp)
    except ValueError:
        logger.warning(f"Rejected request with non-numeric timestamp {timestamp!r}")
        raise AuthError('Invalid timestamp')

    now = time.time() if now is None else now
    if abs(now - sent_at) > REQUEST_TIMEOUT:
        logger.warning(f"Rejected request outside the {REQUEST_TIMEOUT}s replay window")
        raise AuthError('Request expired. Check system clock.')


def _find_client(api_key: str) -> Tuple[str, Dict[str, Any]]:
    for client_id, client in _settings().api_clients.items():
        if client.get('api_key') == api_key:
            return client_id, client
    logger.warning("Rejected request with unknown API key")
    raise AuthError('Invalid API key')


def verify_hmac_signature() -> Dict[str, Any]:
    """
    Authenticate the current request from its signature headers.

    The request must carry X-API-Key, X-Signature and X-Timestamp (Unix
    seconds, within the replay window). The signature covers the method,
    path, timestamp and raw body.

    Returns:
        dict: client_id, client_name and permissions of the caller
    Raises:
        AuthError: on any missing, stale or mismatched value
    """
    api_key = request.headers.get('X-API-Key')
    signature = request.headers.get('X-Signature')
    timestamp = request.headers.get('X-Timestamp')
    if not (api_key and signature and timestamp):
        logger.warning("Rejected request without signature headers")
        raise AuthError('Missing authentication headers')

    _check_timestamp(timestamp)
    client_id, client = _find_client(api_key)

    expected = sign_request(
        client['api_secret'], request.method, request.path, timestamp,
        request.get_data().decode()
    )
    if not hmac.compare_digest(signature, expected):
        logger.warning(f"Signature mismatch for client {client_id}")
        raise AuthError('Invalid signature')

    logger.info(f"Client {client_id} authenticated by signature")
    return {
        'client_id': client_id,
        'client_name': client.get('name', 'Unknown'),
        'permissions': list(client.get('permissions', [])),
    }


def generate_jwt_token(client_info: Dict[str, Any], now: Optional[int] = None) -> str:
    """Issue a Bearer token carrying the caller's id, name and permissions"""
    issued_at = int(time.time()) if now is None else now
    claims = {
        'client_id': client_info['client_id'],
        'client_name': client_info['client_name'],
        'permissions': client_info['permissions'],
        'iat': issued_at,
        'exp': issued_at + JWT_EXPIRY,
        'iss': JWT_ISSUER,
    }
    token = jwt.encode(claims, _jwt_secret(), algorithm=JWT_ALGORITHM)
    logger.info(f"Issued token to client {client_info['client_id']}")
    return token


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """Decode a Bearer token; raises AuthError when expired, forged or foreign"""
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM], issuer=JWT_ISSUER)
    except jwt.ExpiredSignatureError:
        logger.warning("Rejected expired token")
        raise AuthError('Token expired')
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid token: {e}")
        raise AuthError('Invalid token')


def _bearer_token() -> str:
    header = request.headers.get('Authorization') or ''
    scheme, _, token = header.partition(' ')
    if scheme != 'Bearer' or not token:
        raise AuthError('Missing or invalid Authorization header')
    return token


def _auth_failure(error: AuthError):
    return jsonify({'error': error.message}), error.status_code


def require_hmac_auth(f):
    """Route decorator: signed request required; passes client_info to the view"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            client_info = verify_hmac_signature()
        except AuthError as e:
            return _auth_failure(e)
        return f(*args, client_info=client_info, **kwargs)

    return wrapper


def require_jwt_auth(f):
    """Route decorator: Bearer token required; passes its claims as client_info"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            claims = verify_jwt_token(_bearer_token())
        except AuthError as e:
            return _auth_failure(e)
        return f(*args, client_info=claims, **kwargs)

    return wrapper


def require_permission(permission: str):
    """Route decorator, applied below require_jwt_auth; 'all' grants everything"""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, client_info=None, **kwargs):
            if not client_info:
                return _auth_failure(AuthError('Authentication required'))

            granted = client_info.get('permissions', [])
            if permission not in granted and ALL_PERMISSIONS not in granted:
                logger.warning(f"Client {client_info.get('client_id')} lacks {permission}")
                return _auth_failure(AuthError(f'Permission denied: {permission} required', 403))

            return f(*args, client_info=client_info, **kwargs)
        return wrapper
    return decorator
