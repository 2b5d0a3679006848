"""
QuickBooks Online token management
Returns a usable bearer token, refreshing it shortly before expiry
"""

import requests
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from config.settings import Settings, TOKEN_ENDPOINT
from utils.credentials import CredentialManager
from utils.exceptions import NotConnectedError

logger = logging.getLogger(__name__)

# Treat a token as expired this long before its recorded expiry
EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class QBOToken:
    """Bearer token plus the company (realm) it is valid for"""

    access_token: str
    realm_id: str


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Unparseable token expiry {value!r}; treating token as expired")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class QBOAuth:
    """Handles token validity checks and refresh against QuickBooks OAuth 2.0"""

    def __init__(self, settings: Settings, credential_manager: Optional[CredentialManager] = None,
                 session: Optional[requests.Session] = None):
        self.settings = settings
        self.credential_manager = credential_manager or CredentialManager()
        self.session = session or requests.Session()

    def get_valid_token(self, now: Optional[datetime] = None) -> QBOToken:
        """
        Return a valid token, refreshing synchronously when it is near expiry

        Raises:
            NotConnectedError: no token material on file or refresh failed
        """
        now = now or datetime.now(timezone.utc)
        tokens = self.credential_manager.get_tokens()

        if not tokens or not tokens.get('access_token') or not tokens.get('realm_id'):
            raise NotConnectedError("QuickBooks not connected")

        expires_at = _parse_expiry(tokens.get('expires_at'))
        if expires_at is not None and expires_at > now + EXPIRY_BUFFER:
            return QBOToken(tokens['access_token'], tokens['realm_id'])

        logger.info("Access token expired or near expiry, refreshing")
        return self.refresh_access_token(tokens, now)

    def refresh_access_token(self, tokens: dict, now: datetime) -> QBOToken:
        """Exchange the stored refresh token for a new access token"""
        refresh_token = tokens.get('refresh_token')
        if not refresh_token:
            raise NotConnectedError("No refresh token available")
        if not self.settings.client_id or not self.settings.client_secret:
            raise NotConnectedError("QuickBooks client credentials not configured")

        data = {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token
        }
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/x-www-form-urlencoded'
        }

        try:
            response = self.session.post(
                TOKEN_ENDPOINT,
                data=data,
                headers=headers,
                auth=(self.settings.client_id, self.settings.client_secret),
                timeout=self.settings.http_timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Token refresh request failed: {e}")
            raise NotConnectedError("Token refresh failed") from e

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.status_code}")
            raise NotConnectedError("Token refresh failed")

        try:
            token_data = response.json()
        except ValueError as e:
            logger.error(f"Token refresh returned a non-JSON body: {response.text[:200]!r}")
            raise NotConnectedError("Token refresh returned an unreadable response") from e

        if not isinstance(token_data, dict) or not token_data.get('access_token'):
            raise NotConnectedError("Token refresh returned no access token")
        access_token = token_data['access_token']

        try:
            expires_in = int(token_data.get('expires_in') or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError) as e:
            logger.error(f"Token refresh returned invalid expires_in {token_data.get('expires_in')!r}")
            raise NotConnectedError("Token refresh returned an invalid expiry") from e

        self.credential_manager.update_tokens(
            access_token=access_token,
            refresh_token=token_data.get('refresh_token') or refresh_token,
            expires_at=(now + timedelta(seconds=expires_in)).isoformat(),
        )

        logger.info("Access token refreshed successfully")
        return QBOToken(access_token, tokens['realm_id'])
