"""
QuickBooks token storage using keyring
"""

import keyring
from keyring.errors import PasswordDeleteError
import json
import logging
from typing import Dict, Optional, Any

logger = logging.getLogger(__name__)

SERVICE_NAME = "qbo_job_costs"


class CredentialManager:
    """Manages secure storage of QuickBooks OAuth tokens using keyring"""

    def __init__(self, profile: str = "default"):
        self.service_name = SERVICE_NAME
        self.tokens_key = f"qbo_tokens:{profile}"
        self.company_key = f"company_info:{profile}"

    def store_tokens(self, access_token: str, refresh_token: str, realm_id: str,
                     expires_at: Optional[str] = None) -> bool:
        """Store OAuth tokens, realm ID and ISO-8601 expiry"""
        try:
            tokens = {
                'access_token': access_token,
                'refresh_token': refresh_token,
                'realm_id': realm_id,
                'expires_at': expires_at,
            }
            keyring.set_password(self.service_name, self.tokens_key, json.dumps(tokens))
            logger.info("OAuth tokens stored successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to store tokens: {e}")
            return False

    def update_tokens(self, **changes: Any) -> bool:
        """Merge changed fields into the stored token set"""
        tokens = self.get_tokens()
        if tokens is None:
            logger.error("Cannot update tokens: none stored")
            return False

        tokens.update(changes)
        return self.store_tokens(
            access_token=tokens.get('access_token', ''),
            refresh_token=tokens.get('refresh_token', ''),
            realm_id=tokens.get('realm_id', ''),
            expires_at=tokens.get('expires_at'),
        )

    def get_tokens(self) -> Optional[Dict[str, Any]]:
        """Retrieve all stored tokens"""
        try:
            tokens_json = keyring.get_password(self.service_name, self.tokens_key)
            if tokens_json:
                return json.loads(tokens_json)
            return None

        except Exception as e:
            logger.error(f"Failed to retrieve tokens: {e}")
            return None

    def get_token(self, token_name: str) -> Optional[str]:
        """Retrieve an individual token field"""
        tokens = self.get_tokens()
        if tokens:
            return tokens.get(token_name)
        return None

    def has_tokens(self) -> bool:
        """Check if an access token and realm ID are stored"""
        tokens = self.get_tokens()
        return bool(tokens and tokens.get('access_token') and tokens.get('realm_id'))

    def store_company_info(self, company_info: Dict[str, Any]) -> bool:
        """Store company information"""
        try:
            keyring.set_password(self.service_name, self.company_key, json.dumps(company_info))
            logger.info("Company info stored successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to store company info: {e}")
            return False

    def get_company_info(self) -> Optional[Dict[str, Any]]:
        """Retrieve company information"""
        try:
            company_json = keyring.get_password(self.service_name, self.company_key)
            if company_json:
                return json.loads(company_json)
            return None

        except Exception as e:
            logger.error(f"Failed to retrieve company info: {e}")
            return None

    def clear_tokens(self) -> bool:
        """Clear stored tokens and company info"""
        for key in (self.tokens_key, self.company_key):
            try:
                keyring.delete_password(self.service_name, key)
            except PasswordDeleteError:
                logger.debug(f"Nothing stored under {key}")

        logger.info("All tokens cleared successfully")
        return True
