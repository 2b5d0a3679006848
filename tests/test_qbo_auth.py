"""Tests for token validity checks and refresh."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import pytest
import responses

from config.settings import TOKEN_ENDPOINT
from qbo_api.auth import QBOAuth, QBOToken
from utils.exceptions import NotConnectedError
from tests.conftest import REALM_ID

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def store(credential_manager, expires_at, refresh_token="refresh-456"):
    credential_manager.store_tokens("access-old", refresh_token, REALM_ID, expires_at)


class TestGetValidToken:

    def test_not_connected(self, settings, credential_manager):
        with pytest.raises(NotConnectedError):
            QBOAuth(settings, credential_manager).get_valid_token(NOW)

    def test_token_outside_buffer_is_used(self, settings, credential_manager):
        store(credential_manager, (NOW + timedelta(minutes=6)).isoformat())
        with responses.RequestsMock():
            token = QBOAuth(settings, credential_manager).get_valid_token(NOW)
        assert token == QBOToken("access-old", REALM_ID)

    def test_token_inside_buffer_is_refreshed(self, settings, credential_manager):
        store(credential_manager, (NOW + timedelta(minutes=4)).isoformat())

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, TOKEN_ENDPOINT, json={
                "access_token": "access-new", "refresh_token": "refresh-new", "expires_in": 3600,
            })
            token = QBOAuth(settings, credential_manager).get_valid_token(NOW)
            body = parse_qs(rsps.calls[0].request.body)

        assert token == QBOToken("access-new", REALM_ID)
        assert body == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-456"]}
        stored = credential_manager.get_tokens()
        assert stored["access_token"] == "access-new"
        assert stored["refresh_token"] == "refresh-new"
        assert stored["expires_at"] == (NOW + timedelta(hours=1)).isoformat()

    def test_refresh_keeps_old_refresh_token_and_default_expiry(self, settings, credential_manager):
        store(credential_manager, (NOW - timedelta(minutes=1)).isoformat())

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, TOKEN_ENDPOINT, json={"access_token": "access-new"})
            QBOAuth(settings, credential_manager).get_valid_token(NOW)

        stored = credential_manager.get_tokens()
        assert stored["refresh_token"] == "refresh-456"
        assert stored["expires_at"] == (NOW + timedelta(seconds=3600)).isoformat()

    def test_missing_expiry_forces_refresh(self, settings, credential_manager):
        store(credential_manager, None)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, TOKEN_ENDPOINT, json={"access_token": "access-new"})
            token = QBOAuth(settings, credential_manager).get_valid_token(NOW)

        assert token.access_token == "access-new"

    def test_refresh_rejected(self, settings, credential_manager):
        store(credential_manager, (NOW - timedelta(hours=1)).isoformat())

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, TOKEN_ENDPOINT, status=400, json={"error": "invalid_grant"})
            with pytest.raises(NotConnectedError):
                QBOAuth(settings, credential_manager).get_valid_token(NOW)

        assert credential_manager.get_tokens()["access_token"] == "access-old"

    def test_no_refresh_token(self, settings, credential_manager):
        store(credential_manager, None, refresh_token="")
        with pytest.raises(NotConnectedError):
            QBOAuth(settings, credential_manager).get_valid_token(NOW)

    def test_missing_client_credentials(self, settings, credential_manager):
        settings.client_secret = ""
        store(credential_manager, None)
        with pytest.raises(NotConnectedError):
            QBOAuth(settings, credential_manager).get_valid_token(NOW)

    def test_non_json_refresh_body(self, settings, credential_manager):
        store(credential_manager, (NOW - timedelta(minutes=1)).isoformat())

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, TOKEN_ENDPOINT, status=200, body="<html>gateway</html>")
            with pytest.raises(NotConnectedError):
                QBOAuth(settings, credential_manager).get_valid_token(NOW)

        assert credential_manager.get_tokens()["access_token"] == "access-old"

    def test_invalid_expires_in(self, settings, credential_manager):
        store(credential_manager, (NOW - timedelta(minutes=1)).isoformat())

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, TOKEN_ENDPOINT, json={"access_token": "access-new", "expires_in": "soon"})
            with pytest.raises(NotConnectedError):
                QBOAuth(settings, credential_manager).get_valid_token(NOW)

        assert credential_manager.get_tokens()["access_token"] == "access-old"
