"""
Tests for ArcGIS authentication strategies
"""
import threading

import pytest
import requests
from unittest.mock import MagicMock

from config.settings import Settings
from src.lra_alerts.errors import AuthenticationError
from src.lra_alerts.scrapers.auth import (
    NoAuth,
    OAuthClientCredentialsAuth,
    StaticTokenAuth,
    build_auth_strategy,
)


def _token_response(token="tok-1", expires_in=3600, ok=True, status_code=200):
    response = MagicMock()
    response.ok = ok
    response.status_code = status_code
    response.text = "error"
    response.json.return_value = {"access_token": token, "expires_in": expires_in}
    return response


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _oauth(session, clock=None, margin=60):
    return OAuthClientCredentialsAuth(
        token_url="https://www.arcgis.com/sharing/rest/oauth2/token",
        client_id="client",
        client_secret="secret",
        refresh_margin=margin,
        session=session,
        clock=clock or FakeClock(),
    )


class TestOAuthClientCredentialsAuth:
    """Tests for the OAuth token cache."""

    def test_token_is_cached_until_margin(self):
        """No refresh while the token is outside the safety margin."""
        session = MagicMock()
        session.post.return_value = _token_response("tok-1", expires_in=3600)
        clock = FakeClock(1000.0)
        auth = _oauth(session, clock)

        assert auth.get_token() == "tok-1"
        clock.now += 3000
        assert auth.get_token() == "tok-1"
        assert session.post.call_count == 1

    def test_token_refreshes_inside_margin(self):
        session = MagicMock()
        session.post.side_effect = [_token_response("tok-1"), _token_response("tok-2")]
        clock = FakeClock(1000.0)
        auth = _oauth(session, clock)

        auth.get_token()
        clock.now += 3600 - 30
        assert auth.get_token() == "tok-2"
        assert session.post.call_count == 2

    def test_refresh_posts_client_credentials(self):
        session = MagicMock()
        session.post.return_value = _token_response()
        auth = _oauth(session)

        auth.get_token()

        data = session.post.call_args[1]["data"]
        assert data["grant_type"] == "client_credentials"
        assert data["client_id"] == "client"
        assert data["client_secret"] == "secret"
        assert data["f"] == "json"

    def test_camel_case_response_keys(self):
        session = MagicMock()
        response = _token_response()
        response.json.return_value = {"accessToken": "camel", "expiresIn": 120}
        session.post.return_value = response

        assert _oauth(session).get_token() == "camel"

    def test_invalidate_forces_refresh(self):
        session = MagicMock()
        session.post.side_effect = [_token_response("tok-1"), _token_response("tok-2")]
        auth = _oauth(session)

        stale = auth.get_token()
        assert auth.invalidate(stale) == "tok-2"
        assert session.post.call_count == 2

    def test_invalidate_reuses_already_replaced_token(self):
        """A second thread reporting the same stale token does not refresh again."""
        session = MagicMock()
        session.post.side_effect = [_token_response("tok-1"), _token_response("tok-2")]
        auth = _oauth(session)

        stale = auth.get_token()
        auth.invalidate(stale)
        assert auth.invalidate(stale) == "tok-2"
        assert session.post.call_count == 2

    def test_concurrent_callers_share_one_refresh(self):
        session = MagicMock()
        session.post.return_value = _token_response("tok-1")
        auth = _oauth(session)
        results = []

        threads = [threading.Thread(target=lambda: results.append(auth.get_token())) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["tok-1"] * 8
        assert session.post.call_count == 1

    def test_http_error_raises_authentication_error(self):
        session = MagicMock()
        session.post.return_value = _token_response(ok=False, status_code=400)

        with pytest.raises(AuthenticationError):
            _oauth(session).get_token()

    def test_transport_error_raises_authentication_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(AuthenticationError):
            _oauth(session).get_token()

    def test_missing_configuration(self):
        auth = OAuthClientCredentialsAuth(token_url=None, client_id=None, client_secret=None, session=MagicMock())

        with pytest.raises(AuthenticationError):
            auth.get_token()


class TestBuildAuthStrategy:
    """Tests for auth strategy selection."""

    def test_none_mode(self):
        auth = build_auth_strategy(Settings(arcgis_auth_mode="none"))
        assert isinstance(auth, NoAuth)
        assert auth.get_token() is None

    def test_static_mode(self):
        auth = build_auth_strategy(Settings(arcgis_auth_mode="static", arcgis_token="abc"))
        assert isinstance(auth, StaticTokenAuth)
        assert auth.get_token() == "abc"
        assert not auth.supports_refresh

    def test_unknown_mode_falls_back_to_oauth(self):
        auth = build_auth_strategy(Settings(arcgis_auth_mode="kerberos"))
        assert isinstance(auth, OAuthClientCredentialsAuth)
