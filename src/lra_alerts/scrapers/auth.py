"""
ArcGIS Authentication Strategies

Pluggable credentials for the ArcGIS client: none, static token, or OAuth
client-credentials with a per-client token cache.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from config.settings import Settings
from src.lra_alerts.errors import AuthenticationError
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

MIN_TOKEN_LIFETIME_SECONDS = 30
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass
class TokenCache:
    """Cached access token and its absolute expiry (epoch seconds)."""

    token: Optional[str] = None
    expires_at: float = 0.0

    def is_fresh(self, now: float, margin: float) -> bool:
        return self.token is not None and self.expires_at - margin > now


class NoAuth:
    """Anonymous access to a public layer."""

    supports_refresh = False

    def get_token(self) -> Optional[str]:
        return None

    def invalidate(self, stale_token: Optional[str]) -> Optional[str]:
        return None


class StaticTokenAuth:
    """Pre-shared token from configuration. Cannot be refreshed."""

    supports_refresh = False

    def __init__(self, token: Optional[str]):
        self.token = token

    def get_token(self) -> Optional[str]:
        return self.token

    def invalidate(self, stale_token: Optional[str]) -> Optional[str]:
        return self.token


class OAuthClientCredentialsAuth:
    """
    OAuth2 client-credentials flow against an ArcGIS token endpoint.

    The token is cached on the instance and refreshed only when it is within
    `refresh_margin` seconds of expiry. Refreshes are single-flight: threads
    that find a stale token wait on the lock and reuse the token fetched by
    whichever thread refreshed first.
    """

    supports_refresh = True

    def __init__(
        self,
        token_url: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_margin: float = 60,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_margin = refresh_margin
        self.session = session or requests.Session()
        self.timeout = timeout
        self.clock = clock
        self.cache = TokenCache()
        self._lock = threading.Lock()

    def get_token(self) -> str:
        """Return a cached token, refreshing it when close to expiry."""
        if self.cache.is_fresh(self.clock(), self.refresh_margin):
            return self.cache.token

        with self._lock:
            if self.cache.is_fresh(self.clock(), self.refresh_margin):
                return self.cache.token
            return self._refresh()

    def invalidate(self, stale_token: Optional[str]) -> str:
        """
        Force a refresh after the server rejected `stale_token`.

        If another thread already replaced that token, its replacement is
        returned without a second round trip.
        """
        with self._lock:
            if self.cache.token is not None and self.cache.token != stale_token:
                return self.cache.token
            logger.info("arcgis_token_forced_refresh")
            return self._refresh()

    def _refresh(self) -> str:
        if not (self.token_url and self.client_id and self.client_secret):
            raise AuthenticationError("Missing ArcGIS OAuth configuration (token url, client id, client secret)")

        now = self.clock()
        try:
            response = self.session.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "f": "json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AuthenticationError(f"OAuth token request failed: {e}") from e

        if not response.ok:
            raise AuthenticationError(
                f"OAuth token HTTP {response.status_code}: {response.text[:400]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError(f"OAuth token non-JSON: {response.text[:400]}") from e

        token = payload.get("access_token") or payload.get("accessToken")
        if not token:
            raise AuthenticationError(f"OAuth response missing access_token: {str(payload)[:400]}")

        try:
            expires_in = float(payload.get("expires_in", payload.get("expiresIn", DEFAULT_TOKEN_LIFETIME_SECONDS)))
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS

        self.cache = TokenCache(
            token=token,
            expires_at=now + max(MIN_TOKEN_LIFETIME_SECONDS, expires_in),
        )
        logger.info("arcgis_token_refreshed", expires_in=expires_in)
        return token


def build_auth_strategy(config: Settings, session: Optional[requests.Session] = None):
    """
    Build the auth strategy selected by `arcgis_auth_mode`.

    Args:
        config: Application settings
        session: Optional HTTP session shared with the ArcGIS client

    Returns:
        NoAuth, StaticTokenAuth or OAuthClientCredentialsAuth
    """
    mode = config.arcgis_auth_mode
    logger.info("arcgis_auth_mode_selected", mode=mode)
    if mode == "none":
        return NoAuth()
    if mode == "static":
        return StaticTokenAuth(config.arcgis_token)
    return OAuthClientCredentialsAuth(
        token_url=config.arcgis_oauth_token_url,
        client_id=config.arcgis_oauth_client_id,
        client_secret=config.arcgis_oauth_client_secret,
        refresh_margin=config.arcgis_token_refresh_margin_seconds,
        session=session,
    )
