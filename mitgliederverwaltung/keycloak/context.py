"""
Keycloak Admin Context

Holds everything the admin clients share for the lifetime of the process:
configuration, one pooled ``httpx.AsyncClient``, the service-account token
cache and the group-name cache.

Usage:
    async with KeycloakContext(KeycloakConfig.from_settings(settings)) as ctx:
        users = KeycloakUserClient(ctx)
        result = await users.create_user("anna@example.org")
"""

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib.parse import quote

import httpx

from mitgliederverwaltung.core.config import Settings, settings
from mitgliederverwaltung.core.exceptions import (
    ConfigIncomplete,
    MitgliederError,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before it expires
TOKEN_EXPIRY_MARGIN = 30.0


@dataclass(frozen=True)
class KeycloakConfig:
    """Connection settings for the Keycloak admin API."""

    base_url: str = ""
    realm: str = ""
    client_id: str = ""
    client_secret: str = ""
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeycloakConfig":
        return cls(
            base_url=settings.keycloak_base_url,
            realm=settings.keycloak_realm,
            client_id=settings.keycloak_client_id,
            client_secret=settings.keycloak_client_secret,
            timeout=settings.keycloak_request_timeout,
        )

    @property
    def complete(self) -> bool:
        return bool(self.base_url and self.realm and self.client_id and self.client_secret)

    @property
    def realm_url(self) -> str:
        return f"{self.base_url}/realms/{quote(self.realm, safe='')}"

    @property
    def token_url(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/token"

    @property
    def certs_url(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/certs"

    @property
    def admin_url(self) -> str:
        return f"{self.base_url}/admin/realms/{quote(self.realm, safe='')}"


class KeycloakContext:
    """
    Shared state for Keycloak admin calls.

    The caches are plain dicts without locking; they are only safe because
    all callers run on one event loop.
    """

    def __init__(
        self,
        config: KeycloakConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._token: str | None = None
        self._token_expires_at: float = 0.0
        self._jwks: dict[str, Any] | None = None

        # name -> group id, never invalidated
        self.group_cache: dict[str, str] = {}

    async def __aenter__(self) -> "KeycloakContext":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def http(self) -> httpx.AsyncClient:
        """Get the HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def unavailable_error(self) -> MitgliederError:
        """Error describing why no admin token could be obtained."""
        if not self.config.complete:
            return ConfigIncomplete("Keycloak Konfiguration unvollständig")
        return UpstreamUnavailable("Keycloak Token nicht verfügbar")

    async def get_admin_token(self) -> str | None:
        """
        Get a service-account access token via the client-credentials grant.

        Returns None when the configuration is incomplete (no request is
        made) or when the token endpoint fails for any reason.
        """
        if not self.config.complete:
            logger.debug(
                "Keycloak ENV unvollständig",
                extra={
                    "base_url": self.config.base_url,
                    "realm": self.config.realm,
                    "client_id_set": bool(self.config.client_id),
                    "client_secret_set": bool(self.config.client_secret),
                },
            )
            return None

        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            resp = await self.http.post(
                self.config.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            logger.debug(f"Token request failed: {e!r}")
            return None

        if not resp.is_success:
            logger.debug(f"Token request returned {resp.status_code}")
            return None

        try:
            payload = resp.json()
        except ValueError:
            logger.debug("Token response is not JSON")
            return None

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            return None

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > TOKEN_EXPIRY_MARGIN:
            self._token = token
            self._token_expires_at = time.monotonic() + expires_in - TOKEN_EXPIRY_MARGIN
        else:
            self._token = None
            self._token_expires_at = 0.0
        return token

    async def admin_request(
        self,
        method: str,
        path: str,
        token: str,
        **kwargs: Any,
    ) -> httpx.Response | None:
        """
        Send a request to the admin API.

        Returns None on transport errors and timeouts; HTTP error statuses
        are returned to the caller unchanged.
        """
        headers = {**kwargs.pop("headers", {}), "Authorization": f"Bearer {token}"}
        try:
            resp = await self.http.request(
                method,
                f"{self.config.admin_url}{path}",
                headers=headers,
                timeout=self.config.timeout,
                **kwargs,
            )
        except httpx.HTTPError as e:
            logger.debug(f"{method} {path} failed: {e!r}")
            return None
        if not resp.is_success:
            logger.debug(f"{method} {path} returned {resp.status_code}")
        return resp

    async def get_jwks(self) -> dict[str, Any] | None:
        """Fetch (once) the realm's signing keys for bearer-token verification."""
        if self._jwks is not None:
            return self._jwks
        if not (self.config.base_url and self.config.realm):
            return None
        try:
            resp = await self.http.get(self.config.certs_url, timeout=self.config.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"JWKS request failed: {e!r}")
            return None
        if not resp.is_success:
            logger.warning(f"JWKS request returned {resp.status_code}")
            return None
        try:
            payload = resp.json()
        except ValueError:
            logger.warning("JWKS response is not JSON")
            return None
        if not isinstance(payload, dict):
            logger.warning("JWKS response is not an object")
            return None
        self._jwks = payload
        return self._jwks


@lru_cache
def get_keycloak() -> KeycloakContext:
    """Get the process-wide Keycloak context."""
    return KeycloakContext(KeycloakConfig.from_settings(settings))
