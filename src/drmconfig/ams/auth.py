"""Azure AD client-credentials authentication for the media service REST API."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx


LOGGER = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/token"
MEDIA_RESOURCE = "https://rest.media.azure.net"

# refresh this many seconds before the token actually expires
REFRESH_MARGIN = 300


class AzureAdTokenProvider:
    """Fetches and caches a bearer token for a service principal."""

    def __init__(
        self,
        tenant: str,
        client_id: str,
        client_secret: str,
        http: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tenant = tenant
        self.client_id = client_id
        self._client_secret = client_secret
        self._http = http or httpx.Client(timeout=30)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def token(self) -> str:
        if self._token is None or self._clock() >= self._expires_at - REFRESH_MARGIN:
            self._refresh()
        return self._token

    def _refresh(self) -> None:
        response = self._http.post(
            TOKEN_URL.format(tenant=self.tenant),
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "resource": MEDIA_RESOURCE,
            },
        )
        response.raise_for_status()
        payload = response.json()
        self._token = payload["access_token"]
        self._expires_at = self._clock() + float(payload.get("expires_in", 3600))
        LOGGER.debug("Obtained Azure AD token for client %s", self.client_id)


class BearerAuth(httpx.Auth):
    """httpx auth flow adding the provider's bearer token to each request."""

    def __init__(self, provider: AzureAdTokenProvider):
        self.provider = provider

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Bearer {self.provider.token()}"
        yield request
