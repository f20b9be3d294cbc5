"""Refresh-token grants against the Google and Microsoft identity platforms."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import httpx

from deal_pulse.config import OAuthSettings
from deal_pulse.errors import CredentialRefreshError
from deal_pulse.models import SourceType
from deal_pulse.storage.common import utc_now

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
MICROSOFT_SCOPES = (
    "offline_access https://graph.microsoft.com/Files.Read.All "
    "https://graph.microsoft.com/Sites.Read.All https://graph.microsoft.com/Mail.Read"
)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass(slots=True)
class RefreshedToken:
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None


class TokenRefresher(Protocol):
    """Exchanges a refresh token for a new access token."""

    def refresh(self, refresh_token: str) -> RefreshedToken: ...


class OAuthTokenRefresher:
    """Standard ``grant_type=refresh_token`` POST to a token endpoint."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        provider: str,
        token_url: str,
        client_id: str | None,
        client_secret: str | None,
        scope: str | None = None,
        http: httpx.Client | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.provider = provider
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.http = http or httpx.Client(timeout=httpx.Timeout(30.0, connect=10.0))
        self.clock = clock

    def refresh(self, refresh_token: str) -> RefreshedToken:
        if not self.client_id or not self.client_secret:
            raise CredentialRefreshError(f"{self.provider} OAuth client is not configured")
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        if self.scope:
            form["scope"] = self.scope
        try:
            response = self.http.post(self.token_url, data=form)
        except httpx.HTTPError as error:
            raise CredentialRefreshError(
                f"{self.provider} token refresh request failed: {error}",
            ) from error
        if not response.is_success:
            raise CredentialRefreshError(
                f"{self.provider} token refresh rejected (HTTP {response.status_code}): "
                f"{_error_code(response)}",
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise CredentialRefreshError(
                f"{self.provider} token endpoint returned invalid JSON",
            ) from error
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise CredentialRefreshError(
                f"{self.provider} token refresh failed: no access token returned",
            )
        expires_in = payload.get("expires_in")
        lifetime = (
            timedelta(seconds=int(expires_in)) if expires_in else DEFAULT_TOKEN_LIFETIME
        )
        logger.info("Refreshed %s access token", self.provider)
        return RefreshedToken(
            access_token=str(access_token),
            expires_at=self.clock() + lifetime,
            refresh_token=payload.get("refresh_token"),
        )


def _error_code(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload)
    return str(payload)


def build_token_refreshers(
    settings: OAuthSettings,
    *,
    http: httpx.Client | None = None,
) -> dict[SourceType, TokenRefresher]:
    """Google refresher for Drive and Gmail, Microsoft for SharePoint and Outlook."""

    google = OAuthTokenRefresher(
        provider="google",
        token_url=GOOGLE_TOKEN_URL,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        http=http,
    )
    microsoft = OAuthTokenRefresher(
        provider="microsoft",
        token_url=MICROSOFT_TOKEN_URL.format(tenant=settings.microsoft_tenant),
        client_id=settings.microsoft_client_id,
        client_secret=settings.microsoft_client_secret,
        scope=MICROSOFT_SCOPES,
        http=http,
    )
    return {
        SourceType.GDRIVE: google,
        SourceType.GMAIL: google,
        SourceType.SHAREPOINT: microsoft,
        SourceType.OUTLOOK: microsoft,
    }
