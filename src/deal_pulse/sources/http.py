"""Bearer-authenticated JSON client shared by provider adapters."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from deal_pulse.errors import CredentialRefreshError, NonRetryableSourceError, TemporarySourceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
HTTP_UNAUTHORIZED = 401
RETRYABLE_HTTP_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class SourceHttpClient:
    """httpx wrapper that maps provider failures onto source errors."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def get_json(
        self,
        url: str,
        *,
        access_token: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = self._get(url, access_token=access_token, params=params)
        try:
            payload = response.json()
        except ValueError as error:
            raise NonRetryableSourceError(
                f"Invalid JSON from {url}",
                code="invalid_json",
                status_code=response.status_code,
            ) from error
        if not isinstance(payload, dict):
            raise NonRetryableSourceError(
                f"Unexpected JSON payload from {url}",
                code="invalid_json",
                status_code=response.status_code,
            )
        return payload

    def get_text(
        self,
        url: str,
        *,
        access_token: str,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        return self._get(url, access_token=access_token, params=params).text

    def _get(
        self,
        url: str,
        *,
        access_token: str,
        params: Mapping[str, Any] | None,
    ) -> httpx.Response:
        try:
            response = self._client.get(
                url,
                params=dict(params or {}),
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as error:
            logger.warning("Timeout fetching %s", url)
            raise TemporarySourceError(f"Timeout fetching {url}", code="timeout") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error fetching %s: %s", url, error)
            raise TemporarySourceError(f"HTTP error fetching {url}: {error}") from error

        if response.is_success:
            return response
        status = response.status_code
        if status == HTTP_UNAUTHORIZED:
            raise CredentialRefreshError(f"Source rejected access token (HTTP {status}) for {url}")
        if status in RETRYABLE_HTTP_STATUS_CODES:
            raise TemporarySourceError(
                f"HTTP {status} from {url}",
                code=f"http_{status}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        raise NonRetryableSourceError(
            f"HTTP {status} from {url}",
            code=f"http_{status}",
            status_code=status,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SourceHttpClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return max(0, int(value.strip()))
    except ValueError:
        return None
