"""Access token retrieval with refresh-ahead of expiry."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from deal_pulse.errors import CredentialRefreshError, NoActiveConnectionError
from deal_pulse.models import SourceConnectionView, SourceType
from deal_pulse.oauth.refreshers import TokenRefresher
from deal_pulse.repository import DealRepository
from deal_pulse.storage.common import utc_now

logger = logging.getLogger(__name__)


class TokenManager:
    """Returns a usable access token, refreshing it when it expires within the margin.

    Tokens without a recorded expiry are used as-is. Refresh failures raise
    ``CredentialRefreshError``; counting consecutive failures is left to the
    caller so one sync attempt counts once.
    """

    def __init__(
        self,
        repository: DealRepository,
        refreshers: Mapping[SourceType, TokenRefresher],
        *,
        refresh_margin_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.refreshers = dict(refreshers)
        self.refresh_margin = timedelta(seconds=refresh_margin_seconds)
        self.clock = clock

    def get_valid_access_token(self, connection: SourceConnectionView | None) -> str:
        if connection is None or not connection.is_active:
            raise NoActiveConnectionError(
                "No active source connection"
                if connection is None
                else f"Source connection {connection.connection_id} is inactive",
            )
        if connection.access_token and not self._expiring(connection):
            return connection.access_token

        if not connection.refresh_token:
            raise CredentialRefreshError(
                f"{connection.source_type.value} connection {connection.connection_id} "
                "has no refresh token",
            )
        refresher = self.refreshers.get(connection.source_type)
        if refresher is None:
            raise CredentialRefreshError(
                f"No token refresher for source type {connection.source_type.value}",
            )

        logger.info(
            "Refreshing %s token for connection %s",
            connection.source_type.value,
            connection.connection_id,
        )
        refreshed = refresher.refresh(connection.refresh_token)
        self.repository.update_connection_tokens(
            connection.connection_id,
            access_token=refreshed.access_token,
            token_expires_at=refreshed.expires_at,
            refresh_token=refreshed.refresh_token,
        )
        return refreshed.access_token

    def _expiring(self, connection: SourceConnectionView) -> bool:
        if connection.token_expires_at is None:
            return False
        return connection.token_expires_at < self.clock() + self.refresh_margin
