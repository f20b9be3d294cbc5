"""SharePoint and Outlook adapters over Microsoft Graph."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from deal_pulse.models import SourceType
from deal_pulse.sources.base import (
    SourceItem,
    format_rfc3339,
    parse_iso_datetime,
    required_config,
)
from deal_pulse.sources.http import SourceHttpClient
from deal_pulse.storage.common import utc_now

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_MAX_MESSAGES = 50
DEFAULT_MAIL_LOOKBACK = timedelta(days=30)
OUTLOOK_SELECT_FIELDS = "id,conversationId,subject,from,receivedDateTime,bodyPreview,body"


class SharePointAdapter:
    """Lists files in a site drive root; config keys ``site_id`` and optional ``drive_id``."""

    source_type = SourceType.SHAREPOINT

    def __init__(self, http: SourceHttpClient) -> None:
        self.http = http

    def list_changed_items(
        self,
        config: Mapping[str, Any],
        access_token: str,
        since: datetime | None,
    ) -> list[SourceItem]:
        url: str | None = f"{_drive_root(config)}/root/children"
        items: list[SourceItem] = []
        while url:
            payload = self.http.get_json(url, access_token=access_token)
            for raw in payload.get("value", []):
                if "folder" in raw or not raw.get("id"):
                    continue
                modified_at = parse_iso_datetime(raw.get("lastModifiedDateTime"))
                if since is not None and modified_at <= since:
                    continue
                items.append(
                    SourceItem(
                        source_id=str(raw["id"]),
                        name=str(raw.get("name") or raw["id"]),
                        modified_at=modified_at,
                        source_url=raw.get("webUrl"),
                    ),
                )
            url = payload.get("@odata.nextLink")
        logger.info("SharePoint drive: %d changed files", len(items))
        return items

    def fetch_document_text(
        self,
        config: Mapping[str, Any],
        access_token: str,
        source_id: str,
    ) -> str:
        return self.http.get_text(
            f"{_drive_root(config)}/items/{source_id}/content",
            access_token=access_token,
        )


class OutlookAdapter:
    """Lists mailbox messages.

    Config keys: ``filter`` (raw OData filter) or ``participants``;
    ``max_results`` caps each sync. Without a cursor the last 30 days are read.
    """

    source_type = SourceType.OUTLOOK

    def __init__(self, http: SourceHttpClient) -> None:
        self.http = http

    def list_changed_items(
        self,
        config: Mapping[str, Any],
        access_token: str,
        since: datetime | None,
    ) -> list[SourceItem]:
        after = since if since is not None else utc_now() - DEFAULT_MAIL_LOOKBACK
        odata_filter = str(config.get("filter") or "").strip()
        if odata_filter:
            odata_filter = f"({odata_filter}) and receivedDateTime ge {format_rfc3339(after)}"
        else:
            odata_filter = build_outlook_filter(
                participants=config.get("participants") or (),
                after=after,
            )
        payload = self.http.get_json(
            f"{GRAPH_API_URL}/me/messages",
            access_token=access_token,
            params={
                "$top": int(config.get("max_results") or DEFAULT_MAX_MESSAGES),
                "$orderby": "receivedDateTime desc",
                "$filter": odata_filter,
                "$select": OUTLOOK_SELECT_FIELDS,
            },
        )
        items = [_outlook_item(raw) for raw in payload.get("value", []) if raw.get("id")]
        logger.info("Outlook filter %r: %d messages", odata_filter, len(items))
        return items


def build_outlook_filter(
    *,
    participants: Sequence[str] = (),
    after: datetime | None = None,
) -> str:
    parts: list[str] = []
    if participants:
        parts.append(
            "("
            + " or ".join(f"from/emailAddress/address eq '{address}'" for address in participants)
            + ")",
        )
    if after is not None:
        parts.append(f"receivedDateTime ge {format_rfc3339(after)}")
    return " and ".join(parts)


def _drive_root(config: Mapping[str, Any]) -> str:
    site_id = required_config(config, "site_id", SourceType.SHAREPOINT)
    drive_id = str(config.get("drive_id") or "").strip()
    if drive_id:
        return f"{GRAPH_API_URL}/sites/{site_id}/drives/{drive_id}"
    return f"{GRAPH_API_URL}/sites/{site_id}/drive"


def _outlook_item(raw: Mapping[str, Any]) -> SourceItem:
    sender = ((raw.get("from") or {}).get("emailAddress") or {}).get("address") or ""
    return SourceItem(
        source_id=str(raw["id"]),
        name=str(raw.get("subject") or ""),
        modified_at=parse_iso_datetime(raw.get("receivedDateTime")),
        sender=str(sender),
        snippet=str(raw.get("bodyPreview") or ""),
        body=str((raw.get("body") or {}).get("content") or ""),
        thread_id=raw.get("conversationId"),
    )
