"""Google Drive and Gmail adapters over the Google REST APIs."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from deal_pulse.models import SourceType
from deal_pulse.sources.base import (
    SourceItem,
    format_rfc3339,
    parse_iso_datetime,
    required_config,
)
from deal_pulse.sources.http import SourceHttpClient

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
DRIVE_FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_APPS_MIME_PREFIX = "application/vnd.google-apps."
DRIVE_LIST_FIELDS = "nextPageToken, files(id, name, mimeType, modifiedTime, webViewLink, size)"
DEFAULT_MAX_MESSAGES = 50


class GoogleDriveAdapter:
    """Lists files in one Drive folder; config key ``folder_id``."""

    source_type = SourceType.GDRIVE

    def __init__(self, http: SourceHttpClient, *, page_size: int = 100) -> None:
        self.http = http
        self.page_size = page_size

    def list_changed_items(
        self,
        config: Mapping[str, Any],
        access_token: str,
        since: datetime | None,
    ) -> list[SourceItem]:
        folder_id = required_config(config, "folder_id", self.source_type)
        query = f"'{folder_id}' in parents and trashed=false"
        if since is not None:
            query += f" and modifiedTime > '{format_rfc3339(since)}'"

        items: list[SourceItem] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "q": query,
                "fields": DRIVE_LIST_FIELDS,
                "orderBy": "modifiedTime desc",
                "pageSize": self.page_size,
            }
            if page_token:
                params["pageToken"] = page_token
            payload = self.http.get_json(
                f"{DRIVE_API_URL}/files",
                access_token=access_token,
                params=params,
            )
            for raw in payload.get("files", []):
                if raw.get("mimeType") == DRIVE_FOLDER_MIME_TYPE or not raw.get("id"):
                    continue
                items.append(
                    SourceItem(
                        source_id=str(raw["id"]),
                        name=str(raw.get("name") or raw["id"]),
                        modified_at=parse_iso_datetime(raw.get("modifiedTime")),
                        source_url=raw.get("webViewLink"),
                    ),
                )
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        logger.info("Drive folder %s: %d changed files", folder_id, len(items))
        return items

    def fetch_document_text(
        self,
        config: Mapping[str, Any],
        access_token: str,
        source_id: str,
    ) -> str:
        metadata = self.http.get_json(
            f"{DRIVE_API_URL}/files/{source_id}",
            access_token=access_token,
            params={"fields": "id, mimeType"},
        )
        mime_type = str(metadata.get("mimeType") or "")
        if mime_type.startswith(GOOGLE_APPS_MIME_PREFIX):
            return self.http.get_text(
                f"{DRIVE_API_URL}/files/{source_id}/export",
                access_token=access_token,
                params={"mimeType": "text/plain"},
            )
        return self.http.get_text(
            f"{DRIVE_API_URL}/files/{source_id}",
            access_token=access_token,
            params={"alt": "media"},
        )


class GmailAdapter:
    """Lists deal-related messages.

    Config keys: ``query`` (raw Gmail search), or ``keywords`` and
    ``participants`` to build one; ``max_results`` caps each sync.
    """

    source_type = SourceType.GMAIL

    def __init__(self, http: SourceHttpClient) -> None:
        self.http = http

    def list_changed_items(
        self,
        config: Mapping[str, Any],
        access_token: str,
        since: datetime | None,
    ) -> list[SourceItem]:
        query = str(config.get("query") or "").strip()
        after = since.date() if since is not None else None
        if not query:
            query = build_gmail_query(
                keywords=config.get("keywords") or (),
                participants=config.get("participants") or (),
                after=after,
            )
        elif after is not None:
            query = f"{query} after:{after.strftime('%Y/%m/%d')}"

        listing = self.http.get_json(
            f"{GMAIL_API_URL}/messages",
            access_token=access_token,
            params={
                "q": query,
                "maxResults": int(config.get("max_results") or DEFAULT_MAX_MESSAGES),
            },
        )
        items: list[SourceItem] = []
        for ref in listing.get("messages", []):
            message_id = ref.get("id")
            if not message_id:
                continue
            message = self.http.get_json(
                f"{GMAIL_API_URL}/messages/{message_id}",
                access_token=access_token,
                params={"format": "full"},
            )
            items.append(_gmail_item(message))
        logger.info("Gmail query %r: %d messages", query, len(items))
        return items


def build_gmail_query(
    *,
    keywords: Sequence[str] = (),
    participants: Sequence[str] = (),
    after: date | None = None,
) -> str:
    """Gmail search expression: quoted keywords OR-ed, participants as sender or recipient."""

    parts: list[str] = []
    if keywords:
        parts.append("(" + " OR ".join(f'"{keyword}"' for keyword in keywords) + ")")
    if participants:
        parts.append(
            "("
            + " OR ".join(f"(from:{address} OR to:{address})" for address in participants)
            + ")",
        )
    if after is not None:
        parts.append(f"after:{after.strftime('%Y/%m/%d')}")
    return " ".join(parts)


def _gmail_item(message: Mapping[str, Any]) -> SourceItem:
    payload = message.get("payload") or {}
    headers = {
        str(header.get("name", "")).lower(): str(header.get("value", ""))
        for header in payload.get("headers", [])
    }
    return SourceItem(
        source_id=str(message["id"]),
        name=headers.get("subject", ""),
        modified_at=_gmail_received_at(message, headers.get("date")),
        sender=headers.get("from", ""),
        snippet=str(message.get("snippet") or ""),
        body=_gmail_plain_body(payload),
        thread_id=message.get("threadId"),
    )


def _gmail_received_at(message: Mapping[str, Any], date_header: str | None) -> datetime:
    internal_date = message.get("internalDate")
    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
        except (TypeError, ValueError):
            pass
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)


def _gmail_plain_body(payload: Mapping[str, Any]) -> str:
    data = (payload.get("body") or {}).get("data")
    if data:
        return _decode_base64url(data)
    for part in payload.get("parts", []):
        if part.get("mimeType") == "text/plain":
            part_data = (part.get("body") or {}).get("data")
            if part_data:
                return _decode_base64url(part_data)
    return ""


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        logger.warning("Undecodable Gmail body part (%d chars)", len(data))
        return ""


