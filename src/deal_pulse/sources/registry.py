"""Adapter lookup by source type."""

from __future__ import annotations

from deal_pulse.config import SyncSettings
from deal_pulse.models import SourceType
from deal_pulse.sources.base import SourceAdapter
from deal_pulse.sources.google import GmailAdapter, GoogleDriveAdapter
from deal_pulse.sources.http import SourceHttpClient
from deal_pulse.sources.microsoft import OutlookAdapter, SharePointAdapter


def build_source_adapters(
    settings: SyncSettings,
    *,
    http: SourceHttpClient | None = None,
) -> dict[SourceType, SourceAdapter]:
    client = http or SourceHttpClient(timeout_seconds=settings.request_timeout_seconds)
    return {
        SourceType.GDRIVE: GoogleDriveAdapter(client, page_size=settings.page_size),
        SourceType.GMAIL: GmailAdapter(client),
        SourceType.SHAREPOINT: SharePointAdapter(client),
        SourceType.OUTLOOK: OutlookAdapter(client),
    }
