"""Common source adapter contracts."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from deal_pulse.errors import NonRetryableSourceError
from deal_pulse.models import CommunicationWrite, DocumentWrite, SourceType


@dataclass(slots=True)
class SourceItem:
    """One changed file or message, normalized across providers."""

    source_id: str
    name: str
    modified_at: datetime
    source_url: str | None = None
    sender: str = ""
    snippet: str = ""
    body: str = ""
    thread_id: str | None = None

    def to_document_write(self, source_type: SourceType) -> DocumentWrite:
        return DocumentWrite(
            source_id=self.source_id,
            name=self.name,
            source_type=source_type,
            modified_at=self.modified_at,
            source_url=self.source_url,
        )

    def to_communication_write(self, source_type: SourceType) -> CommunicationWrite:
        return CommunicationWrite(
            source_id=self.source_id,
            subject=self.name,
            sender=self.sender,
            received_at=self.modified_at,
            source_type=source_type,
            snippet=self.snippet,
            body=self.body,
            thread_id=self.thread_id,
        )


class SourceAdapter(Protocol):
    """Read-only view over one external document or mail source."""

    source_type: SourceType

    def list_changed_items(
        self,
        config: Mapping[str, Any],
        access_token: str,
        since: datetime | None,
    ) -> list[SourceItem]:
        """Return items changed after ``since`` (everything when ``since`` is None)."""
        raise NotImplementedError


@runtime_checkable
class DocumentContentSource(Protocol):
    """Optional hook for adapters that can return a document's text body."""

    def fetch_document_text(
        self,
        config: Mapping[str, Any],
        access_token: str,
        source_id: str,
    ) -> str:
        """Download one document and decode it as text."""
        raise NotImplementedError


def required_config(config: Mapping[str, Any], key: str, source_type: SourceType) -> str:
    value = str(config.get(key) or "").strip()
    if not value:
        raise NonRetryableSourceError(
            f"{source_type.value} connection is missing config key {key!r}",
            code="missing_config",
        )
    return value


def parse_iso_datetime(value: object) -> datetime:
    """Parse provider ISO-8601 timestamps; a missing value means "now"."""

    if not value:
        return datetime.now(UTC)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_rfc3339(value: datetime) -> str:
    aware = value if value.tzinfo else value.replace(tzinfo=UTC)
    return aware.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
