from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from deal_pulse.models import DocumentStatus, SourceType
from deal_pulse.repository import DealRepository

pytestmark = [
    allure.epic("Deal State"),
    allure.feature("Repository"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def test_add_document_returns_view_joined_with_workstream(deal_repository: DealRepository) -> None:
    deal = deal_repository.create_deal(name="Project Atlas")
    legal = deal_repository.create_workstream(deal_id=deal.deal_id, name="Legal")

    document = deal_repository.add_document(
        deal_id=deal.deal_id,
        name="SPA draft.docx",
        workstream_id=legal.workstream_id,
        created_at=NOW,
    )

    assert document.workstream_name == "Legal"
    assert document.status is DocumentStatus.NEW
    assert document.source_type is SourceType.MANUAL
    assert document.created_at == NOW
    assert document.updated_at == NOW


def test_add_document_reports_row_missing_after_insert(
    deal_repository: DealRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    deal = deal_repository.create_deal(name="Project Atlas")
    monkeypatch.setattr(deal_repository, "get_document", lambda document_id: None)

    with pytest.raises(RuntimeError, match="Document not found after insert"):
        deal_repository.add_document(deal_id=deal.deal_id, name="SPA draft.docx")
