"""Deal state repository: deals, workstreams, documents, communications, connections, briefs."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from deal_pulse.models import (
    BriefStatus,
    BriefView,
    CommunicationView,
    CommunicationWrite,
    DealStatus,
    DealView,
    DocumentStatus,
    DocumentView,
    DocumentWrite,
    Sentiment,
    SourceConnectionView,
    SourceConnectionWrite,
    SourceType,
    UpsertAction,
    UpsertResult,
    WorkstreamView,
)
from deal_pulse.storage.alembic_runner import upgrade_head
from deal_pulse.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from deal_pulse.storage.sqlmodel_models import (
    Brief,
    Communication,
    Deal,
    Document,
    SourceConnection,
    Workstream,
)

logger = logging.getLogger(__name__)


class DealRepository:
    """Persistence facade for deal state backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # Deals

    def create_deal(
        self,
        *,
        name: str,
        status: DealStatus = DealStatus.ACTIVE,
        deal_id: str | None = None,
    ) -> DealView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Deal(
                deal_id=deal_id or str(uuid4()),
                name=name,
                status=status.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_deal_view(row)

    def get_deal(self, deal_id: str) -> DealView | None:
        with Session(self.engine) as session:
            row = session.get(Deal, deal_id)
            return _to_deal_view(row) if row is not None else None

    def list_deals(self, *, status: DealStatus | None = None) -> list[DealView]:
        with Session(self.engine) as session:
            statement = select(Deal).order_by(col(Deal.created_at).asc(), col(Deal.name).asc())
            if status is not None:
                statement = statement.where(Deal.status == status.value)
            rows = session.exec(statement).all()
        return [_to_deal_view(row) for row in rows]

    def list_active_deals(self) -> list[DealView]:
        return self.list_deals(status=DealStatus.ACTIVE)

    # Workstreams

    def create_workstream(self, *, deal_id: str, name: str) -> WorkstreamView:
        with Session(self.engine) as session:
            row = Workstream(
                workstream_id=str(uuid4()),
                deal_id=deal_id,
                name=name,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_workstream_view(row)

    def list_workstreams(self, deal_id: str) -> list[WorkstreamView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Workstream)
                .where(Workstream.deal_id == deal_id)
                .order_by(col(Workstream.name).asc()),
            ).all()
        return [_to_workstream_view(row) for row in rows]

    def ensure_workstream(self, *, deal_id: str, name: str) -> WorkstreamView:
        """Find a workstream by case-insensitive name, creating it when missing."""

        with Session(self.engine) as session:
            existing = session.exec(
                select(Workstream).where(
                    Workstream.deal_id == deal_id,
                    func.lower(Workstream.name) == name.strip().lower(),
                ),
            ).first()
            if existing is not None:
                return _to_workstream_view(existing)
        try:
            return self.create_workstream(deal_id=deal_id, name=name.strip())
        except IntegrityError:
            with Session(self.engine) as session:
                row = session.exec(
                    select(Workstream).where(
                        Workstream.deal_id == deal_id,
                        Workstream.name == name.strip(),
                    ),
                ).one()
                return _to_workstream_view(row)

    # Documents

    def add_document(  # noqa: PLR0913
        self,
        *,
        deal_id: str,
        name: str,
        status: DocumentStatus = DocumentStatus.NEW,
        workstream_id: str | None = None,
        source_type: SourceType = SourceType.MANUAL,
        source_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> DocumentView:
        """Insert a document directly, as manual uploads do."""

        created = created_at or utc_now()
        document_id = str(uuid4())
        with Session(self.engine) as session:
            row = Document(
                document_id=document_id,
                deal_id=deal_id,
                workstream_id=workstream_id,
                name=name,
                status=status.value,
                source_type=source_type.value,
                source_id=source_id,
                created_at=to_db_datetime(created),
                updated_at=to_db_datetime(updated_at or created),
            )
            session.add(row)
            session.commit()
        document = self.get_document(document_id)
        if document is None:
            raise RuntimeError(f"Document not found after insert: {document_id}")
        return document

    def get_document(self, document_id: str) -> DocumentView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Document, Workstream)
                .join(
                    Workstream,
                    col(Document.workstream_id) == col(Workstream.workstream_id),
                    isouter=True,
                )
                .where(Document.document_id == document_id),
            ).one_or_none()
        if row is None:
            return None
        document, workstream = row
        return _to_document_view(document, workstream)

    def list_documents(self, deal_id: str) -> list[DocumentView]:
        """All documents of a deal joined with their workstream, newest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Document, Workstream)
                .join(
                    Workstream,
                    col(Document.workstream_id) == col(Workstream.workstream_id),
                    isouter=True,
                )
                .where(Document.deal_id == deal_id)
                .order_by(col(Document.created_at).desc()),
            ).all()
        return [_to_document_view(document, workstream) for document, workstream in rows]

    def upsert_synced_document(
        self,
        *,
        deal_id: str,
        item: DocumentWrite,
        now: datetime | None = None,
    ) -> UpsertResult:
        """Insert or refresh a document keyed by (deal, source-native id).

        A known document becomes ``updated`` only when the source modification
        time is newer than the stored ``updated_at``.
        """

        synced_at = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            existing = session.exec(
                select(Document).where(
                    Document.deal_id == deal_id,
                    Document.source_id == item.source_id,
                ),
            ).one_or_none()
            if existing is None:
                row = Document(
                    document_id=str(uuid4()),
                    deal_id=deal_id,
                    name=item.name,
                    status=DocumentStatus.NEW.value,
                    source_type=item.source_type.value,
                    source_id=item.source_id,
                    source_url=item.source_url,
                    created_at=synced_at,
                    updated_at=synced_at,
                    last_ingested_at=synced_at,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    duplicate = session.exec(
                        select(Document).where(
                            Document.deal_id == deal_id,
                            Document.source_id == item.source_id,
                        ),
                    ).one()
                    return UpsertResult(entity_id=duplicate.document_id, action=UpsertAction.SKIPPED)
                return UpsertResult(entity_id=row.document_id, action=UpsertAction.INSERTED)

            if to_db_datetime(item.modified_at) <= existing.updated_at:
                return UpsertResult(entity_id=existing.document_id, action=UpsertAction.SKIPPED)

            existing.name = item.name
            existing.source_url = item.source_url or existing.source_url
            existing.status = DocumentStatus.UPDATED.value
            existing.updated_at = synced_at
            existing.last_ingested_at = synced_at
            session.add(existing)
            session.commit()
            return UpsertResult(entity_id=existing.document_id, action=UpsertAction.UPDATED)

    def set_document_status(self, document_id: str, status: DocumentStatus) -> None:
        self._update_document(document_id, status=status.value)

    def update_document_summary(self, document_id: str, summary: str) -> None:
        self._update_document(document_id, summary=summary)

    def assign_document_workstream(self, document_id: str, workstream_id: str) -> None:
        self._update_document(document_id, workstream_id=workstream_id)

    def _update_document(self, document_id: str, **values: Any) -> None:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Document).where(col(Document.document_id) == document_id).values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Document not found: {document_id}")
            session.commit()

    # Communications

    def add_communication(  # noqa: PLR0913
        self,
        *,
        deal_id: str,
        subject: str,
        sender: str,
        received_at: datetime,
        snippet: str = "",
        body: str = "",
        thread_id: str | None = None,
        sentiment: Sentiment | None = None,
        is_blocker: bool = False,
        source_type: SourceType = SourceType.GMAIL,
        source_id: str | None = None,
    ) -> CommunicationView:
        with Session(self.engine) as session:
            row = Communication(
                communication_id=str(uuid4()),
                deal_id=deal_id,
                subject=subject,
                sender=sender,
                snippet=snippet,
                body=body,
                thread_id=thread_id,
                source_type=source_type.value,
                source_id=source_id,
                sentiment=sentiment.value if sentiment is not None else None,
                is_blocker=is_blocker,
                received_at=to_db_datetime(received_at),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_communication_view(row)

    def upsert_synced_communication(
        self,
        *,
        deal_id: str,
        item: CommunicationWrite,
    ) -> UpsertResult:
        """Insert a message once; messages are immutable so repeats are skipped."""

        with Session(self.engine) as session:
            existing = session.exec(
                select(Communication).where(
                    Communication.deal_id == deal_id,
                    Communication.source_id == item.source_id,
                ),
            ).one_or_none()
            if existing is not None:
                return UpsertResult(
                    entity_id=existing.communication_id,
                    action=UpsertAction.SKIPPED,
                )
            row = Communication(
                communication_id=str(uuid4()),
                deal_id=deal_id,
                subject=item.subject,
                sender=item.sender,
                snippet=item.snippet,
                body=item.body,
                thread_id=item.thread_id,
                source_type=item.source_type.value,
                source_id=item.source_id,
                received_at=to_db_datetime(item.received_at),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                duplicate = session.exec(
                    select(Communication).where(
                        Communication.deal_id == deal_id,
                        Communication.source_id == item.source_id,
                    ),
                ).one()
                return UpsertResult(
                    entity_id=duplicate.communication_id,
                    action=UpsertAction.SKIPPED,
                )
            return UpsertResult(entity_id=row.communication_id, action=UpsertAction.INSERTED)

    def get_communication(self, communication_id: str) -> CommunicationView | None:
        with Session(self.engine) as session:
            row = session.get(Communication, communication_id)
            return _to_communication_view(row) if row is not None else None

    def list_communications(self, deal_id: str) -> list[CommunicationView]:
        """All communications of a deal, newest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Communication)
                .where(Communication.deal_id == deal_id)
                .order_by(col(Communication.received_at).desc()),
            ).all()
        return [_to_communication_view(row) for row in rows]

    def list_thread(self, *, deal_id: str, thread_id: str) -> list[CommunicationView]:
        """Messages of one thread, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Communication)
                .where(
                    Communication.deal_id == deal_id,
                    Communication.thread_id == thread_id,
                )
                .order_by(col(Communication.received_at).asc()),
            ).all()
        return [_to_communication_view(row) for row in rows]

    def update_communication_analysis(
        self,
        communication_id: str,
        *,
        sentiment: Sentiment,
        is_blocker: bool,
        key_points: list[str] | None = None,
    ) -> None:
        values: dict[str, Any] = {"sentiment": sentiment.value, "is_blocker": is_blocker}
        if key_points is not None:
            values["key_points_json"] = json.dumps(key_points, ensure_ascii=False)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Communication)
                .where(col(Communication.communication_id) == communication_id)
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Communication not found: {communication_id}")
            session.commit()

    # Source connections

    def upsert_source_connection(
        self,
        *,
        deal_id: str,
        connection: SourceConnectionWrite,
    ) -> SourceConnectionView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(
                select(SourceConnection).where(
                    SourceConnection.deal_id == deal_id,
                    SourceConnection.source_type == connection.source_type.value,
                ),
            ).one_or_none()
            if row is None:
                row = SourceConnection(
                    connection_id=str(uuid4()),
                    deal_id=deal_id,
                    source_type=connection.source_type.value,
                    created_at=now,
                    updated_at=now,
                )
            row.is_active = connection.is_active
            row.access_token = connection.access_token
            row.refresh_token = connection.refresh_token
            row.token_expires_at = (
                to_db_datetime(connection.token_expires_at)
                if connection.token_expires_at is not None
                else None
            )
            row.config_json = json.dumps(connection.config, ensure_ascii=False, sort_keys=True)
            row.consecutive_auth_failures = 0
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_connection_view(row)

    def get_source_connection(
        self,
        *,
        deal_id: str,
        source_type: SourceType,
    ) -> SourceConnectionView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(SourceConnection).where(
                    SourceConnection.deal_id == deal_id,
                    SourceConnection.source_type == source_type.value,
                ),
            ).one_or_none()
            return _to_connection_view(row) if row is not None else None

    def list_source_connections(self, deal_id: str) -> list[SourceConnectionView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SourceConnection)
                .where(SourceConnection.deal_id == deal_id)
                .order_by(col(SourceConnection.source_type).asc()),
            ).all()
        return [_to_connection_view(row) for row in rows]

    def update_connection_tokens(
        self,
        connection_id: str,
        *,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        values: dict[str, Any] = {
            "access_token": access_token,
            "token_expires_at": to_db_datetime(token_expires_at),
            "updated_at": to_db_datetime(utc_now()),
        }
        if refresh_token:
            values["refresh_token"] = refresh_token
        self._update_connection(connection_id, **values)

    def record_auth_failure(self, connection_id: str, *, threshold: int) -> tuple[int, bool]:
        """Count one credential failure; deactivate at ``threshold``.

        Returns the new consecutive failure count and whether the connection was
        deactivated by this call.
        """

        with Session(self.engine) as session:
            row = session.get(SourceConnection, connection_id)
            if row is None:
                raise RuntimeError(f"Source connection not found: {connection_id}")
            row.consecutive_auth_failures += 1
            deactivated = row.is_active and row.consecutive_auth_failures >= threshold
            if deactivated:
                row.is_active = False
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            failures = row.consecutive_auth_failures
        if deactivated:
            logger.warning(
                "Source connection %s deactivated after %d consecutive auth failures",
                connection_id,
                failures,
            )
        return failures, deactivated

    def mark_connection_synced(self, connection_id: str, *, synced_at: datetime) -> None:
        self._update_connection(
            connection_id,
            consecutive_auth_failures=0,
            last_synced_at=to_db_datetime(synced_at),
            updated_at=to_db_datetime(utc_now()),
        )

    def _update_connection(self, connection_id: str, **values: Any) -> None:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(SourceConnection)
                .where(col(SourceConnection.connection_id) == connection_id)
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Source connection not found: {connection_id}")
            session.commit()

    # Briefs

    def upsert_brief(
        self,
        *,
        deal_id: str,
        brief_date: date,
        sections: dict[str, dict[str, Any]],
        status: BriefStatus = BriefStatus.PUBLISHED,
        published_at: datetime | None = None,
    ) -> BriefView:
        """Create or overwrite the brief for (deal, date)."""

        for _ in range(2):
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                row = session.exec(
                    select(Brief).where(Brief.deal_id == deal_id, Brief.brief_date == brief_date),
                ).one_or_none()
                if row is None:
                    row = Brief(
                        brief_id=str(uuid4()),
                        deal_id=deal_id,
                        brief_date=brief_date,
                        progress_snapshot_json="{}",
                        changes_json="{}",
                        blockers_json="{}",
                        risks_json="{}",
                        communications_json="{}",
                        created_at=now,
                        updated_at=now,
                    )
                row.status = status.value
                row.progress_snapshot_json = _dump_section(sections, "progress_snapshot")
                row.changes_json = _dump_section(sections, "changes")
                row.blockers_json = _dump_section(sections, "blockers")
                row.risks_json = _dump_section(sections, "risks")
                row.communications_json = _dump_section(sections, "communications")
                row.published_at = (
                    to_db_datetime(published_at or utc_now())
                    if status is BriefStatus.PUBLISHED
                    else None
                )
                row.updated_at = now
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    continue
                session.refresh(row)
                return _to_brief_view(row)
        raise RuntimeError(
            f"Brief for deal {deal_id} on {brief_date.isoformat()} changed concurrently.",
        )

    def get_brief(self, *, deal_id: str, brief_date: date) -> BriefView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Brief).where(Brief.deal_id == deal_id, Brief.brief_date == brief_date),
            ).one_or_none()
            return _to_brief_view(row) if row is not None else None

    def get_previous_brief(self, *, deal_id: str, before: date) -> BriefView | None:
        """Latest brief dated strictly before ``before``."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Brief)
                .where(Brief.deal_id == deal_id, Brief.brief_date < before)
                .order_by(col(Brief.brief_date).desc())
                .limit(1),
            ).one_or_none()
            return _to_brief_view(row) if row is not None else None

    def list_briefs(self, deal_id: str, *, limit: int = 10) -> list[BriefView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Brief)
                .where(Brief.deal_id == deal_id)
                .order_by(col(Brief.brief_date).desc())
                .limit(limit),
            ).all()
        return [_to_brief_view(row) for row in rows]


def _dump_section(sections: dict[str, dict[str, Any]], name: str) -> str:
    if name not in sections:
        raise ValueError(f"Brief section missing: {name}")
    return json.dumps(sections[name], ensure_ascii=False)


def _load_json_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}


def _to_deal_view(row: Deal) -> DealView:
    return DealView(
        deal_id=row.deal_id,
        name=row.name,
        status=DealStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_workstream_view(row: Workstream) -> WorkstreamView:
    return WorkstreamView(
        workstream_id=row.workstream_id,
        deal_id=row.deal_id,
        name=row.name,
        status=row.status,
    )


def _to_document_view(row: Document, workstream: Workstream | None) -> DocumentView:
    return DocumentView(
        document_id=row.document_id,
        deal_id=row.deal_id,
        workstream_id=row.workstream_id,
        workstream_name=workstream.name if workstream is not None else None,
        name=row.name,
        status=DocumentStatus(row.status),
        source_type=SourceType(row.source_type),
        source_id=row.source_id,
        source_url=row.source_url,
        summary=row.summary,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        last_ingested_at=optional_utc(row.last_ingested_at),
    )


def _to_communication_view(row: Communication) -> CommunicationView:
    key_points: list[str] = []
    if row.key_points_json:
        parsed = json.loads(row.key_points_json)
        if isinstance(parsed, list):
            key_points = [str(point) for point in parsed]
    return CommunicationView(
        communication_id=row.communication_id,
        deal_id=row.deal_id,
        subject=row.subject,
        sender=row.sender,
        snippet=row.snippet,
        body=row.body,
        thread_id=row.thread_id,
        source_type=SourceType(row.source_type),
        source_id=row.source_id,
        sentiment=Sentiment(row.sentiment) if row.sentiment is not None else None,
        is_blocker=bool(row.is_blocker),
        key_points=key_points,
        status=row.status,
        received_at=to_utc_aware_datetime(row.received_at),
    )


def _to_connection_view(row: SourceConnection) -> SourceConnectionView:
    return SourceConnectionView(
        connection_id=row.connection_id,
        deal_id=row.deal_id,
        source_type=SourceType(row.source_type),
        is_active=bool(row.is_active),
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        token_expires_at=optional_utc(row.token_expires_at),
        config=_load_json_object(row.config_json),
        consecutive_auth_failures=row.consecutive_auth_failures,
        last_synced_at=optional_utc(row.last_synced_at),
    )


def _to_brief_view(row: Brief) -> BriefView:
    return BriefView(
        brief_id=row.brief_id,
        deal_id=row.deal_id,
        brief_date=row.brief_date,
        status=BriefStatus(row.status),
        progress_snapshot=_load_json_object(row.progress_snapshot_json),
        changes=_load_json_object(row.changes_json),
        blockers=_load_json_object(row.blockers_json),
        risks=_load_json_object(row.risks_json),
        communications=_load_json_object(row.communications_json),
        published_at=optional_utc(row.published_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
