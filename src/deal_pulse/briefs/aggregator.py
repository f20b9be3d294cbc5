"""Pure brief aggregation over already-loaded deal state.

Every time window is measured from an injected ``now`` so regeneration for the
same inputs and instant yields the same brief.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from deal_pulse.briefs.models import (
    BlockerItem,
    Changes,
    DailyBrief,
    NotableCommunication,
    ProgressSnapshot,
    RiskItem,
)
from deal_pulse.models import (
    BriefView,
    CommunicationView,
    DocumentStatus,
    DocumentView,
    Sentiment,
    WorkstreamView,
)

CHANGE_WINDOW = timedelta(hours=24)
STALLED_AFTER_DAYS = 7
MAX_COMMUNICATION_BLOCKERS = 5
MAX_STALLED_DOCUMENTS = 3
MAX_RISKS = 3
MAX_NOTABLE_COMMUNICATIONS = 5
DEFAULT_WORKSTREAM = "General"
RISK_NAME_KEYWORDS = ("legal", "compliance", "liability")
NOTABLE_SUBJECT_KEYWORDS = ("approval", "deadline", "urgent", "review")


def aggregate_brief(  # noqa: PLR0913
    *,
    documents: Sequence[DocumentView],
    communications: Sequence[CommunicationView],
    workstreams: Sequence[WorkstreamView],
    previous_brief: BriefView | None,
    now: datetime,
) -> DailyBrief:
    """Build every section; ``communications`` must be ordered newest first."""

    return DailyBrief(
        progress_snapshot=progress_snapshot(documents, workstreams, previous_brief),
        changes=detect_changes(documents, now=now),
        blockers=identify_blockers(communications, documents, now=now),
        risks=extract_risks(documents),
        notable_communications=notable_communications(communications, now=now),
    )


def percent(part: int, total: int) -> int:
    """``round(100 * part / total)`` with halves rounded up; 0 for an empty total."""

    if total <= 0:
        return 0
    return (200 * part + total) // (2 * total)


def progress_snapshot(
    documents: Sequence[DocumentView],
    workstreams: Sequence[WorkstreamView],
    previous_brief: BriefView | None,
) -> ProgressSnapshot:
    overall = percent(_reviewed_count(documents), len(documents))
    by_workstream: dict[str, int] = {}
    for workstream in workstreams:
        scoped = [doc for doc in documents if doc.workstream_id == workstream.workstream_id]
        by_workstream[workstream.name] = percent(_reviewed_count(scoped), len(scoped))

    change = 0
    if previous_brief is not None:
        previous_overall = previous_brief.progress_snapshot.get("overall")
        if isinstance(previous_overall, int | float):
            change = overall - int(previous_overall)
    return ProgressSnapshot(
        overall=overall,
        workstreams=by_workstream,
        change_vs_previous=change,
    )


def detect_changes(documents: Sequence[DocumentView], *, now: datetime) -> Changes:
    cutoff = now - CHANGE_WINDOW
    return Changes(
        new_documents=[
            doc.name
            for doc in documents
            if doc.status is DocumentStatus.NEW and doc.created_at >= cutoff
        ],
        updated_documents=[
            doc.name
            for doc in documents
            if doc.status is DocumentStatus.UPDATED and doc.updated_at >= cutoff
        ],
        reviewed_count=_reviewed_count(documents),
    )


def identify_blockers(
    communications: Sequence[CommunicationView],
    documents: Sequence[DocumentView],
    *,
    now: datetime,
) -> list[BlockerItem]:
    items = [
        BlockerItem(
            title=message.subject,
            workstream=DEFAULT_WORKSTREAM,
            age_days=_age_days(message.received_at, now),
            owner=message.sender,
        )
        for message in communications
        if message.is_blocker or message.sentiment is Sentiment.RISK
    ][:MAX_COMMUNICATION_BLOCKERS]

    stalled = sorted(
        (
            doc
            for doc in documents
            if doc.status is not DocumentStatus.REVIEWED
            and _age_days(doc.updated_at, now) >= STALLED_AFTER_DAYS
        ),
        key=lambda doc: doc.updated_at,
    )
    items.extend(
        BlockerItem(
            title=f"Document pending review: {doc.name}",
            workstream=doc.workstream_name or DEFAULT_WORKSTREAM,
            age_days=_age_days(doc.updated_at, now),
        )
        for doc in stalled[:MAX_STALLED_DOCUMENTS]
    )
    return items


def extract_risks(documents: Sequence[DocumentView]) -> list[RiskItem]:
    flagged = [
        doc
        for doc in documents
        if doc.status is DocumentStatus.NEW
        and any(keyword in doc.name.lower() for keyword in RISK_NAME_KEYWORDS)
    ]
    return [
        RiskItem(
            title=f"New {doc.workstream_name or 'document'} requires review",
            severity="medium",
            source=doc.name,
        )
        for doc in flagged[:MAX_RISKS]
    ]


def notable_communications(
    communications: Sequence[CommunicationView],
    *,
    now: datetime,
) -> list[NotableCommunication]:
    cutoff = now - CHANGE_WINDOW
    notable: list[NotableCommunication] = []
    for message in communications:
        if message.received_at < cutoff:
            continue
        subject = (message.subject or "").lower()
        if not (
            any(keyword in subject for keyword in NOTABLE_SUBJECT_KEYWORDS)
            or message.sentiment in {Sentiment.RISK, Sentiment.BLOCKER}
        ):
            continue
        notable.append(
            NotableCommunication(
                subject=message.subject,
                sender=message.sender,
                snippet=message.snippet or "",
                reason=_notable_reason(message),
            ),
        )
        if len(notable) >= MAX_NOTABLE_COMMUNICATIONS:
            break
    return notable


def _notable_reason(message: CommunicationView) -> str:
    if message.is_blocker or message.sentiment is Sentiment.BLOCKER:
        return "Blocker"
    if message.sentiment is Sentiment.RISK:
        return "Risk"
    return "Important"


def _reviewed_count(documents: Sequence[DocumentView]) -> int:
    return sum(1 for doc in documents if doc.status is DocumentStatus.REVIEWED)


def _age_days(then: datetime, now: datetime) -> int:
    return max(0, (now - then) // timedelta(days=1))
