"""Daily brief sections."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    overall: int
    workstreams: dict[str, int] = field(default_factory=dict)
    change_vs_previous: int = 0


@dataclass(slots=True, frozen=True)
class Changes:
    new_documents: list[str] = field(default_factory=list)
    updated_documents: list[str] = field(default_factory=list)
    reviewed_count: int = 0


@dataclass(slots=True, frozen=True)
class BlockerItem:
    title: str
    workstream: str
    age_days: int
    owner: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "workstream": self.workstream,
            "age_days": self.age_days,
        }
        if self.owner is not None:
            payload["owner"] = self.owner
        return payload


@dataclass(slots=True, frozen=True)
class RiskItem:
    title: str
    severity: str
    source: str


@dataclass(slots=True, frozen=True)
class NotableCommunication:
    subject: str
    sender: str
    snippet: str
    reason: str


@dataclass(slots=True, frozen=True)
class DailyBrief:
    """Everything a published brief stores, computed for one evaluation instant."""

    progress_snapshot: ProgressSnapshot
    changes: Changes
    blockers: list[BlockerItem]
    risks: list[RiskItem]
    notable_communications: list[NotableCommunication]

    def to_sections(self) -> dict[str, dict[str, Any]]:
        """Section payloads keyed by their persisted column name."""

        return {
            "progress_snapshot": asdict(self.progress_snapshot),
            "changes": asdict(self.changes),
            "blockers": {"items": [item.to_dict() for item in self.blockers]},
            "risks": {"items": [asdict(item) for item in self.risks]},
            "communications": {
                "notable": [asdict(item) for item in self.notable_communications],
            },
        }
