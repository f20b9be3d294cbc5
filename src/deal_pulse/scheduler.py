"""Cron-driven daily brief fan-out across active deals."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter

from deal_pulse.jobs.producers import JobProducer
from deal_pulse.repository import DealRepository
from deal_pulse.storage.common import DEFAULT_TIMEZONE, local_date, utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FanOutEntry:
    deal_id: str
    deal_name: str
    success: bool
    job_id: str | None = None
    deduplicated: bool = False
    error: str | None = None


@dataclass(slots=True)
class FanOutResult:
    """Outcome of one fan-out; per-deal failures never abort the others."""

    brief_date: date
    results: list[FanOutEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def queued(self) -> int:
        return sum(1 for entry in self.results if entry.success)

    @property
    def message(self) -> str:
        return f"Queued briefs for {self.queued}/{self.total} deals"

    def to_dict(self) -> dict[str, Any]:
        return {
            "brief_date": self.brief_date.isoformat(),
            "queued": self.queued,
            "total": self.total,
            "message": self.message,
            "results": [asdict(entry) for entry in self.results],
        }


def fan_out_daily_briefs(
    *,
    deal_repository: DealRepository,
    producer: JobProducer,
    brief_date: date,
) -> FanOutResult:
    """Enqueue one brief job per active deal for ``brief_date``."""

    result = FanOutResult(brief_date=brief_date)
    for deal in deal_repository.list_active_deals():
        try:
            handle = producer.enqueue_daily_brief(deal.deal_id, brief_date)
        except Exception as error:  # noqa: BLE001
            logger.warning("Failed to queue brief for deal %s: %s", deal.deal_id, error)
            result.results.append(
                FanOutEntry(
                    deal_id=deal.deal_id,
                    deal_name=deal.name,
                    success=False,
                    error=str(error),
                ),
            )
            continue
        result.results.append(
            FanOutEntry(
                deal_id=deal.deal_id,
                deal_name=deal.name,
                success=True,
                job_id=handle.job_id,
                deduplicated=handle.deduplicated,
            ),
        )
    logger.info("%s on %s", result.message, brief_date.isoformat())
    return result


def trigger_daily_briefs(
    *,
    deal_repository: DealRepository,
    producer: JobProducer,
    timezone: str = DEFAULT_TIMEZONE,
    at: datetime | None = None,
) -> FanOutResult:
    """Manual fan-out for the current date in ``timezone``; shares the scheduled dedup keys."""

    return fan_out_daily_briefs(
        deal_repository=deal_repository,
        producer=producer,
        brief_date=local_date(at or utc_now(), timezone),
    )


class DailyBriefScheduler:
    """Fires the fan-out on a cron expression evaluated in a fixed timezone."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        deal_repository: DealRepository,
        producer: JobProducer,
        cron: str = "0 8 * * *",
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
        stop_event: threading.Event | None = None,
    ) -> None:
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression: {cron!r}")
        self.deal_repository = deal_repository
        self.producer = producer
        self.cron = cron
        self.zone = ZoneInfo(timezone)
        self.clock = clock
        self.stop_event = stop_event or threading.Event()

    def next_fire_time(self, after: datetime | None = None) -> datetime:
        start = (after or self.clock()).astimezone(self.zone)
        return croniter(self.cron, start).get_next(datetime)

    def brief_date_for(self, at: datetime) -> date:
        return local_date(at, self.zone.key)

    def trigger(self, at: datetime | None = None) -> FanOutResult:
        """Run the fan-out now, for the scheduler-local date of ``at``."""

        return trigger_daily_briefs(
            deal_repository=self.deal_repository,
            producer=self.producer,
            timezone=self.zone.key,
            at=at or self.clock(),
        )

    def run(self, *, max_fires: int | None = None) -> list[FanOutResult]:
        """Sleep until each fire time and fan out, until stopped or ``max_fires`` reached."""

        results: list[FanOutResult] = []
        last_fire: datetime | None = None
        while not self.stop_event.is_set():
            if max_fires is not None and len(results) >= max_fires:
                break
            now = self.clock()
            fire_at = self.next_fire_time(now if last_fire is None else max(now, last_fire))
            last_fire = fire_at
            delay = max(0.0, (fire_at - self.clock()).total_seconds())
            logger.info("Next daily brief fan-out at %s", fire_at.isoformat())
            if self.stop_event.wait(delay):
                break
            results.append(self.trigger(fire_at))
        return results

    def request_stop(self) -> None:
        self.stop_event.set()
