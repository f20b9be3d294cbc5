"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from deal_pulse.jobs.models import JobView, QueueName
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.repository import DealRepository


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "deal-pulse.db"


@pytest.fixture()
def deal_repository(db_path: Path) -> Iterator[DealRepository]:
    repository = DealRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def queue_repository(db_path: Path, deal_repository: DealRepository) -> Iterator[QueueRepository]:
    repository = QueueRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def producer(queue_repository: QueueRepository) -> JobProducer:
    return JobProducer(queue_repository)


@pytest.fixture()
def claim(queue_repository: QueueRepository) -> Callable[[QueueName], JobView]:
    """Claim the next ready job on a queue, failing the test when there is none."""

    def _claim(queue_name: QueueName) -> JobView:
        job = queue_repository.claim_next(queue_name=queue_name, worker_id="test-worker")
        assert job is not None, f"no ready job on {queue_name.value}"
        return job

    return _claim


@pytest.fixture()
def progress() -> list[int]:
    return []
