from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from deal_pulse.config import SchedulerSettings, Settings
from deal_pulse.jobs.models import QueueName
from deal_pulse.jobs.policies import DEFAULT_QUEUE_POLICIES

pytestmark = [
    allure.epic("Runtime"),
    allure.feature("Configuration"),
]


def test_defaults_match_queue_families(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DEAL_PULSE_DB_PATH", "DEAL_PULSE_DAILY_BRIEF_CRON", "DEAL_PULSE_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".deal_pulse.db")
    assert settings.scheduler.cron == "0 8 * * *"
    assert settings.scheduler.timezone == "America/New_York"
    assert settings.queues[QueueName.DAILY_BRIEF].concurrency == 2
    assert settings.queues[QueueName.DOCUMENT_PROCESSING].concurrency == 5
    assert settings.queues[QueueName.EMAIL_PROCESSING].concurrency == 10
    assert settings.queues[QueueName.SOURCE_SYNC].concurrency == 3
    assert settings.queues[QueueName.SOURCE_SYNC].max_attempts == 5
    assert settings.queues[QueueName.SOURCE_SYNC].backoff.base_seconds == 10.0
    assert settings.queues[QueueName.DAILY_BRIEF].keep_completed == 100
    assert settings.queues[QueueName.DAILY_BRIEF].keep_failed == 500
    settings.validate()


def test_env_overrides_queue_policy(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DEAL_PULSE_EMAIL_PROCESSING_CONCURRENCY", "4")
    monkeypatch.setenv("DEAL_PULSE_DAILY_BRIEF_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("DEAL_PULSE_SOURCE_SYNC_TIMEOUT_SECONDS", "45.5")

    settings = Settings.from_env(db_path=tmp_path / "custom.db")

    assert settings.db_path == tmp_path / "custom.db"
    assert settings.queues[QueueName.EMAIL_PROCESSING].concurrency == 4
    assert settings.queues[QueueName.DAILY_BRIEF].max_attempts == 7
    assert settings.queues[QueueName.SOURCE_SYNC].timeout_seconds == 45.5
    assert settings.queues[QueueName.DOCUMENT_PROCESSING] == (
        DEFAULT_QUEUE_POLICIES[QueueName.DOCUMENT_PROCESSING]
    )


def test_invalid_integer_env_value_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEAL_PULSE_DOCUMENT_PROCESSING_CONCURRENCY", "many")

    with pytest.raises(ValueError, match="DEAL_PULSE_DOCUMENT_PROCESSING_CONCURRENCY"):
        Settings.from_env()


def test_validate_rejects_zero_concurrency() -> None:
    settings = Settings()
    settings.queues[QueueName.DAILY_BRIEF] = settings.queues[QueueName.DAILY_BRIEF].with_overrides(
        concurrency=0,
    )

    with pytest.raises(ValueError, match="DEAL_PULSE_DAILY_BRIEF_CONCURRENCY"):
        settings.validate()


def test_validate_rejects_bad_cron_and_timezone() -> None:
    with pytest.raises(ValueError, match="CRON"):
        replace(Settings(), scheduler=SchedulerSettings(cron="every morning")).validate()

    with pytest.raises(ValueError, match="TIMEZONE"):
        replace(Settings(), scheduler=SchedulerSettings(timezone="Mars/Olympus")).validate()
