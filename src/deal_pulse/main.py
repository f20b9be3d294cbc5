"""CLI entrypoint for deal-pulse."""

import logging
from datetime import date, datetime
from pathlib import Path

import rich_click as click

from deal_pulse import __version__
from deal_pulse.controllers import (
    BriefsGenerateCommand,
    BriefsShowCommand,
    BriefsTriggerCommand,
    DealAddCommand,
    DealListCommand,
    DealPulseCliController,
    EnqueueBriefCommand,
    EnqueueDocumentCommand,
    EnqueueEmailCommand,
    EnqueueSyncCommand,
    QueueClearFailedCommand,
    QueueJobCommand,
    QueueListCommand,
    QueueStatsCommand,
    SchedulerNextCommand,
    SchedulerRunCommand,
    SourceConnectCommand,
    SourceListCommand,
    WorkerRunCommand,
)
from deal_pulse.errors import EntityNotFoundError
from deal_pulse.jobs.models import (
    DocumentOperation,
    EmailOperation,
    JobStatus,
    QueueName,
    SyncType,
)
from deal_pulse.models import DealStatus, SourceType

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DealPulseCliController()

QUEUE_CHOICE = click.Choice([queue.value for queue in QueueName], case_sensitive=False)
SOURCE_CHOICE = click.Choice([source.value for source in SourceType], case_sensitive=False)
DATE_TYPE = click.DateTime(formats=["%Y-%m-%d"])


@click.group()
@click.version_option(version=__version__, prog_name="deal-pulse")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level for workers and scheduler.",
)
def deal_pulse(log_level: str) -> None:
    """Deal pulse CLI: job queues, workers and daily deal briefs."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@deal_pulse.group()
def worker() -> None:
    """Worker pool commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--queue",
    "queues",
    type=QUEUE_CHOICE,
    multiple=True,
    help="Queue to serve. Can be repeated; all queues by default.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop each pool after this many consecutive empty polls.",
)
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Drain ready jobs and exit on the first empty poll.",
)
def worker_run(
    db_path: Path | None,
    queues: tuple[str, ...],
    max_idle_polls: int | None,
    once: bool,
) -> None:
    """Run one worker pool per queue until interrupted or idle."""

    _emit_lines(
        CONTROLLER.run_workers(
            WorkerRunCommand(
                db_path=db_path,
                queues=tuple(queue.lower() for queue in queues),
                max_idle_polls=1 if once else max_idle_polls,
            ),
        ),
    )


@deal_pulse.group()
def queue() -> None:
    """Queue inspection and maintenance commands."""


@queue.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
def queue_stats(db_path: Path | None, output_format: str) -> None:
    """Show waiting/active/completed/failed/delayed counts per queue."""

    _emit_lines(
        CONTROLLER.queue_stats(
            QueueStatsCommand(db_path=db_path, output_format=output_format.lower()),
        ),
    )


@queue.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--queue", "queue_name", type=QUEUE_CHOICE, default=None, help="Queue filter.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def queue_list(
    db_path: Path | None,
    queue_name: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List jobs, newest first."""

    _emit_lines(
        CONTROLLER.list_jobs(
            QueueListCommand(
                db_path=db_path,
                queue=queue_name.lower() if queue_name else None,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@queue.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def queue_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with its event history."""

    _emit_lines(CONTROLLER.inspect_job(QueueJobCommand(db_path=db_path, job_id=job_id)))


@queue.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def queue_retry(db_path: Path | None, job_id: str) -> None:
    """Manually re-queue a failed job with a fresh attempt budget."""

    try:
        lines = CONTROLLER.retry_job(QueueJobCommand(db_path=db_path, job_id=job_id))
    except RuntimeError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@queue.command("clear-failed")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--queue", "queue_name", type=QUEUE_CHOICE, required=True, help="Queue name.")
def queue_clear_failed(db_path: Path | None, queue_name: str) -> None:
    """Delete failed jobs of one queue."""

    _emit_lines(
        CONTROLLER.clear_failed(
            QueueClearFailedCommand(db_path=db_path, queue=queue_name.lower()),
        ),
    )


@deal_pulse.group()
def enqueue() -> None:
    """Producer commands."""


@enqueue.command("brief")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option("--date", "brief_date", type=DATE_TYPE, default=None, help="Brief date, YYYY-MM-DD.")
def enqueue_brief(db_path: Path | None, deal_id: str, brief_date: datetime | None) -> None:
    """Enqueue a daily brief job; repeats for the same deal and date are deduplicated."""

    _emit_lines(
        CONTROLLER.enqueue_brief(
            EnqueueBriefCommand(db_path=db_path, deal_id=deal_id, brief_date=_as_date(brief_date)),
        ),
    )


@enqueue.command("sync")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option("--source", "source_type", type=SOURCE_CHOICE, required=True, help="Source type.")
@click.option(
    "--sync-type",
    type=click.Choice([sync.value for sync in SyncType], case_sensitive=False),
    default=SyncType.INCREMENTAL.value,
    show_default=True,
    help="Full or incremental sync.",
)
def enqueue_sync(db_path: Path | None, deal_id: str, source_type: str, sync_type: str) -> None:
    """Enqueue a source sync job."""

    _emit_lines(
        CONTROLLER.enqueue_sync(
            EnqueueSyncCommand(
                db_path=db_path,
                deal_id=deal_id,
                source_type=source_type.lower(),
                sync_type=sync_type.lower(),
            ),
        ),
    )


@enqueue.command("document")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--document-id", required=True, help="Document id.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option(
    "--operation",
    type=click.Choice([op.value for op in DocumentOperation], case_sensitive=False),
    required=True,
    help="Enrichment operation.",
)
def enqueue_document(db_path: Path | None, document_id: str, deal_id: str, operation: str) -> None:
    """Enqueue a document enrichment job."""

    _emit_lines(
        CONTROLLER.enqueue_document(
            EnqueueDocumentCommand(
                db_path=db_path,
                document_id=document_id,
                deal_id=deal_id,
                operation=operation.lower(),
            ),
        ),
    )


@enqueue.command("email")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--email-id", required=True, help="Communication id.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option(
    "--operation",
    type=click.Choice([op.value for op in EmailOperation], case_sensitive=False),
    required=True,
    help="Enrichment operation.",
)
def enqueue_email(db_path: Path | None, email_id: str, deal_id: str, operation: str) -> None:
    """Enqueue an email enrichment job."""

    _emit_lines(
        CONTROLLER.enqueue_email(
            EnqueueEmailCommand(
                db_path=db_path,
                email_id=email_id,
                deal_id=deal_id,
                operation=operation.lower(),
            ),
        ),
    )


@deal_pulse.group()
def briefs() -> None:
    """Daily brief commands."""


@briefs.command("trigger")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--date",
    "brief_date",
    type=DATE_TYPE,
    default=None,
    help="Brief date, YYYY-MM-DD. Defaults to today in the scheduler timezone.",
)
def briefs_trigger(db_path: Path | None, brief_date: datetime | None) -> None:
    """Enqueue brief jobs for every active deal now."""

    _emit_lines(
        CONTROLLER.trigger_briefs(
            BriefsTriggerCommand(db_path=db_path, brief_date=_as_date(brief_date)),
        ),
    )


@briefs.command("generate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option("--date", "brief_date", type=DATE_TYPE, default=None, help="Brief date, YYYY-MM-DD.")
def briefs_generate(db_path: Path | None, deal_id: str, brief_date: datetime | None) -> None:
    """Generate and publish one brief synchronously, without the queue."""

    try:
        lines = CONTROLLER.generate_brief(
            BriefsGenerateCommand(db_path=db_path, deal_id=deal_id, brief_date=_as_date(brief_date)),
        )
    except EntityNotFoundError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@briefs.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option(
    "--date",
    "brief_date",
    type=DATE_TYPE,
    default=None,
    help="Brief date, YYYY-MM-DD. Latest brief when omitted.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
def briefs_show(
    db_path: Path | None,
    deal_id: str,
    brief_date: datetime | None,
    output_format: str,
) -> None:
    """Print a stored brief."""

    _emit_lines(
        CONTROLLER.show_brief(
            BriefsShowCommand(
                db_path=db_path,
                deal_id=deal_id,
                brief_date=_as_date(brief_date),
                output_format=output_format.lower(),
            ),
        ),
    )


@deal_pulse.group()
def scheduler() -> None:
    """Daily brief scheduler commands."""


@scheduler.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-fires",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many fan-outs.",
)
def scheduler_run(db_path: Path | None, max_fires: int | None) -> None:
    """Run the cron scheduler in the foreground."""

    _emit_lines(CONTROLLER.run_scheduler(SchedulerRunCommand(db_path=db_path, max_fires=max_fires)))


@scheduler.command("next")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--count",
    type=click.IntRange(min=1, max=30),
    default=3,
    show_default=True,
    help="How many upcoming fire times to print.",
)
def scheduler_next(db_path: Path | None, count: int) -> None:
    """Print upcoming fire times and the brief date each one targets."""

    _emit_lines(CONTROLLER.next_fire_times(SchedulerNextCommand(db_path=db_path, count=count)))


@deal_pulse.group()
def deals() -> None:
    """Deal commands."""


@deals.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Deal name.")
@click.option("--deal-id", default=None, help="Optional explicit deal id.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in DealStatus], case_sensitive=False),
    default=DealStatus.ACTIVE.value,
    show_default=True,
    help="Deal status.",
)
def deals_add(db_path: Path | None, name: str, deal_id: str | None, status: str) -> None:
    """Create a deal."""

    _emit_lines(
        CONTROLLER.add_deal(
            DealAddCommand(db_path=db_path, name=name, status=status.lower(), deal_id=deal_id),
        ),
    )


@deals.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in DealStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
def deals_list(db_path: Path | None, status: str | None) -> None:
    """List deals."""

    _emit_lines(
        CONTROLLER.list_deals(
            DealListCommand(db_path=db_path, status=status.lower() if status else None),
        ),
    )


@deal_pulse.group()
def sources() -> None:
    """Source connection commands."""


@sources.command("connect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--deal-id", required=True, help="Deal id.")
@click.option("--source", "source_type", type=SOURCE_CHOICE, required=True, help="Source type.")
@click.option("--access-token", default=None, help="OAuth access token.")
@click.option("--refresh-token", default=None, help="OAuth refresh token.")
@click.option(
    "--expires-in",
    "expires_in_seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Access token lifetime in seconds.",
)
@click.option(
    "--config",
    "config_json",
    default=None,
    help='Source config as JSON, for example {"folder_id": "abc"}.',
)
@click.option("--inactive", is_flag=True, default=False, help="Register the connection disabled.")
def sources_connect(  # noqa: PLR0913
    db_path: Path | None,
    deal_id: str,
    source_type: str,
    access_token: str | None,
    refresh_token: str | None,
    expires_in_seconds: int | None,
    config_json: str | None,
    inactive: bool,
) -> None:
    """Register or replace the connection of one source for a deal."""

    try:
        lines = CONTROLLER.connect_source(
            SourceConnectCommand(
                db_path=db_path,
                deal_id=deal_id,
                source_type=source_type.lower(),
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in_seconds=expires_in_seconds,
                config_json=config_json,
                inactive=inactive,
            ),
        )
    except ValueError as error:
        raise click.ClickException(f"Invalid source config: {error}") from error
    _emit_lines(lines)


@sources.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--deal-id", required=True, help="Deal id.")
def sources_list(db_path: Path | None, deal_id: str) -> None:
    """List source connections of a deal."""

    _emit_lines(CONTROLLER.list_sources(SourceListCommand(db_path=db_path, deal_id=deal_id)))


def _as_date(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    deal_pulse()
