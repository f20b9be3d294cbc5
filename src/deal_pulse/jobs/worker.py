"""Queue workers: one pool of N threads per queue, each slot claiming and running jobs."""

from __future__ import annotations

import concurrent.futures
import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, NamedTuple, Protocol

from deal_pulse.errors import JobTimeoutError, UnknownProcessorError
from deal_pulse.jobs.failure_classifier import classify_job_failure, summarize_error
from deal_pulse.jobs.models import FailureClass, JobView, QueueName
from deal_pulse.jobs.policies import QueuePolicy
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.storage.common import utc_now

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[int], None]


class JobProcessor(Protocol):
    """Business logic for one queue. Raising fails the attempt."""

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    timeouts: int = 0
    idle_polls: int = 0

    def merge(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.timeouts += other.timeouts
        self.idle_polls += other.idle_polls


class RetryOutcome(NamedTuple):
    retried: bool
    failed: bool


class QueueWorker:
    """One worker slot: claims jobs from a single queue and runs them under a timeout."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue_name: QueueName,
        repository: QueueRepository,
        processor: JobProcessor,
        policy: QueuePolicy,
        worker_id: str,
        poll_interval_seconds: float = 1.0,
        stale_after_seconds: int = 900,
        heartbeat_interval_seconds: float = 10.0,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.queue_name = queue_name
        self.repository = repository
        self.processor = processor
        self.policy = policy
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.stop_event = stop_event or threading.Event()
        self._executor = self._new_executor()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self.stop_event.is_set():
            summary.idle_polls = 1
            return summary

        job = self._claim_job()
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        logger.info(
            "Processing %s job %s (attempt %d/%d) on %s",
            job.job_type,
            job.job_id,
            job.attempt,
            job.max_attempts,
            self.queue_name.value,
        )
        try:
            result = self._execute(job)
        except Exception as error:  # noqa: BLE001
            outcome = self._handle_retry_or_fail(job=job, error=error)
            summary.retried = int(outcome.retried)
            summary.failed = int(outcome.failed)
            summary.timeouts = int(isinstance(error, JobTimeoutError))
            return summary

        if self.repository.complete(
            job_id=job.job_id,
            attempt=job.attempt,
            result=result,
            keep_completed=self.policy.keep_completed,
        ):
            summary.succeeded = 1
            logger.info("Completed %s job %s", job.job_type, job.job_id)
        else:
            logger.warning(
                "Job %s attempt %d finished after losing its claim; result dropped",
                job.job_id,
                job.attempt,
            )
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until stopped, idle for ``max_idle_polls`` polls, or ``max_jobs`` processed.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
            max_idle_polls: Consecutive empty polls before exiting (None = never).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        try:
            while not self.stop_event.is_set():
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    break

                summary = self.run_once()
                aggregate.merge(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                    self.stop_event.wait(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0
        finally:
            self.close()
        return aggregate

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _claim_job(self) -> JobView | None:
        self.repository.recover_stale(
            queue_name=self.queue_name,
            stale_after=timedelta(seconds=self.stale_after_seconds),
        )
        if self.stop_event.is_set():
            return None
        return self.repository.claim_next(queue_name=self.queue_name, worker_id=self.worker_id)

    def _execute(self, job: JobView) -> dict[str, Any]:
        def _report_progress(progress: int) -> None:
            self.repository.update_progress(job_id=job.job_id, attempt=job.attempt, progress=progress)

        future = self._executor.submit(self.processor.process, job, _report_progress)
        deadline = time.monotonic() + job.timeout_seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                # The running thread cannot be interrupted; abandon it with its executor.
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = self._new_executor()
                raise JobTimeoutError(job_id=job.job_id, timeout_seconds=job.timeout_seconds)
            done, _ = concurrent.futures.wait(
                [future],
                timeout=min(remaining, self.heartbeat_interval_seconds),
            )
            if done:
                return future.result() or {}
            self.repository.touch(job_id=job.job_id, attempt=job.attempt)

    def _handle_retry_or_fail(self, *, job: JobView, error: Exception) -> RetryOutcome:
        classification = classify_job_failure(error)
        error_summary = summarize_error(error)
        if job.attempt < job.max_attempts:
            delay_seconds = job.backoff.delay_after(job.attempt)
            if isinstance(error, JobTimeoutError):
                # The abandoned attempt may still be running; keep the retry behind it.
                delay_seconds = max(delay_seconds, job.timeout_seconds)
            retried = self.repository.schedule_retry(
                job_id=job.job_id,
                attempt=job.attempt,
                run_after=utc_now() + timedelta(seconds=delay_seconds),
                failure_class=classification.failure_class,
                error_summary=error_summary,
            )
            logger.warning(
                "Job %s attempt %d/%d failed (%s): %s; retry in %.1fs",
                job.job_id,
                job.attempt,
                job.max_attempts,
                classification.failure_class.value,
                error_summary,
                delay_seconds,
            )
            return RetryOutcome(retried=retried, failed=False)

        failed = self.repository.fail(
            job_id=job.job_id,
            attempt=job.attempt,
            failure_class=classification.failure_class,
            error_summary=error_summary,
            keep_failed=self.policy.keep_failed,
        )
        logger.error(
            "Job %s failed permanently after %d attempts (%s): %s",
            job.job_id,
            job.attempt,
            classification.failure_class.value,
            error_summary,
            exc_info=error if classification.failure_class is FailureClass.UNKNOWN else None,
        )
        return RetryOutcome(retried=False, failed=failed)

    def _new_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        return concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"{self.worker_id}-job",
        )


class WorkerPool:
    """N worker slots for one queue, each running on its own thread."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue_name: QueueName,
        repository: QueueRepository,
        processor: JobProcessor,
        policy: QueuePolicy,
        worker_id: str,
        poll_interval_seconds: float = 1.0,
        stale_after_seconds: int = 900,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.queue_name = queue_name
        self.policy = policy
        self.stop_event = stop_event or threading.Event()
        self.workers = [
            QueueWorker(
                queue_name=queue_name,
                repository=repository,
                processor=processor,
                policy=policy,
                worker_id=f"{worker_id}:{queue_name.value}:{slot}",
                poll_interval_seconds=poll_interval_seconds,
                stale_after_seconds=stale_after_seconds,
                stop_event=self.stop_event,
            )
            for slot in range(policy.concurrency)
        ]
        self._threads: list[threading.Thread] = []
        self._summaries: list[WorkerRunSummary] = []
        self._lock = threading.Lock()

    def start(self, *, max_idle_polls: int | None = None) -> None:
        for worker in self.workers:
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker, max_idle_polls),
                name=worker.worker_id,
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Started %d workers on %s", len(self.workers), self.queue_name.value)

    def join(self, timeout: float | None = None) -> WorkerRunSummary:
        for thread in self._threads:
            thread.join(timeout)
        aggregate = WorkerRunSummary()
        with self._lock:
            for summary in self._summaries:
                aggregate.merge(summary)
        return aggregate

    def is_alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _run_worker(self, worker: QueueWorker, max_idle_polls: int | None) -> None:
        try:
            summary = worker.run_loop(max_idle_polls=max_idle_polls)
        except Exception:
            logger.exception("Worker %s crashed", worker.worker_id)
            raise
        with self._lock:
            self._summaries.append(summary)


class WorkerSupervisor:
    """Runs one pool per registered queue and stops them all on SIGINT/SIGTERM."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QueueRepository,
        processors: Mapping[QueueName, JobProcessor],
        policies: Mapping[QueueName, QueuePolicy],
        worker_id: str,
        queues: tuple[QueueName, ...] | None = None,
        poll_interval_seconds: float = 1.0,
        stale_after_seconds: int = 900,
        graceful_shutdown_seconds: int = 30,
    ) -> None:
        self.stop_event = threading.Event()
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        selected = queues or tuple(processors)
        missing = [queue_name.value for queue_name in selected if queue_name not in processors]
        if missing:
            raise UnknownProcessorError(f"No processor registered for: {', '.join(missing)}")
        self.pools = {
            queue_name: WorkerPool(
                queue_name=queue_name,
                repository=repository,
                processor=processors[queue_name],
                policy=policies[queue_name],
                worker_id=worker_id,
                poll_interval_seconds=poll_interval_seconds,
                stale_after_seconds=stale_after_seconds,
                stop_event=self.stop_event,
            )
            for queue_name in selected
        }

    def run(self, *, max_idle_polls: int | None = None) -> dict[QueueName, WorkerRunSummary]:
        """Start every pool and block until they exit or a stop signal arrives."""

        with self._signal_handlers():
            for pool in self.pools.values():
                pool.start(max_idle_polls=max_idle_polls)
            while any(pool.is_alive() for pool in self.pools.values()):
                if self.stop_event.wait(0.2):
                    break
            timeout = float(self.graceful_shutdown_seconds) if self.stop_event.is_set() else None
            return {queue_name: pool.join(timeout) for queue_name, pool in self.pools.items()}

    def request_stop(self) -> None:
        self.stop_event.set()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping workers", name)
            self.request_stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
