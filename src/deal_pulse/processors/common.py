"""Helpers shared by queue processors."""

from __future__ import annotations

from typing import TypeVar

from deal_pulse.jobs.models import JobView

PayloadT = TypeVar("PayloadT")


def expect_payload(job: JobView, payload_type: type[PayloadT]) -> PayloadT:
    """Return the job payload, rejecting jobs routed to the wrong processor."""

    if not isinstance(job.payload, payload_type):
        raise TypeError(
            f"Job {job.job_id} on {job.queue_name.value} carries "
            f"{type(job.payload).__name__}, expected {payload_type.__name__}",
        )
    return job.payload
