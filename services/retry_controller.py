# User value: This file lets operators re-run a failed document from a chosen stage without re-uploading it.
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from errors import InvalidRequest, RetryLimitExceeded
from schemas.job_contract import JOB_STATUS_PROCESSING, PIPELINE_STAGES, STAGE_STATUS_PENDING, stages_from
from schemas.jobs import ProcessingJob
from services.job_store import JobStore


@dataclass
class RetryOutcome:
    retry_attempt: int
    job: ProcessingJob


def reset_from_stage(
    job: ProcessingJob,
    *,
    from_stage: Optional[str],
    max_retries: int,
    now: datetime,
) -> tuple[int, ProcessingJob]:
    """Return (attempt, new job) with ``from_stage`` and every later stage back at pending.

    Downstream stages are reset too since their results were built on the
    output being retried. Raises RetryLimitExceeded when the retried stage
    has already used ``max_retries`` attempts.
    """
    stage = str(from_stage or job.current_stage).strip().lower()
    if stage not in PIPELINE_STAGES:
        raise InvalidRequest(
            f"Unknown pipeline stage: {stage}",
            details={"stage": stage, "allowed": list(PIPELINE_STAGES)},
        )
    if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
        raise InvalidRequest("max_retries must be a non-negative integer", details={"max_retries": max_retries})

    retry_count = job.stages[stage].retry_count
    if retry_count >= max_retries:
        raise RetryLimitExceeded(job.document_id, stage, retry_count, max_retries)

    updated = job.model_copy(deep=True)
    for name in stages_from(stage):
        record = updated.stages[name]
        record.status = STAGE_STATUS_PENDING
        record.error = None
        record.started_at = None
        record.completed_at = None
        record.progress = None
        record.details = None

    attempt = retry_count + 1
    updated.stages[stage].retry_count = attempt
    updated.current_stage = stage
    updated.overall_status = JOB_STATUS_PROCESSING
    updated.error = None
    updated.completed_at = None
    updated.updated_at = now
    return attempt, updated


def retry_from_stage(
    store: JobStore,
    document_id: str,
    *,
    from_stage: Optional[str],
    max_retries: int,
    now: datetime,
) -> RetryOutcome:
    attempts: list[int] = []

    def _mutate(job: ProcessingJob) -> ProcessingJob:
        attempt, updated = reset_from_stage(job, from_stage=from_stage, max_retries=max_retries, now=now)
        attempts.append(attempt)
        return updated

    job = store.update(document_id, _mutate)
    # The mutate function can run more than once under optimistic retries; the last run is what was stored.
    return RetryOutcome(retry_attempt=attempts[-1], job=job)
