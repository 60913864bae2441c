# User value: This file handles cancellation and old-record cleanup so the status store stays accurate and bounded.
from dataclasses import dataclass
from datetime import datetime

from schemas.job_contract import ERROR_CODE_USER_CANCELLED, JOB_STATUS_CANCELLED
from schemas.jobs import ProcessingError, ProcessingJob
from services.job_store import JobStore
from utils.status_machine import is_terminal

DEFAULT_CANCEL_REASON = "Processing cancelled by user"


@dataclass
class CancelOutcome:
    job: ProcessingJob
    changed: bool


# User value: cancels only jobs still in flight so finished results are never overwritten.
def apply_cancel(job: ProcessingJob, *, reason: str, now: datetime) -> tuple[bool, ProcessingJob]:
    if is_terminal(job.overall_status):
        return False, job

    reason = str(reason or "").strip() or DEFAULT_CANCEL_REASON
    updated = job.model_copy(deep=True)
    updated.overall_status = JOB_STATUS_CANCELLED
    updated.error = ProcessingError(
        code=ERROR_CODE_USER_CANCELLED,
        message=f"Processing cancelled: {reason}",
        stage=job.current_stage,
        timestamp=now,
        retryable=False,
        details={"reason": reason},
    )
    updated.updated_at = now
    return True, updated


def cancel_job(store: JobStore, document_id: str, *, reason: str, now: datetime) -> CancelOutcome:
    changed: list[bool] = []

    def _mutate(job: ProcessingJob) -> ProcessingJob:
        did_change, updated = apply_cancel(job, reason=reason, now=now)
        changed.append(did_change)
        return updated

    job = store.update(document_id, _mutate)
    return CancelOutcome(job=job, changed=changed[-1])


# User value: removes every record created before the cutoff, whatever its status, to bound storage.
def cleanup(store: JobStore, *, before: datetime) -> int:
    return store.delete_created_before(before)
