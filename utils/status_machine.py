# User value: This file keeps document pipeline progress accurate by computing every status change in one place.
import logging
from datetime import datetime
from typing import Optional, Union

from errors import InvalidRequest, StageOrderViolation, StatusTransitionBlocked
from schemas.job_contract import (
    ERROR_CODE_PROCESSING_FAILED,
    JOB_STATUS_CANCELLED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    PIPELINE_STAGES,
    STAGE_DONE_STATUSES,
    STAGE_STATUS_COMPLETED,
    STAGE_STATUS_FAILED,
    STAGE_STATUS_PENDING,
    STAGE_STATUS_PROCESSING,
    STAGE_STATUS_SKIPPED,
    STAGE_STATUSES,
    next_stage,
    stages_before,
)
from schemas.jobs import DEFAULT_ERROR_RETRYABLE, ProcessingError, ProcessingJob, StageErrorReport

logger = logging.getLogger("api.status_machine")

_TERMINAL = {JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_STATUS_CANCELLED}

_ALLOWED = {
    None: {
        JOB_STATUS_PENDING,
        JOB_STATUS_PROCESSING,
        JOB_STATUS_COMPLETED,
        JOB_STATUS_FAILED,
        JOB_STATUS_CANCELLED,
    },
    JOB_STATUS_PENDING: {
        JOB_STATUS_PENDING,
        JOB_STATUS_PROCESSING,
        JOB_STATUS_COMPLETED,
        JOB_STATUS_FAILED,
        JOB_STATUS_CANCELLED,
    },
    JOB_STATUS_PROCESSING: {
        JOB_STATUS_PROCESSING,
        JOB_STATUS_COMPLETED,
        JOB_STATUS_FAILED,
        JOB_STATUS_CANCELLED,
    },
    JOB_STATUS_COMPLETED: {JOB_STATUS_COMPLETED},
    JOB_STATUS_FAILED: {JOB_STATUS_FAILED},
    JOB_STATUS_CANCELLED: {JOB_STATUS_CANCELLED},
}

# Per-stage monotonicity: finished stages only repeat themselves.
_STAGE_ALLOWED = {
    STAGE_STATUS_PENDING: set(STAGE_STATUSES),
    STAGE_STATUS_PROCESSING: set(STAGE_STATUSES),
    STAGE_STATUS_COMPLETED: {STAGE_STATUS_COMPLETED},
    STAGE_STATUS_FAILED: {STAGE_STATUS_FAILED},
    STAGE_STATUS_SKIPPED: {STAGE_STATUS_SKIPPED},
}


def _norm(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    s = str(status).strip().lower()
    return s or None


# User value: blocks status changes that would overwrite a finished or cancelled result.
def is_allowed_transition(current: Optional[str], target: Optional[str]) -> bool:
    target_n = _norm(target)
    if not target_n:
        return True
    current_n = _norm(current)
    allowed = _ALLOWED.get(current_n, _ALLOWED[None])
    return target_n in allowed


def is_allowed_stage_transition(current: Optional[str], target: Optional[str]) -> bool:
    current_n = _norm(current) or STAGE_STATUS_PENDING
    target_n = _norm(target)
    if not target_n:
        return True
    return target_n in _STAGE_ALLOWED.get(current_n, set(STAGE_STATUSES))


def is_terminal(status: Optional[str]) -> bool:
    return _norm(status) in _TERMINAL


def _to_processing_error(
    error: Union[ProcessingError, StageErrorReport, dict, None],
    *,
    stage: str,
    now: datetime,
) -> Optional[ProcessingError]:
    if error is None:
        return None
    if isinstance(error, ProcessingError):
        return error.model_copy(update={"stage": stage})
    if isinstance(error, dict):
        error = StageErrorReport.model_validate(error)
    return ProcessingError(
        code=error.code,
        message=error.message or "Processing failed",
        stage=stage,
        timestamp=now,
        retryable=error.retryable,
        details=error.details,
    )


def _validate_event(stage: str, status: str, progress: Optional[int]) -> None:
    if stage not in PIPELINE_STAGES:
        raise InvalidRequest(
            f"Unknown pipeline stage: {stage}",
            details={"stage": stage, "allowed": list(PIPELINE_STAGES)},
        )
    if status not in STAGE_STATUSES:
        raise InvalidRequest(
            f"Unknown stage status: {status}",
            details={"status": status, "allowed": list(STAGE_STATUSES)},
        )
    if progress is not None and (isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100):
        raise InvalidRequest("Progress must be an integer between 0 and 100", details={"progress": progress})


def _check_upstream(job: ProcessingJob, stage: str) -> None:
    incomplete = [s for s in stages_before(stage) if job.stages[s].status not in STAGE_DONE_STATUSES]
    if incomplete:
        raise StageOrderViolation(
            f"Stage {stage} reported before upstream stages finished: {', '.join(incomplete)}",
            details={"document_id": job.document_id, "stage": stage, "incomplete_stages": incomplete},
        )


def advance_job(
    job: ProcessingJob,
    *,
    stage: str,
    status: str,
    now: datetime,
    progress: Optional[int] = None,
    details: Optional[str] = None,
    error: Union[ProcessingError, StageErrorReport, dict, None] = None,
    strict: bool = False,
) -> ProcessingJob:
    """Apply one stage-update event and return the resulting job.

    The input job is never mutated. Reporting fields (progress, details,
    error) are replaced by the event's values; nothing is merged with what
    an earlier event wrote. In strict mode, processing/completed/skipped
    reports are only accepted once every upstream stage is done.
    """
    stage = _norm(stage) or ""
    status = _norm(status) or ""
    _validate_event(stage, status, progress)

    current = job.stages[stage]
    if job.overall_status == JOB_STATUS_CANCELLED:
        _blocked(job, stage, status, reason="job_cancelled")

    if not is_allowed_stage_transition(current.status, status):
        _blocked(job, stage, status, reason=f"stage_{current.status}")

    if strict and status in (STAGE_STATUS_PROCESSING, STAGE_STATUS_COMPLETED, STAGE_STATUS_SKIPPED):
        _check_upstream(job, stage)

    updated = job.model_copy(deep=True)
    record = updated.stages[stage]
    record.status = status
    record.progress = progress
    record.details = details
    record.error = _to_processing_error(error, stage=stage, now=now)

    if status in STAGE_DONE_STATUSES and current.status == status:
        # Repeated finish report: timestamps and the job position stay where the first one left them.
        if status == STAGE_STATUS_COMPLETED:
            record.progress = 100
    elif status == STAGE_STATUS_PROCESSING:
        if record.started_at is None:
            record.started_at = now
        updated.overall_status = JOB_STATUS_PROCESSING
        updated.current_stage = stage
    elif status in STAGE_DONE_STATUSES:
        record.completed_at = now
        if status == STAGE_STATUS_COMPLETED:
            record.progress = 100
        following = next_stage(stage)
        if following is not None:
            updated.current_stage = following
            updated.overall_status = JOB_STATUS_PROCESSING
        else:
            updated.current_stage = stage
            updated.overall_status = JOB_STATUS_COMPLETED
            updated.completed_at = now
    elif status == STAGE_STATUS_FAILED:
        if record.error is None:
            record.error = ProcessingError(
                code=ERROR_CODE_PROCESSING_FAILED,
                message=details or "Processing failed",
                stage=stage,
                timestamp=now,
                retryable=DEFAULT_ERROR_RETRYABLE,
            )
        updated.current_stage = stage
        updated.overall_status = JOB_STATUS_FAILED
        updated.error = record.error.model_copy()

    if not is_allowed_transition(job.overall_status, updated.overall_status):
        _blocked(job, stage, status, reason=f"job_{job.overall_status}", target=updated.overall_status)

    if job.overall_status in _TERMINAL and job.overall_status == updated.overall_status:
        logger.info(
            "status_transition_idempotent_terminal document_id=%s stage=%s status=%s",
            job.document_id,
            stage,
            job.overall_status,
        )

    updated.updated_at = now
    return updated


def _blocked(job: ProcessingJob, stage: str, status: str, *, reason: str, target: Optional[str] = None) -> None:
    logger.warning(
        "status_transition_blocked document_id=%s stage=%s stage_status=%s requested=%s overall=%s target=%s reason=%s",
        job.document_id,
        stage,
        job.stages[stage].status,
        status,
        job.overall_status,
        target or "",
        reason,
    )
    raise StatusTransitionBlocked(
        f"Invalid status transition for stage {stage} to {status} (job is {job.overall_status}, stage is {job.stages[stage].status})",
        details={
            "document_id": job.document_id,
            "stage": stage,
            "requested_status": status,
            "stage_status": job.stages[stage].status,
            "overall_status": job.overall_status,
            "reason": reason,
        },
    )
