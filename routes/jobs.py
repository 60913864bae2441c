# User value: This file exposes job creation, stage reporting, listing, retry and cancel over HTTP.
from fastapi import APIRouter, Depends, Query

from schemas.requests import CancelRequest, CreateJobRequest, RetryRequest, StageUpdateRequest
from schemas.responses import CancelResponse, JobPageResponse, JobStatusResponse, RetryResponse
from services.tracker import PipelineTracker, get_tracker

router = APIRouter(tags=["jobs"])


@router.post("/jobs", status_code=201, response_model=JobStatusResponse)
# User value: ingestion registers each upload so its progress is visible from the first second.
def create_job(payload: CreateJobRequest, tracker: PipelineTracker = Depends(get_tracker)):
    job = tracker.create_job(payload.document_id, payload.user_id, payload.metadata)
    return JobStatusResponse.from_job(job)


@router.put("/jobs/{document_id}/stages/{stage}", response_model=JobStatusResponse)
# User value: stage executors report progress here so users see live pipeline movement.
def update_stage(
    document_id: str,
    stage: str,
    payload: StageUpdateRequest,
    tracker: PipelineTracker = Depends(get_tracker),
):
    job = tracker.advance(
        document_id,
        stage,
        payload.status,
        progress=payload.progress,
        details=payload.details,
        error=payload.error,
    )
    return JobStatusResponse.from_job(job)


@router.get("/jobs", response_model=JobPageResponse)
# User value: dashboards page through jobs newest first with simple filters.
def list_jobs(
    user_id: str | None = Query(default=None, description="Only jobs owned by this user"),
    status: str | None = Query(default=None, description="Overall status, e.g. processing/failed"),
    stage: str | None = Query(default=None, description="Current stage, e.g. parsing"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    tracker: PipelineTracker = Depends(get_tracker),
):
    result = tracker.query_jobs(user_id=user_id, status=status, stage=stage, page=page, limit=limit)
    return JobPageResponse(
        jobs=[JobStatusResponse.from_job(job) for job in result.jobs],
        total=result.total,
        has_more=result.has_more,
        page=result.page,
        limit=result.limit,
        next_page=result.page + 1 if result.has_more else None,
    )


@router.get("/jobs/{document_id}", response_model=JobStatusResponse)
def get_job(document_id: str, tracker: PipelineTracker = Depends(get_tracker)):
    return JobStatusResponse.from_job(tracker.get_job(document_id))


@router.post("/jobs/{document_id}/retry", response_model=RetryResponse)
# User value: operators resume a failed document from any stage without a new upload.
def retry_job(
    document_id: str,
    payload: RetryRequest | None = None,
    tracker: PipelineTracker = Depends(get_tracker),
):
    payload = payload or RetryRequest()
    outcome = tracker.retry_from_stage(
        document_id,
        from_stage=payload.from_stage,
        max_retries=payload.max_retries,
    )
    return RetryResponse(
        document_id=document_id,
        retry_attempt=outcome.retry_attempt,
        job=JobStatusResponse.from_job(outcome.job),
    )


@router.post("/jobs/{document_id}/cancel", response_model=CancelResponse)
# User value: users stop work they no longer need; finished jobs are left untouched.
def cancel_job(
    document_id: str,
    payload: CancelRequest | None = None,
    tracker: PipelineTracker = Depends(get_tracker),
):
    payload = payload or CancelRequest()
    outcome = tracker.cancel(document_id, payload.reason)
    return CancelResponse(
        document_id=document_id,
        status=outcome.job.overall_status,
        message="Job cancelled" if outcome.changed else "Job already finished",
        job=JobStatusResponse.from_job(outcome.job),
    )
