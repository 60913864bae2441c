# User value: This file serves the polling endpoint clients use to follow one document.
from fastapi import APIRouter, Depends

from schemas.responses import JobStatusResponse
from services.tracker import PipelineTracker, get_tracker
from utils.stage_logging import log_stage

router = APIRouter()


@router.get("/status/{document_id}", response_model=JobStatusResponse)
# User value: loads latest pipeline state so users see current progress and time left.
def get_status(document_id: str, tracker: PipelineTracker = Depends(get_tracker)):
    job = tracker.get_job(document_id)
    view = JobStatusResponse.from_job(job)
    log_stage(
        document_id=document_id,
        operation="status_read",
        event="COMPLETED",
        user=job.user_id,
        stage=job.current_stage,
        status=job.overall_status,
        progress=view.progress_percentage,
    )
    return view
