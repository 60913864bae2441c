# User value: This file lets operators prune old status records on demand.
from fastapi import APIRouter, Depends, HTTPException

from schemas.requests import CleanupRequest
from schemas.responses import CleanupResponse
from services.feature_flags import is_cleanup_endpoint_enabled
from services.tracker import PipelineTracker, get_tracker

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup(
    payload: CleanupRequest | None = None,
    tracker: PipelineTracker = Depends(get_tracker),
):
    if not is_cleanup_endpoint_enabled():
        raise HTTPException(status_code=404, detail="Not found")
    payload = payload or CleanupRequest()
    before, removed = tracker.cleanup(payload.before_date)
    return CleanupResponse(before=before, removed=removed)
