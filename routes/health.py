from fastapi import APIRouter, Depends

from services.tracker import PipelineTracker, get_tracker

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health(tracker: PipelineTracker = Depends(get_tracker)):
    tracker.store.ping()
    return {
        "status": "OK",
        "store": getattr(tracker.store, "backend_name", "unknown"),
    }
