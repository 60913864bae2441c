# User value: This file gives operators throughput, failure and bottleneck views of the pipeline.
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from schemas.responses import BottlenecksResponse, MetricsResponse
from services.tracker import PipelineTracker, get_tracker

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/processing", response_model=MetricsResponse)
def processing_metrics(
    start: datetime | None = Query(default=None, description="Window start; defaults to end minus the configured window"),
    end: datetime | None = Query(default=None, description="Window end; defaults to now"),
    user_id: str | None = Query(default=None),
    tracker: PipelineTracker = Depends(get_tracker),
):
    return tracker.metrics(start=start, end=end, user_id=user_id)


@router.get("/bottlenecks", response_model=BottlenecksResponse)
# User value: points operators at the stage to scale first.
def bottlenecks(tracker: PipelineTracker = Depends(get_tracker)):
    thresholds = tracker.thresholds
    return BottlenecksResponse(
        bottlenecks=tracker.bottlenecks(),
        avg_time_threshold_ms=thresholds.avg_time_ms,
        queue_size_threshold=thresholds.queue_size,
        window_hours=thresholds.window_hours,
    )
