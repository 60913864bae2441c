# User value: This file turns raw job records into throughput, failure and latency numbers for operations dashboards.
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from errors import InvalidQuery
from schemas.job_contract import (
    JOB_STATUS_CANCELLED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PROCESSING,
    PIPELINE_STAGES,
    STAGE_STATUS_COMPLETED,
    STAGE_STATUS_FAILED,
    STAGE_STATUS_PROCESSING,
    TERMINAL_STATUSES,
)
from schemas.jobs import ProcessingJob
from schemas.responses import Bottleneck, MetricsResponse, StagePerformance


def _elapsed_ms(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return max(0.0, (end - start).total_seconds() * 1000.0)


def _mean(values: List[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 3)


# User value: shows which stage currently holds the most documents so stuck work is visible.
def stage_queue_sizes(jobs: Iterable[ProcessingJob]) -> dict[str, int]:
    sizes = {stage: 0 for stage in PIPELINE_STAGES}
    for job in jobs:
        # Cancel leaves stage records as they were, so only live jobs count.
        if job.overall_status in TERMINAL_STATUSES:
            continue
        stage = job.current_stage
        if job.stages[stage].status == STAGE_STATUS_PROCESSING:
            sizes[stage] += 1
    return sizes


def stage_average_times_ms(jobs: Iterable[ProcessingJob]) -> dict[str, float]:
    samples: dict[str, List[float]] = {stage: [] for stage in PIPELINE_STAGES}
    for job in jobs:
        for stage in PIPELINE_STAGES:
            record = job.stages[stage]
            elapsed = _elapsed_ms(record.started_at, record.completed_at)
            if elapsed is not None:
                samples[stage].append(elapsed)
    return {stage: _mean(values) for stage, values in samples.items()}


def validate_window(start: datetime, end: datetime) -> None:
    if start > end:
        raise InvalidQuery(
            "start must not be after end",
            details={"start": start.isoformat(), "end": end.isoformat()},
        )


def compute_metrics(jobs: Iterable[ProcessingJob], *, start: datetime, end: datetime) -> MetricsResponse:
    """Aggregate jobs created inside [start, end].

    Stage latency is wall-clock time between a stage's started_at and
    completed_at; stages without both timestamps contribute no sample.
    """
    validate_window(start, end)
    window = [job for job in jobs if start <= job.created_at <= end]

    total = len(window)
    completed = [job for job in window if job.overall_status == JOB_STATUS_COMPLETED]
    failed = sum(1 for job in window if job.overall_status == JOB_STATUS_FAILED)
    cancelled = sum(1 for job in window if job.overall_status == JOB_STATUS_CANCELLED)
    processing = sum(1 for job in window if job.overall_status == JOB_STATUS_PROCESSING)

    processing_times = [
        elapsed
        for elapsed in (_elapsed_ms(job.created_at, job.completed_at) for job in completed)
        if elapsed is not None
    ]
    window_hours = (end - start).total_seconds() / 3600.0

    averages = stage_average_times_ms(window)
    queues = stage_queue_sizes(window)
    stage_performance = []
    for stage in PIPELINE_STAGES:
        done = sum(1 for job in window if job.stages[stage].status == STAGE_STATUS_COMPLETED)
        broken = sum(1 for job in window if job.stages[stage].status == STAGE_STATUS_FAILED)
        finished = done + broken
        stage_performance.append(
            StagePerformance(
                stage=stage,
                average_time_ms=averages[stage],
                success_rate=round(done / finished, 4) if finished else 1.0,
                completed_count=done,
                failed_count=broken,
                queue_size=queues[stage],
            )
        )

    return MetricsResponse(
        window_start=start,
        window_end=end,
        total_documents=total,
        completed_documents=len(completed),
        failed_documents=failed,
        cancelled_documents=cancelled,
        processing_documents=processing,
        average_processing_time_ms=_mean(processing_times),
        throughput_per_hour=round(len(completed) / window_hours, 4) if window_hours > 0 else 0.0,
        failure_rate=round(failed / total, 4) if total else 0.0,
        stage_performance=stage_performance,
    )


def compute_bottlenecks(
    jobs: Iterable[ProcessingJob],
    *,
    now: datetime,
    window: timedelta,
    avg_time_threshold_ms: float,
    queue_size_threshold: int,
) -> List[Bottleneck]:
    """Flag stages whose recent average time or current queue exceeds a threshold.

    Queue size looks at every job; average time only at jobs created within
    ``window`` of ``now`` so old outliers age out.
    """
    all_jobs = list(jobs)
    since = now - window
    averages = stage_average_times_ms(job for job in all_jobs if job.created_at >= since)
    queues = stage_queue_sizes(all_jobs)

    flagged: List[Bottleneck] = []
    for stage in PIPELINE_STAGES:
        reasons = []
        if averages[stage] > avg_time_threshold_ms:
            reasons.append("average_time_above_threshold")
        if queues[stage] > queue_size_threshold:
            reasons.append("queue_size_above_threshold")
        if reasons:
            flagged.append(
                Bottleneck(
                    stage=stage,
                    average_time_ms=averages[stage],
                    queue_size=queues[stage],
                    reasons=reasons,
                )
            )
    flagged.sort(key=lambda b: (b.average_time_ms, b.queue_size), reverse=True)
    return flagged
