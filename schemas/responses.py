# User value: This file defines what status, metrics and maintenance callers get back from the tracker.
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from schemas.job_contract import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    PIPELINE_STAGES,
    STAGE_DONE_STATUSES,
    STAGE_STATUS_PROCESSING,
    TERMINAL_STATUSES,
)
from schemas.jobs import ProcessingJob, Stage


class JobStatusResponse(ProcessingJob):
    # User value: one number for progress bars, derived from the per-stage records.
    progress_percentage: int = Field(default=0, ge=0, le=100)
    # User value: tells UIs whether to offer a retry button for this failure.
    retry_available: bool = False
    # User value: rough time left so users can decide whether to wait.
    estimated_remaining_ms: Optional[float] = Field(default=None, ge=0)

    @classmethod
    def from_job(cls, job: ProcessingJob) -> "JobStatusResponse":
        return cls(
            **job.model_dump(),
            progress_percentage=progress_percentage(job),
            retry_available=bool(
                job.overall_status == JOB_STATUS_FAILED and job.error is not None and job.error.retryable
            ),
            estimated_remaining_ms=estimated_remaining_ms(job),
        )


def progress_percentage(job: ProcessingJob) -> int:
    if job.overall_status == JOB_STATUS_COMPLETED:
        return 100
    share = 100 / len(PIPELINE_STAGES)
    done = sum(1 for stage in PIPELINE_STAGES if job.stages[stage].status in STAGE_DONE_STATUSES)
    value = done * share
    current = job.stages[job.current_stage]
    if current.status not in STAGE_DONE_STATUSES and current.progress:
        value += share * current.progress / 100
    return max(0, min(100, int(round(value))))


def estimated_remaining_ms(job: ProcessingJob) -> Optional[float]:
    if job.overall_status in TERMINAL_STATUSES:
        return 0.0
    remaining = 0.0
    known = False
    for stage in PIPELINE_STAGES:
        record = job.stages[stage]
        if record.status in STAGE_DONE_STATUSES or record.estimated_duration_ms is None:
            continue
        known = True
        estimate = record.estimated_duration_ms
        if record.status == STAGE_STATUS_PROCESSING and record.progress:
            estimate *= (100 - record.progress) / 100
        remaining += estimate
    return round(remaining, 1) if known else None


class JobPageResponse(BaseModel):
    jobs: List[JobStatusResponse] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    has_more: bool = False
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    next_page: Optional[int] = None


class RetryResponse(BaseModel):
    document_id: str
    retry_attempt: int = Field(..., ge=1)
    success: bool = True
    job: JobStatusResponse


class CancelResponse(BaseModel):
    document_id: str
    status: str
    message: str
    job: JobStatusResponse


class StagePerformance(BaseModel):
    stage: Stage
    average_time_ms: float = Field(default=0.0, ge=0.0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    completed_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    queue_size: int = Field(default=0, ge=0)


class MetricsResponse(BaseModel):
    # User value: gives dashboards one consistent snapshot of pipeline health for a time window.
    window_start: datetime
    window_end: datetime
    total_documents: int = Field(default=0, ge=0)
    completed_documents: int = Field(default=0, ge=0)
    failed_documents: int = Field(default=0, ge=0)
    cancelled_documents: int = Field(default=0, ge=0)
    processing_documents: int = Field(default=0, ge=0)
    average_processing_time_ms: float = Field(default=0.0, ge=0.0)
    throughput_per_hour: float = Field(default=0.0, ge=0.0)
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    stage_performance: List[StagePerformance] = Field(default_factory=list)


class Bottleneck(BaseModel):
    # User value: names the slow or congested stage so operators know where to scale first.
    stage: Stage
    average_time_ms: float = Field(default=0.0, ge=0.0)
    queue_size: int = Field(default=0, ge=0)
    reasons: List[str] = Field(default_factory=list)


class BottlenecksResponse(BaseModel):
    bottlenecks: List[Bottleneck] = Field(default_factory=list)
    avg_time_threshold_ms: float
    queue_size_threshold: int
    window_hours: int


class CleanupResponse(BaseModel):
    before: datetime
    removed: int = Field(default=0, ge=0)
