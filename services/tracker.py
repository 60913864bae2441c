# User value: This file is the single entry point for recording and reading document pipeline status.
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, List, Optional

import config
from errors import InvalidRequest, TrackerError
from schemas.job_contract import PIPELINE_STAGES
from schemas.jobs import ProcessingJob, ProcessingMetadata, StageRecord
from schemas.responses import Bottleneck, MetricsResponse
from services import maintenance, retry_controller
from services.feature_flags import is_strict_stage_order_enabled
from services.job_store import JobFilters, JobPage, JobStore, create_store_from_env
from services.pipeline_metrics import compute_bottlenecks, compute_metrics, validate_window
from services.stage_eta import estimate_stage_durations_ms
from utils.metrics import incr
from utils.stage_logging import log_stage
from utils.status_machine import advance_job

logger = logging.getLogger("api.tracker")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Naive datetimes from query strings are read as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class BottleneckThresholds:
    window_hours: int = 24
    avg_time_ms: float = 30000.0
    queue_size: int = 10


class PipelineTracker:
    """Wires the store to the state machine, retry and maintenance rules.

    Every mutation goes through ``store.update`` so the rule checks run
    atomically with the write. Successful and rejected operations are both
    logged through ``log_stage`` and counted.
    """

    def __init__(
        self,
        store: JobStore,
        *,
        clock: Clock = utc_now,
        strict_stage_order: bool = False,
        default_max_retries: int = 3,
        metrics_window_hours: int = 24,
        retention_days: int = 30,
        thresholds: Optional[BottleneckThresholds] = None,
    ) -> None:
        self.store = store
        self._clock = clock
        self.strict_stage_order = strict_stage_order
        self.default_max_retries = default_max_retries
        self.metrics_window_hours = metrics_window_hours
        self.retention_days = retention_days
        self.thresholds = thresholds or BottleneckThresholds()

    def now(self) -> datetime:
        return as_utc(self._clock())

    def _failed(self, operation: str, document_id: str, exc: TrackerError, **extra) -> None:
        incr("tracker_errors_total", operation=operation, error_code=exc.error_code)
        log_stage(
            document_id=document_id,
            operation=operation,
            event="FAILED",
            error=exc.message,
            error_code=exc.error_code,
            **extra,
        )

    # User value: registers a document with per-stage time estimates as soon as it is uploaded.
    def create_job(self, document_id: str, user_id: str, metadata: ProcessingMetadata) -> ProcessingJob:
        document_id = str(document_id or "").strip()
        user_id = str(user_id or "").strip()
        if not document_id or not user_id:
            raise InvalidRequest(
                "document_id and user_id are required",
                details={"document_id": document_id, "user_id": user_id},
            )

        now = self.now()
        estimates = estimate_stage_durations_ms(
            file_size_bytes=metadata.file_size,
            content_type=metadata.content_type,
            processing_mode=metadata.processing_mode,
        )
        job = ProcessingJob(
            document_id=document_id,
            user_id=user_id,
            metadata=metadata,
            stages={stage: StageRecord(estimated_duration_ms=estimates[stage]) for stage in PIPELINE_STAGES},
            created_at=now,
            updated_at=now,
        )
        try:
            created = self.store.create(job)
        except TrackerError as exc:
            self._failed("create", document_id, exc, user=user_id)
            raise

        incr("tracker_jobs_created_total", processing_mode=metadata.processing_mode)
        log_stage(
            document_id=document_id,
            operation="create",
            event="COMPLETED",
            user=user_id,
            file_size=metadata.file_size,
            content_type=metadata.content_type,
            processing_mode=metadata.processing_mode,
        )
        return created

    # User value: records one stage report from an executor and moves the job forward.
    def advance(
        self,
        document_id: str,
        stage: str,
        status: str,
        *,
        progress: Optional[int] = None,
        details: Optional[str] = None,
        error=None,
    ) -> ProcessingJob:
        now = self.now()

        def _mutate(job: ProcessingJob) -> ProcessingJob:
            return advance_job(
                job,
                stage=stage,
                status=status,
                now=now,
                progress=progress,
                details=details,
                error=error,
                strict=self.strict_stage_order,
            )

        try:
            job = self.store.update(document_id, _mutate)
        except TrackerError as exc:
            self._failed("advance", document_id, exc, stage=stage, status=status)
            raise

        incr("tracker_stage_updates_total", stage=stage, status=status)
        log_stage(
            document_id=document_id,
            operation="advance",
            event="FAILED" if status == "failed" else "COMPLETED",
            user=job.user_id,
            stage=stage,
            status=status,
            error=job.error.message if status == "failed" and job.error else None,
            progress=progress,
            overall_status=job.overall_status,
            current_stage=job.current_stage,
        )
        return job

    def get_job(self, document_id: str) -> ProcessingJob:
        try:
            return self.store.get(document_id)
        except TrackerError as exc:
            self._failed("get", document_id, exc)
            raise

    def query_jobs(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        stage: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        filters = JobFilters(user_id=user_id, overall_status=status, current_stage=stage)
        result = self.store.query(filters, page, limit)
        incr("tracker_queries_total")
        return result

    # User value: restarts a failed document from a chosen stage instead of asking the user to re-upload.
    def retry_from_stage(
        self,
        document_id: str,
        *,
        from_stage: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> retry_controller.RetryOutcome:
        limit = self.default_max_retries if max_retries is None else max_retries
        try:
            outcome = retry_controller.retry_from_stage(
                self.store,
                document_id,
                from_stage=from_stage,
                max_retries=limit,
                now=self.now(),
            )
        except TrackerError as exc:
            self._failed("retry", document_id, exc, stage=from_stage, max_retries=limit)
            raise

        incr("tracker_retries_total", stage=outcome.job.current_stage)
        log_stage(
            document_id=document_id,
            operation="retry",
            event="COMPLETED",
            user=outcome.job.user_id,
            stage=outcome.job.current_stage,
            retry_attempt=outcome.retry_attempt,
            max_retries=limit,
        )
        return outcome

    def cancel(self, document_id: str, reason: Optional[str] = None) -> maintenance.CancelOutcome:
        try:
            outcome = maintenance.cancel_job(
                self.store,
                document_id,
                reason=reason or maintenance.DEFAULT_CANCEL_REASON,
                now=self.now(),
            )
        except TrackerError as exc:
            self._failed("cancel", document_id, exc)
            raise

        incr("tracker_cancellations_total", changed=outcome.changed)
        log_stage(
            document_id=document_id,
            operation="cancel",
            event="COMPLETED" if outcome.changed else "SKIPPED",
            user=outcome.job.user_id,
            status=outcome.job.overall_status,
            reason=reason,
        )
        return outcome

    def retention_cutoff(self) -> datetime:
        return self.now() - timedelta(days=self.retention_days)

    # User value: drops stale records so the store and dashboards stay fast.
    def cleanup(self, before: Optional[datetime] = None) -> tuple[datetime, int]:
        cutoff = as_utc(before) if before is not None else self.retention_cutoff()
        removed = maintenance.cleanup(self.store, before=cutoff)
        incr("tracker_cleanup_removed_total", removed)
        logger.info("cleanup_completed before=%s removed=%s", cutoff.isoformat(), removed)
        return cutoff, removed

    def metrics(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> MetricsResponse:
        end = as_utc(end) if end is not None else self.now()
        start = as_utc(start) if start is not None else end - timedelta(hours=self.metrics_window_hours)
        validate_window(start, end)

        jobs: List[ProcessingJob] = self.store.scan(start, end)
        user = str(user_id or "").strip()
        if user:
            jobs = [job for job in jobs if job.user_id == user]
        incr("tracker_metrics_reads_total", scoped=bool(user))
        return compute_metrics(jobs, start=start, end=end)

    def bottlenecks(self) -> List[Bottleneck]:
        found = compute_bottlenecks(
            self.store.scan(),
            now=self.now(),
            window=timedelta(hours=self.thresholds.window_hours),
            avg_time_threshold_ms=self.thresholds.avg_time_ms,
            queue_size_threshold=self.thresholds.queue_size,
        )
        if found:
            logger.warning("pipeline_bottlenecks stages=%s", [b.stage for b in found])
        return found


@lru_cache(maxsize=1)
def get_tracker() -> PipelineTracker:
    store = create_store_from_env()
    logger.info("tracker_store_ready backend=%s", getattr(store, "backend_name", "unknown"))
    return PipelineTracker(
        store,
        strict_stage_order=is_strict_stage_order_enabled(),
        default_max_retries=config.DEFAULT_MAX_RETRIES,
        metrics_window_hours=config.METRICS_DEFAULT_WINDOW_HOURS,
        retention_days=config.JOB_RETENTION_DAYS,
        thresholds=BottleneckThresholds(
            window_hours=config.BOTTLENECK_WINDOW_HOURS,
            avg_time_ms=config.BOTTLENECK_AVG_TIME_MS,
            queue_size=config.BOTTLENECK_QUEUE_SIZE,
        ),
    )
