# User value: This test validates the tracker end to end so a document's whole journey is recorded correctly.
import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from errors import JobAlreadyExists, JobNotFound, RetryLimitExceeded, StageOrderViolation, StatusTransitionBlocked
from schemas.jobs import ProcessingMetadata, StageErrorReport
from schemas.responses import JobStatusResponse
from services.job_store import InMemoryJobStore
from services.tracker import BottleneckThresholds, PipelineTracker, as_utc

T0 = datetime(2026, 7, 1, 8, 0, tzinfo=timezone.utc)
MB = 1024 * 1024


class _Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def tick(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _metadata(size: int = 1024, content_type: str = "application/pdf") -> ProcessingMetadata:
    return ProcessingMetadata(file_name="doc.pdf", file_size=size, content_type=content_type)


class PipelineTrackerUnitTests(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock(T0)
        self.tracker = PipelineTracker(InMemoryJobStore(), clock=self.clock)

    # User value: a new upload starts pending at the first stage with time estimates attached.
    def test_create_job_initial_state(self):
        job = self.tracker.create_job("doc-1", "user-1", _metadata())

        self.assertEqual(job.overall_status, "pending")
        self.assertEqual(job.current_stage, "upload")
        self.assertEqual(list(job.stages), ["upload", "parsing", "chunking", "embedding", "storage"])
        self.assertTrue(all(r.status == "pending" for r in job.stages.values()))
        self.assertEqual(job.stages["upload"].estimated_duration_ms, 2000.0)
        self.assertEqual(job.created_at, T0)
        self.assertEqual(job.updated_at, T0)

    def test_create_duplicate_rejected(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        with self.assertRaises(JobAlreadyExists):
            self.tracker.create_job("doc-1", "user-2", _metadata())

    # User value: bigger documents show longer estimates so expectations match reality.
    def test_large_document_gets_longer_estimates(self):
        big = self.tracker.create_job("big", "user-1", _metadata(size=50 * MB))
        small = self.tracker.create_job("small", "user-1", _metadata(size=1024))

        self.assertGreater(big.stages["parsing"].estimated_duration_ms, small.stages["parsing"].estimated_duration_ms)
        self.assertGreater(
            JobStatusResponse.from_job(big).estimated_remaining_ms,
            JobStatusResponse.from_job(small).estimated_remaining_ms,
        )

    # User value: a document that passes every stage ends completed with full progress.
    def test_full_pipeline_completes(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        for stage in ("upload", "parsing", "chunking", "embedding", "storage"):
            self.clock.tick(seconds=5)
            self.tracker.advance("doc-1", stage, "processing", progress=10)
            self.clock.tick(seconds=5)
            self.tracker.advance("doc-1", stage, "completed")

        job = self.tracker.get_job("doc-1")
        view = JobStatusResponse.from_job(job)
        self.assertEqual(job.overall_status, "completed")
        self.assertEqual(job.completed_at, T0 + timedelta(seconds=50))
        self.assertEqual(view.progress_percentage, 100)
        self.assertEqual(view.estimated_remaining_ms, 0.0)
        self.assertFalse(view.retry_available)

    def test_advance_records_counters_and_logs(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        with patch("services.tracker.incr") as mock_incr, patch("services.tracker.log_stage") as mock_log:
            self.tracker.advance("doc-1", "upload", "processing", progress=50)
        mock_incr.assert_called_once_with("tracker_stage_updates_total", stage="upload", status="processing")
        self.assertEqual(mock_log.call_args.kwargs["event"], "COMPLETED")

    def test_rejected_advance_is_logged_as_failed(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        self.tracker.advance("doc-1", "upload", "completed")
        with patch("services.tracker.log_stage") as mock_log:
            with self.assertRaises(StatusTransitionBlocked):
                self.tracker.advance("doc-1", "upload", "processing")
        self.assertEqual(mock_log.call_args.kwargs["event"], "FAILED")
        self.assertEqual(mock_log.call_args.kwargs["error_code"], "STATE_CONFLICT")

    def test_strict_mode_enforced_through_tracker(self):
        tracker = PipelineTracker(InMemoryJobStore(), clock=self.clock, strict_stage_order=True)
        tracker.create_job("doc-1", "user-1", _metadata())
        with self.assertRaises(StageOrderViolation):
            tracker.advance("doc-1", "parsing", "processing")

    # User value: concurrent progress reports from parallel executors never corrupt the record.
    def test_concurrent_progress_reports(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        barrier = threading.Barrier(3)
        errors = []

        def report(value):
            barrier.wait()
            try:
                self.tracker.advance("doc-1", "upload", "processing", progress=value)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=report, args=(v,)) for v in (25, 50, 75)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertIn(self.tracker.get_job("doc-1").stages["upload"].progress, {25, 50, 75})

    # User value: failed documents show a retry option and resume from the chosen stage.
    def test_failure_then_retry(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        self.tracker.advance("doc-1", "upload", "completed")
        failed = self.tracker.advance(
            "doc-1",
            "parsing",
            "failed",
            error=StageErrorReport(code="PARSER_TIMEOUT", message="timed out", retryable=True),
        )
        self.assertTrue(JobStatusResponse.from_job(failed).retry_available)

        outcome = self.tracker.retry_from_stage("doc-1", max_retries=1)
        self.assertEqual(outcome.retry_attempt, 1)
        self.assertEqual(outcome.job.current_stage, "parsing")
        self.assertEqual(outcome.job.overall_status, "processing")

        self.tracker.advance("doc-1", "parsing", "failed")
        with self.assertRaises(RetryLimitExceeded):
            self.tracker.retry_from_stage("doc-1", max_retries=1)
        self.assertEqual(self.tracker.get_job("doc-1").stages["parsing"].retry_count, 1)

    def test_retry_uses_default_max_retries(self):
        tracker = PipelineTracker(InMemoryJobStore(), clock=self.clock, default_max_retries=0)
        tracker.create_job("doc-1", "user-1", _metadata())
        tracker.advance("doc-1", "upload", "failed")
        with self.assertRaises(RetryLimitExceeded):
            tracker.retry_from_stage("doc-1")

    def test_cancel_then_completed_cancel_noop(self):
        self.tracker.create_job("doc-1", "user-1", _metadata())
        outcome = self.tracker.cancel("doc-1", "not needed")
        self.assertTrue(outcome.changed)
        self.assertEqual(outcome.job.overall_status, "cancelled")

        again = self.tracker.cancel("doc-1")
        self.assertFalse(again.changed)
        with self.assertRaises(StatusTransitionBlocked):
            self.tracker.advance("doc-1", "upload", "processing")

    # User value: job lists page cleanly for users with many uploads.
    def test_query_fifteen_jobs(self):
        for i in range(15):
            self.clock.tick(seconds=1)
            self.tracker.create_job(f"doc-{i:02d}", "user-1", _metadata())
        self.tracker.create_job("other", "user-2", _metadata())

        page = self.tracker.query_jobs(user_id="user-1", page=1, limit=10)
        self.assertEqual(len(page.jobs), 10)
        self.assertEqual(page.total, 15)
        self.assertTrue(page.has_more)

    def test_cleanup_uses_retention_default(self):
        tracker = PipelineTracker(InMemoryJobStore(), clock=self.clock, retention_days=30)
        tracker.create_job("old", "user-1", _metadata())
        self.clock.tick(days=31)
        tracker.create_job("new", "user-1", _metadata())

        cutoff, removed = tracker.cleanup()

        self.assertEqual(cutoff, T0 + timedelta(days=1))
        self.assertEqual(removed, 1)
        with self.assertRaises(JobNotFound):
            tracker.get_job("old")

    def test_metrics_scoped_to_user(self):
        self.tracker.create_job("a", "user-1", _metadata())
        self.tracker.create_job("b", "user-2", _metadata())
        self.tracker.advance("b", "upload", "failed")
        self.clock.tick(minutes=5)

        everyone = self.tracker.metrics()
        scoped = self.tracker.metrics(user_id="user-2")

        self.assertEqual(everyone.total_documents, 2)
        self.assertEqual(scoped.total_documents, 1)
        self.assertEqual(scoped.failure_rate, 1.0)
        self.assertEqual(everyone.window_end - everyone.window_start, timedelta(hours=24))

    def test_bottlenecks_use_thresholds(self):
        tracker = PipelineTracker(
            InMemoryJobStore(),
            clock=self.clock,
            thresholds=BottleneckThresholds(window_hours=1, avg_time_ms=1e9, queue_size=1),
        )
        for name in ("a", "b"):
            tracker.create_job(name, "user-1", _metadata())
            tracker.advance(name, "upload", "processing")

        found = tracker.bottlenecks()
        self.assertEqual([b.stage for b in found], ["upload"])
        self.assertEqual(found[0].queue_size, 2)

    def test_cancelled_jobs_raise_no_queue_alarm(self):
        tracker = PipelineTracker(
            InMemoryJobStore(),
            clock=self.clock,
            thresholds=BottleneckThresholds(window_hours=1, avg_time_ms=1e9, queue_size=2),
        )
        for name in ("a", "b", "c"):
            tracker.create_job(name, "user-1", _metadata())
            tracker.advance(name, "upload", "processing")
            tracker.cancel(name, "user abort")

        self.assertEqual(tracker.bottlenecks(), [])

    def test_naive_datetimes_read_as_utc(self):
        self.assertEqual(as_utc(datetime(2026, 1, 1, 12, 0)), datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


if __name__ == "__main__":
    unittest.main()
