# User value: This test validates pipeline metrics so operators can trust throughput and bottleneck numbers.
import unittest
from datetime import datetime, timedelta, timezone

from errors import InvalidQuery
from schemas.jobs import ProcessingJob, ProcessingMetadata
from services.maintenance import apply_cancel
from services.pipeline_metrics import compute_bottlenecks, compute_metrics, stage_queue_sizes
from utils.status_machine import advance_job

T0 = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


def _at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def _new(document_id: str, minutes: float, user_id: str = "user-1") -> ProcessingJob:
    return ProcessingJob(
        document_id=document_id,
        user_id=user_id,
        metadata=ProcessingMetadata(file_name="a.pdf", file_size=100),
        created_at=_at(minutes),
        updated_at=_at(minutes),
    )


def _run(job: ProcessingJob, events) -> ProcessingJob:
    for stage, status, minutes in events:
        job = advance_job(job, stage=stage, status=status, now=_at(minutes))
    return job


def _completed_job() -> ProcessingJob:
    # Created at +10m, finished at +20m; parsing takes 2 minutes.
    return _run(
        _new("done", 10),
        [
            ("upload", "processing", 10),
            ("upload", "completed", 11),
            ("parsing", "processing", 11),
            ("parsing", "completed", 13),
            ("chunking", "processing", 13),
            ("chunking", "completed", 14),
            ("embedding", "processing", 14),
            ("embedding", "completed", 18),
            ("storage", "processing", 18),
            ("storage", "completed", 20),
        ],
    )


def _failed_job() -> ProcessingJob:
    return _run(
        _new("broken", 30),
        [
            ("upload", "completed", 30),
            ("parsing", "processing", 31),
            ("parsing", "failed", 35),
        ],
    )


def _running_job(document_id: str = "running", minutes: float = 40) -> ProcessingJob:
    return _run(
        _new(document_id, minutes),
        [
            ("upload", "completed", minutes),
            ("parsing", "completed", minutes),
            ("chunking", "completed", minutes),
            ("embedding", "processing", minutes + 1),
        ],
    )


class PipelineMetricsUnitTests(unittest.TestCase):
    # User value: one snapshot shows totals, failure rate and per-stage health for the window.
    def test_compute_metrics_window(self):
        outside = _new("outside", 60 * 5)
        jobs = [_completed_job(), _failed_job(), _running_job(), outside]

        metrics = compute_metrics(jobs, start=T0, end=_at(120))

        self.assertEqual(metrics.total_documents, 3)
        self.assertEqual(metrics.completed_documents, 1)
        self.assertEqual(metrics.failed_documents, 1)
        self.assertEqual(metrics.processing_documents, 1)
        self.assertEqual(metrics.cancelled_documents, 0)
        self.assertEqual(metrics.average_processing_time_ms, 600000.0)
        self.assertEqual(metrics.throughput_per_hour, 0.5)
        self.assertEqual(metrics.failure_rate, 0.3333)

        parsing = next(p for p in metrics.stage_performance if p.stage == "parsing")
        self.assertEqual(parsing.completed_count, 2)
        self.assertEqual(parsing.failed_count, 1)
        self.assertEqual(parsing.success_rate, 0.6667)
        self.assertEqual(parsing.average_time_ms, 120000.0)

        embedding = next(p for p in metrics.stage_performance if p.stage == "embedding")
        self.assertEqual(embedding.queue_size, 1)

    def test_empty_window_has_zero_rates(self):
        metrics = compute_metrics([], start=T0, end=_at(60))
        self.assertEqual(metrics.total_documents, 0)
        self.assertEqual(metrics.failure_rate, 0.0)
        self.assertEqual(len(metrics.stage_performance), 5)

    def test_inverted_window_rejected(self):
        with self.assertRaises(InvalidQuery):
            compute_metrics([], start=_at(60), end=T0)

    def test_queue_counts_only_processing_current_stage(self):
        sizes = stage_queue_sizes([_running_job(), _failed_job(), _completed_job()])
        self.assertEqual(sizes, {"upload": 0, "parsing": 0, "chunking": 0, "embedding": 1, "storage": 0})

    # User value: congested or slow stages are flagged so operators know where to scale.
    def test_bottlenecks_flag_queue_and_slow_stage(self):
        jobs = [_running_job(f"run-{i}", 40 + i) for i in range(12)]
        jobs.append(_completed_job())

        found = compute_bottlenecks(
            jobs,
            now=_at(120),
            window=timedelta(hours=24),
            avg_time_threshold_ms=200000,
            queue_size_threshold=10,
        )

        by_stage = {b.stage: b for b in found}
        self.assertEqual(set(by_stage), {"embedding"})
        self.assertEqual(by_stage["embedding"].queue_size, 12)
        self.assertEqual(
            by_stage["embedding"].reasons,
            ["average_time_above_threshold", "queue_size_above_threshold"],
        )

    # User value: cancelled documents stop counting as queued work right away, not only after cleanup.
    def test_cancelled_jobs_leave_the_queue(self):
        jobs = []
        for i in range(3):
            job = _run(_new(f"upload-{i}", i), [("upload", "processing", i)])
            _, job = apply_cancel(job, reason="user abort", now=_at(10))
            jobs.append(job)
        self.assertEqual(jobs[0].stages["upload"].status, "processing")

        self.assertEqual(stage_queue_sizes(jobs)["upload"], 0)
        found = compute_bottlenecks(
            jobs,
            now=_at(20),
            window=timedelta(hours=24),
            avg_time_threshold_ms=200000,
            queue_size_threshold=2,
        )
        self.assertEqual(found, [])
        metrics = compute_metrics(jobs, start=T0, end=_at(60))
        self.assertEqual(metrics.stage_performance[0].queue_size, 0)
        self.assertEqual(metrics.cancelled_documents, 3)

    def test_bottleneck_average_ignores_jobs_outside_window(self):
        found = compute_bottlenecks(
            [_completed_job()],
            now=_at(60 * 48),
            window=timedelta(hours=24),
            avg_time_threshold_ms=1000,
            queue_size_threshold=10,
        )
        self.assertEqual(found, [])


if __name__ == "__main__":
    unittest.main()
