# User value: This test validates the Redis status store so shared deployments keep consistent job records.
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import redis
from redis.exceptions import WatchError

from errors import JobAlreadyExists, JobNotFound, StoreConflict, StoreUnavailable
from schemas.jobs import ProcessingJob, ProcessingMetadata
from services.job_store import JobFilters, RedisJobStore, create_store_from_env, job_from_hash, job_to_hash
from services.redis_client import build_redis_client, log_connection_diagnostics

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _job(document_id: str = "doc-1", user_id: str = "user-1") -> ProcessingJob:
    return ProcessingJob(
        document_id=document_id,
        user_id=user_id,
        metadata=ProcessingMetadata(file_name="a.pdf", file_size=10, content_type="application/pdf", tags=["x"]),
        created_at=T0,
        updated_at=T0,
    )


def _transaction_client(pipe: MagicMock) -> MagicMock:
    client = MagicMock()
    client.pipeline.return_value.__enter__.return_value = pipe
    return client


class RedisJobStoreUnitTests(unittest.TestCase):
    # User value: a job read back from Redis is identical to what was written.
    def test_hash_round_trip_preserves_job(self):
        job = _job()
        job.stages["parsing"].status = "failed"
        raw = job_to_hash(job)
        self.assertEqual(raw["completed_at"], "")
        self.assertEqual(raw["error"], "")
        self.assertEqual(job_from_hash(raw), job)

    def test_create_writes_hash_and_index(self):
        pipe = MagicMock()
        pipe.exists.return_value = 0
        store = RedisJobStore(_transaction_client(pipe), namespace="t")

        store.create(_job())

        pipe.watch.assert_called_once_with("t:job:doc-1")
        pipe.hset.assert_called_once()
        pipe.zadd.assert_called_once_with("t:jobs:by_created", {"doc-1": T0.timestamp()})
        pipe.execute.assert_called_once()

    def test_create_existing_key_rejected(self):
        pipe = MagicMock()
        pipe.exists.return_value = 1
        store = RedisJobStore(_transaction_client(pipe))
        with self.assertRaises(JobAlreadyExists):
            store.create(_job())
        pipe.execute.assert_not_called()

    def test_create_race_reported_as_duplicate(self):
        pipe = MagicMock()
        pipe.exists.return_value = 0
        pipe.execute.side_effect = WatchError()
        store = RedisJobStore(_transaction_client(pipe))
        with self.assertRaises(JobAlreadyExists):
            store.create(_job())

    def test_get_missing_raises_not_found(self):
        client = MagicMock()
        client.hgetall.return_value = {}
        with self.assertRaises(JobNotFound):
            RedisJobStore(client).get("doc-1")

    # User value: a concurrent writer causes a clean re-read instead of a lost update.
    def test_update_retries_after_watch_error(self):
        pipe = MagicMock()
        pipe.hgetall.return_value = job_to_hash(_job())
        pipe.execute.side_effect = [WatchError(), ["ok"]]
        store = RedisJobStore(_transaction_client(pipe))
        calls = []

        def mutate(job):
            calls.append(1)
            job.stages["upload"].progress = 40
            return job

        updated = store.update("doc-1", mutate)

        self.assertEqual(len(calls), 2)
        self.assertEqual(updated.stages["upload"].progress, 40)
        self.assertEqual(pipe.execute.call_count, 2)

    def test_update_gives_up_after_max_attempts(self):
        pipe = MagicMock()
        pipe.hgetall.return_value = job_to_hash(_job())
        pipe.execute.side_effect = WatchError()
        store = RedisJobStore(_transaction_client(pipe), max_update_attempts=3)

        with self.assertRaises(StoreConflict) as ctx:
            store.update("doc-1", lambda job: job)
        self.assertEqual(ctx.exception.http_status, 503)
        self.assertEqual(pipe.execute.call_count, 3)

    def test_update_missing_raises_not_found(self):
        pipe = MagicMock()
        pipe.hgetall.return_value = {}
        store = RedisJobStore(_transaction_client(pipe))
        with self.assertRaises(JobNotFound):
            store.update("doc-1", lambda job: job)

    # User value: a Redis outage surfaces as a retryable 503 rather than a crash.
    def test_redis_outage_maps_to_store_unavailable(self):
        client = MagicMock()
        client.hgetall.side_effect = redis.ConnectionError("down")
        with self.assertRaises(StoreUnavailable) as ctx:
            RedisJobStore(client).get("doc-1")
        self.assertEqual(ctx.exception.error_code, "INFRA_STORE")

    def test_query_filters_and_pages(self):
        client = MagicMock()
        client.zrevrange.return_value = ["doc-3", "doc-2", "doc-1"]
        meta_pipe = MagicMock()
        meta_pipe.execute.return_value = [
            ["u1", "processing", "parsing"],
            ["u2", "processing", "parsing"],
            ["u1", "failed", "parsing"],
        ]
        fetch_pipe = MagicMock()
        fetch_pipe.execute.return_value = [job_to_hash(_job("doc-3", "u1"))]
        client.pipeline.side_effect = [meta_pipe, fetch_pipe]

        page = RedisJobStore(client).query(JobFilters(user_id="u1"), page=1, limit=1)

        self.assertEqual(page.total, 2)
        self.assertTrue(page.has_more)
        self.assertEqual([j.document_id for j in page.jobs], ["doc-3"])
        fetch_pipe.hgetall.assert_called_once_with("pipeline:job:doc-3")

    def test_scan_uses_created_index_bounds(self):
        client = MagicMock()
        client.zrangebyscore.return_value = []
        store = RedisJobStore(client)
        end = T0 + timedelta(hours=1)

        self.assertEqual(store.scan(T0, end), [])
        client.zrangebyscore.assert_called_once_with("pipeline:jobs:by_created", T0.timestamp(), end.timestamp())

    def test_delete_created_before_removes_hashes_and_index(self):
        client = MagicMock()
        client.zrangebyscore.return_value = ["doc-1", "doc-2"]
        pipe = MagicMock()
        pipe.execute.return_value = [1, 1, 2]
        client.pipeline.return_value = pipe

        removed = RedisJobStore(client).delete_created_before(T0)

        self.assertEqual(removed, 2)
        client.zrangebyscore.assert_called_once_with("pipeline:jobs:by_created", "-inf", f"({T0.timestamp()}")
        pipe.zrem.assert_called_once_with("pipeline:jobs:by_created", "doc-1", "doc-2")


class RedisClientFactoryUnitTests(unittest.TestCase):
    def test_build_client_pings_once(self):
        with patch("services.redis_client.redis.Redis.from_url") as from_url:
            from_url.return_value.ping.return_value = True
            client = build_redis_client("redis://cache:6379/0")
        self.assertIs(client, from_url.return_value)
        self.assertTrue(from_url.call_args.kwargs["decode_responses"])
        client.ping.assert_called_once()

    # User value: a cold Redis at boot is logged, not fatal, so the API can start and report unhealthy.
    def test_failed_diagnostic_ping_returns_false(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        self.assertFalse(log_connection_diagnostics(client))

    def test_factory_selects_redis_backend(self):
        with patch("services.job_store.build_redis_client") as build:
            store = create_store_from_env({"STATUS_STORE_BACKEND": "redis", "REDIS_URL": "redis://cache:6379/0"})
        self.assertIsInstance(store, RedisJobStore)
        build.assert_called_once_with("redis://cache:6379/0")
        self.assertEqual(store.index_key(), "pipeline:jobs:by_created")


if __name__ == "__main__":
    unittest.main()
